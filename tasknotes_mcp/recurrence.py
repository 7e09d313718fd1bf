"""Recurring-task state: per-day effective status and occurrence lookups.

A recurring task is one record whose completion state is kept per calendar
day in ``complete_instances`` and ``skipped_instances``. Rule expansion goes
through a ``RecurrenceExpander`` so the rest of the package only ever sees
calendar dates; the default expander is backed by ``dateutil.rrule``.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Optional, Protocol

from dateutil.rrule import rrulestr

from tasknotes_mcp.dates import format_date_for_storage, get_date_part, to_calendar_date
from tasknotes_mcp.models import EffectiveStatus, EvaluationContext, RecurrenceAnchor, TaskRecord

logger = logging.getLogger(__name__)

_DTSTART_RE = re.compile(r"DTSTART[^:]*:(\d{8})(?:T\d{6}Z?)?", re.IGNORECASE)
_UNTIL_RE = re.compile(r"UNTIL=(\d{8})(T\d{6})?Z?", re.IGNORECASE)
_COUNT_RE = re.compile(r"COUNT=(\d+)", re.IGNORECASE)
_EVERY_N_RE = re.compile(r"^every\s+(\d+)\s+(day|week|month|year)s?$")

_LEGACY_RULES = {
    "daily": "FREQ=DAILY",
    "every day": "FREQ=DAILY",
    "weekly": "FREQ=WEEKLY",
    "every week": "FREQ=WEEKLY",
    "biweekly": "FREQ=WEEKLY;INTERVAL=2",
    "monthly": "FREQ=MONTHLY",
    "every month": "FREQ=MONTHLY",
    "yearly": "FREQ=YEARLY",
    "annually": "FREQ=YEARLY",
    "every year": "FREQ=YEARLY",
    "every weekday": "FREQ=DAILY;BYDAY=MO,TU,WE,TH,FR",
    "weekdays": "FREQ=DAILY;BYDAY=MO,TU,WE,TH,FR",
}

_FREQ_BY_UNIT = {"day": "DAILY", "week": "WEEKLY", "month": "MONTHLY", "year": "YEARLY"}


# ---------------------------------------------------------------------------
# Rule text
# ---------------------------------------------------------------------------

def normalize_rule(recurrence: str | None) -> str | None:
    """RRULE body without DTSTART, with legacy phrases translated. None if empty."""
    if not recurrence or not recurrence.strip():
        return None
    text = recurrence.strip()
    phrase = text.lower()
    if phrase in _LEGACY_RULES:
        return _LEGACY_RULES[phrase]
    m = _EVERY_N_RE.match(phrase)
    if m:
        return f"FREQ={_FREQ_BY_UNIT[m.group(2)]};INTERVAL={int(m.group(1))}"

    parts = []
    for part in re.split(r"[;\n]", text):
        part = part.strip()
        if not part or part.upper().startswith("DTSTART"):
            continue
        if part.upper().startswith("RRULE:"):
            part = part[len("RRULE:"):]
        parts.append(part)
    body = ";".join(parts)
    # Floating UNTIL so it compares against the floating dates the expander uses.
    return _UNTIL_RE.sub(lambda m: f"UNTIL={m.group(1)}{m.group(2) or ''}", body) or None


def get_rule_dtstart(recurrence: str | None) -> date | None:
    if not recurrence:
        return None
    m = _DTSTART_RE.search(recurrence)
    if not m:
        return None
    try:
        return datetime.strptime(m.group(1), "%Y%m%d").date()
    except ValueError:
        return None


def get_rule_count(recurrence: str | None) -> int | None:
    m = _COUNT_RE.search(recurrence or "")
    return int(m.group(1)) if m else None


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------

class RecurrenceExpander(Protocol):
    """Answers "when does this rule occur" in calendar dates."""

    def occurrences_between(self, rule: str, dtstart: date, start: date, end: date) -> list[date]:
        ...

    def next_after(self, rule: str, dtstart: date, after: date) -> date | None:
        ...


def _midnight(d: date) -> datetime:
    return datetime(d.year, d.month, d.day)


class DateutilRecurrenceExpander:
    """RecurrenceExpander over dateutil's rrulestr. Bad rules expand to nothing."""

    def _parse(self, rule: str, dtstart: date):
        try:
            return rrulestr(rule, dtstart=_midnight(dtstart))
        except (ValueError, TypeError, KeyError, IndexError) as e:
            logger.debug(f"Unparseable recurrence rule {rule!r}: {e}")
            return None

    def occurrences_between(self, rule: str, dtstart: date, start: date, end: date) -> list[date]:
        parsed = self._parse(rule, dtstart)
        if parsed is None or end < start:
            return []
        return [dt.date() for dt in parsed.between(_midnight(start), _midnight(end), inc=True)]

    def next_after(self, rule: str, dtstart: date, after: date) -> date | None:
        parsed = self._parse(rule, dtstart)
        if parsed is None:
            return None
        nxt = parsed.after(_midnight(after), inc=False)
        return nxt.date() if nxt else None


_DEFAULT_EXPANDER = DateutilRecurrenceExpander()


# ---------------------------------------------------------------------------
# Instance state
# ---------------------------------------------------------------------------

def _date_parts(values: list[str]) -> set[str]:
    return {get_date_part(v) or v for v in values}


def get_effective_status(
    task: TaskRecord, day: date | datetime, context: EvaluationContext | None = None
) -> EffectiveStatus:
    """Status of *task* on calendar day *day*.

    Recurring tasks read the instance lists; others map their status through
    the status registry.
    """
    if not task.is_recurring:
        ctx = context or EvaluationContext()
        return EffectiveStatus.COMPLETED if ctx.is_completed_status(task.status) else EffectiveStatus.OPEN
    key = format_date_for_storage(to_calendar_date(day))
    if key in _date_parts(task.complete_instances):
        return EffectiveStatus.COMPLETED
    if key in _date_parts(task.skipped_instances):
        return EffectiveStatus.SKIPPED
    return EffectiveStatus.OPEN


def toggle_instance_completion(task: TaskRecord, day: date | datetime) -> TaskRecord:
    """Copy of *task* with the completion of *day* flipped. Completing also un-skips."""
    key = format_date_for_storage(to_calendar_date(day))
    completes = list(task.complete_instances)
    skipped = list(task.skipped_instances)
    if key in _date_parts(completes):
        completes = [c for c in completes if (get_date_part(c) or c) != key]
    else:
        completes.append(key)
        skipped = [s for s in skipped if (get_date_part(s) or s) != key]
    return task.model_copy(update={"complete_instances": completes, "skipped_instances": skipped})


def toggle_instance_skipped(task: TaskRecord, day: date | datetime) -> TaskRecord:
    """Copy of *task* with the skip of *day* flipped. Skipping also un-completes."""
    key = format_date_for_storage(to_calendar_date(day))
    completes = list(task.complete_instances)
    skipped = list(task.skipped_instances)
    if key in _date_parts(skipped):
        skipped = [s for s in skipped if (get_date_part(s) or s) != key]
    else:
        skipped.append(key)
        completes = [c for c in completes if (get_date_part(c) or c) != key]
    return task.model_copy(update={"complete_instances": completes, "skipped_instances": skipped})


# ---------------------------------------------------------------------------
# Occurrences
# ---------------------------------------------------------------------------

def get_recurrence_start(task: TaskRecord) -> date | None:
    """DTSTART from the rule, else scheduled, else due, else creation date."""
    start = get_rule_dtstart(task.recurrence)
    if start:
        return start
    for value in (task.scheduled, task.due, task.date_created):
        d = to_calendar_date(value) if value else None
        if d:
            return d
    return None


def occurs_on(task: TaskRecord, day: date, expander: RecurrenceExpander | None = None) -> bool:
    """Whether the task has an instance on *day*. Non-recurring tasks occur on their due/scheduled day."""
    if not task.is_recurring:
        key = format_date_for_storage(day)
        return key in (get_date_part(task.due), get_date_part(task.scheduled))
    rule = normalize_rule(task.recurrence)
    start = get_recurrence_start(task)
    if rule is None or start is None or day < start:
        return False
    return bool((expander or _DEFAULT_EXPANDER).occurrences_between(rule, start, day, day))


def generate_recurring_instances(
    task: TaskRecord, start: date, end: date, expander: RecurrenceExpander | None = None
) -> list[date]:
    """Occurrence dates in [start, end]."""
    rule = normalize_rule(task.recurrence)
    dtstart = get_recurrence_start(task)
    if rule is None or dtstart is None:
        return []
    return (expander or _DEFAULT_EXPANDER).occurrences_between(rule, dtstart, max(start, dtstart), end)


def _first_open_occurrence(
    rule: str, dtstart: date, cursor: date, done: set[str], expander: RecurrenceExpander
) -> date | None:
    # Each step past a done entry consumes one, so len(done) + 1 steps suffice.
    for _ in range(len(done) + 1):
        nxt = expander.next_after(rule, dtstart, cursor)
        if nxt is None:
            return None
        if format_date_for_storage(nxt) not in done:
            return nxt
        cursor = nxt
    return None


def get_next_uncompleted_occurrence(
    task: TaskRecord, expander: RecurrenceExpander | None = None
) -> date | None:
    """Next instance that is neither completed nor skipped.

    Scheduled anchor: walk the rule from its start date. Completion anchor:
    the rule restarts at the latest completion (or the start date when there
    are none), and a COUNT is used up once that many completions exist.
    """
    rule = normalize_rule(task.recurrence)
    if rule is None:
        return None
    exp = expander or _DEFAULT_EXPANDER
    start = get_recurrence_start(task)
    completes = _date_parts(task.complete_instances)
    done = completes | _date_parts(task.skipped_instances)

    if task.recurrence_anchor == RecurrenceAnchor.COMPLETION:
        count = get_rule_count(rule)
        if count is not None and len(completes) >= count:
            return None
        completed_days = sorted(d for d in (to_calendar_date(c) for c in completes) if d)
        anchor = completed_days[-1] if completed_days else start
        if anchor is None:
            return None
        return _first_open_occurrence(rule, anchor, anchor, done, exp)

    if start is None:
        return None
    return _first_open_occurrence(rule, start, start - timedelta(days=1), done, exp)


def get_instance_date(
    task: TaskRecord, reference: date, expander: RecurrenceExpander | None = None
) -> Optional[date]:
    """The date the task's current instance is keyed to, relative to *reference*.

    Scheduled anchor: first occurrence on or after *reference*. Completion
    anchor: the next uncompleted occurrence, which may lie before *reference*.
    """
    if task.recurrence_anchor == RecurrenceAnchor.COMPLETION:
        return get_next_uncompleted_occurrence(task, expander)
    rule = normalize_rule(task.recurrence)
    start = get_recurrence_start(task)
    if rule is None or start is None:
        return None
    cursor = max(reference, start) - timedelta(days=1)
    return (expander or _DEFAULT_EXPANDER).next_after(rule, start, cursor)
