"""Sorting, grouping and agenda partitioning for filtered task lists.

These functions operate on lists of TaskRecord and are pure (no I/O); the
current day comes from the EvaluationContext when it is fixed there.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from tasknotes_mcp.dates import (
    get_local_timezone,
    get_today_local,
    parse_date_to_local,
    to_calendar_date,
)
from tasknotes_mcp.filters import evaluate, get_task_property_value, is_query_meaningful
from tasknotes_mcp.models import (
    AgendaData,
    AgendaDay,
    EffectiveStatus,
    EvaluationContext,
    FilterQuery,
    SortDirection,
    TaskRecord,
)
from tasknotes_mcp.recurrence import (
    RecurrenceExpander,
    get_effective_status,
    get_instance_date,
    occurs_on,
)
from tasknotes_mcp.registry import is_user_property

NO_GROUP = "none"

DATE_BUCKETS = ("Overdue", "Today", "Tomorrow", "This week", "Later", "No date")

_DATE_SORT_FIELDS = {
    "due": "due",
    "scheduled": "scheduled",
    "completedDate": "completed_date",
    "dateCreated": "date_created",
    "dateModified": "date_modified",
}


def _today(context: EvaluationContext) -> date:
    return context.today or get_today_local(get_local_timezone(context.timezone))


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

def coerce_for_compare(value: Any) -> tuple[int, Any] | None:
    """Comparable form of an arbitrary property value; None when missing.

    Numbers sort before strings so mixed user-field values stay comparable.
    """
    if value is None:
        return None
    if isinstance(value, list):
        return coerce_for_compare(value[0]) if value else None
    if isinstance(value, bool):
        return (0, int(value))
    if isinstance(value, (int, float)):
        return (0, value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return (0, float(text))
    except ValueError:
        pass
    moment = parse_date_to_local(text)
    if moment is not None:
        return (0, moment.timestamp())
    return (1, text.casefold())


def _sort_value(task: TaskRecord, sort_key: str, context: EvaluationContext) -> Any:
    if sort_key in _DATE_SORT_FIELDS:
        raw = getattr(task, _DATE_SORT_FIELDS[sort_key])
        moment = parse_date_to_local(raw, get_local_timezone(context.timezone)) if raw else None
        return moment.timestamp() if moment else None
    if sort_key == "priority":
        weight = context.priority_weight(task.priority)
        # Highest weight first in ascending order.
        return -weight if weight is not None else None
    if sort_key == "status":
        return context.status_order(task.status)
    if sort_key == "title":
        return task.title.casefold() if task.title else None
    if sort_key == "path":
        return task.path.casefold()
    if sort_key == "timeEstimate":
        return task.time_estimate
    if is_user_property(sort_key):
        return coerce_for_compare(get_task_property_value(task, sort_key, context))
    return None


def sort_tasks(
    tasks: Iterable[TaskRecord],
    sort_key: str = "due",
    direction: SortDirection | str = SortDirection.ASC,
    context: EvaluationContext | None = None,
) -> list[TaskRecord]:
    """Sort by one key. Missing values go last in both directions; ties break on title, then path."""
    ctx = context or EvaluationContext()
    ordered = sorted(tasks, key=lambda t: (t.title.casefold(), t.path))
    keyed = [(_sort_value(t, sort_key, ctx), t) for t in ordered]
    present = [pair for pair in keyed if pair[0] is not None]
    missing = [t for value, t in keyed if value is None]
    present.sort(key=lambda pair: pair[0], reverse=SortDirection(direction) == SortDirection.DESC)
    return [t for _, t in present] + missing


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def date_bucket(value: Optional[str], today: date, tz=None) -> str:
    """Which relative bucket a stored date falls in."""
    d = to_calendar_date(value, tz) if value else None
    if d is None:
        return "No date"
    if d < today:
        return "Overdue"
    if d == today:
        return "Today"
    if d == today + timedelta(days=1):
        return "Tomorrow"
    if d <= today + timedelta(days=7):
        return "This week"
    return "Later"


def _group_names(task: TaskRecord, group_key: str, context: EvaluationContext, today: date) -> list[str]:
    tz = get_local_timezone(context.timezone)
    if group_key == "status":
        return [task.status or NO_GROUP]
    if group_key == "priority":
        return [task.priority or NO_GROUP]
    if group_key in ("context", "project", "tag"):
        values = {"context": task.contexts, "project": task.projects, "tag": task.tags}[group_key]
        return list(dict.fromkeys(values)) or [NO_GROUP]
    if group_key in ("due", "scheduled", "completedDate"):
        return [date_bucket(getattr(task, _DATE_SORT_FIELDS[group_key]), today, tz)]
    if is_user_property(group_key):
        value = get_task_property_value(task, group_key, context)
        if isinstance(value, list):
            return [str(v) for v in value if str(v).strip()] or [NO_GROUP]
        if value is None or str(value).strip() == "":
            return [NO_GROUP]
        return [str(value)]
    return ["all"]


def _order_groups(names: Iterable[str], group_key: str, context: EvaluationContext) -> list[str]:
    names = list(names)
    if group_key in ("due", "scheduled", "completedDate"):
        return [b for b in DATE_BUCKETS if b in names]
    if group_key == "status":
        rank = {s.value: s.order for s in context.statuses}
        return sorted(names, key=lambda n: (n not in rank, rank.get(n, 0), n.casefold()))
    if group_key == "priority":
        weight = {p.value: -p.weight for p in context.priorities}
        return sorted(names, key=lambda n: (n not in weight, weight.get(n, 0), n.casefold()))
    return sorted(names, key=lambda n: (n == NO_GROUP, n.casefold()))


def _group_flat(
    tasks: list[TaskRecord], group_key: str, context: EvaluationContext, today: date
) -> dict[str, list[TaskRecord]]:
    if not group_key or group_key == NO_GROUP:
        return {"all": list(tasks)}
    buckets: dict[str, list[TaskRecord]] = defaultdict(list)
    for t in tasks:
        for name in _group_names(t, group_key, context, today):
            buckets[name].append(t)
    return {name: buckets[name] for name in _order_groups(buckets, group_key, context)}


def group_tasks(
    tasks: Iterable[TaskRecord],
    group_key: str = NO_GROUP,
    context: EvaluationContext | None = None,
    subgroup_key: str | None = None,
) -> dict[str, Any]:
    """Group already-sorted tasks, preserving their order inside each group.

    Returns ``{group: [tasks]}``, or ``{group: {subgroup: [tasks]}}`` when a
    subgroup key is given. A task with several tags/contexts/projects appears
    in each matching group.
    """
    ctx = context or EvaluationContext()
    today = _today(ctx)
    groups = _group_flat(list(tasks), group_key, ctx, today)
    if not subgroup_key or subgroup_key == NO_GROUP:
        return groups
    return {name: _group_flat(members, subgroup_key, ctx, today) for name, members in groups.items()}


# ---------------------------------------------------------------------------
# Agenda
# ---------------------------------------------------------------------------

def build_agenda_dates(start: date, days: int) -> list[date]:
    return [start + timedelta(days=i) for i in range(days)]


def get_comparison_date(
    task: TaskRecord,
    first_date: date,
    context: EvaluationContext,
    expander: RecurrenceExpander | None = None,
) -> date | None:
    """The calendar day the agenda files a task under, before bucketing.

    due, else scheduled, else (recurring) the current instance date relative
    to *first_date*.
    """
    tz = get_local_timezone(context.timezone)
    for value in (task.due, task.scheduled):
        d = to_calendar_date(value, tz) if value else None
        if d is not None:
            return d
    if task.is_recurring:
        return get_instance_date(task, first_date, expander)
    return None


def partition_agenda(
    tasks: list[TaskRecord],
    dates: list[date | datetime],
    show_overdue_section: bool = True,
    context: EvaluationContext | None = None,
    expander: RecurrenceExpander | None = None,
) -> AgendaData:
    """File each task into at most one bucket: one day, overdue, or nowhere.

    *dates* may be plain dates or UTC-anchored datetimes. Daily buckets keep
    the order of *dates*, so ``daily[i]`` is the bucket for ``dates[i]``; the
    earliest date is the overdue cutoff and a task goes to the earliest day
    it falls on. *tasks* must already be filtered and sorted; order inside
    a bucket follows it.
    """
    ctx = context or EvaluationContext()
    days = [to_calendar_date(d) for d in dates]
    if not days:
        return AgendaData()
    chronological = sorted(range(len(days)), key=days.__getitem__)
    first = days[chronological[0]]
    daily: list[list[TaskRecord]] = [[] for _ in days]
    overdue: list[TaskRecord] = []

    for task in tasks:
        comparison = get_comparison_date(task, first, ctx, expander)
        if comparison is None:
            continue
        if show_overdue_section and comparison < first:
            if (
                ctx.hide_completed_from_overdue
                and get_effective_status(task, comparison, ctx) == EffectiveStatus.COMPLETED
            ):
                continue
            overdue.append(task)
            continue
        for index in chronological:
            d = days[index]
            if comparison == d or (task.is_recurring and occurs_on(task, d, expander)):
                daily[index].append(task)
                break

    return AgendaData(
        daily=[AgendaDay(date=d, tasks=bucket) for d, bucket in zip(days, daily)],
        overdue=overdue,
    )


def get_agenda_data(
    tasks: Iterable[TaskRecord],
    dates: list[date | datetime],
    query: FilterQuery | None = None,
    show_overdue_section: bool = True,
    context: EvaluationContext | None = None,
    expander: RecurrenceExpander | None = None,
) -> AgendaData:
    """Filter, sort and partition tasks for the agenda. Nothing is cached between calls."""
    ctx = context or EvaluationContext()
    q = query or FilterQuery()
    matched = list(tasks)
    if is_query_meaningful(q):
        matched = [t for t in matched if evaluate(q, t, ctx)]
    ordered = sort_tasks(matched, q.sort_key, q.sort_direction, ctx)
    return partition_agenda(ordered, dates, show_overdue_section, ctx, expander)
