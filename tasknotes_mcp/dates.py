"""Calendar-date helpers shared by the filter, recurrence and agenda code.

Every day-boundary comparison goes through a "UTC-anchored" value: a UTC
datetime at 00:00 whose year/month/day equal a local calendar day. Naive
local arithmetic shifts the day near midnight under non-UTC offsets, so
nothing in this package compares raw local datetimes by day.

These functions are pure (no I/O) and return None instead of raising on
unparseable input.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.tz import tzlocal

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(
    r"^\s*(\d{4})[-/](\d{1,2})[-/](\d{1,2})"
    r"(?:[T ](\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?\s*(Z|[+-]\d{2}:?\d{2})?)?\s*$"
)

_IN_DAYS_RE = re.compile(r"^in\s+(\d+)\s+days?$")
_DAYS_AGO_RE = re.compile(r"^(\d+)\s+days?\s+ago$")

NATURAL_LANGUAGE_OFFSETS = {
    "today": 0,
    "tomorrow": 1,
    "yesterday": -1,
    "next week": 7,
    "next-week": 7,
    "last week": -7,
    "last-week": -7,
}


@lru_cache(maxsize=None)
def _named_zone(name: str) -> tzinfo | None:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown time zone {name!r}; using the system local zone")
        return None


def get_local_timezone(name: str | None = None) -> tzinfo:
    """Return the named IANA zone, or the system local zone when no name is given.

    The system zone is dateutil's ``tzlocal``, which applies the offset in
    force at each instant rather than the one in force now.
    """
    zone = _named_zone(name) if name else None
    return zone or tzlocal()


def _parse_offset(raw: str) -> tzinfo:
    if raw == "Z":
        return timezone.utc
    sign = -1 if raw[0] == "-" else 1
    digits = raw[1:].replace(":", "")
    minutes = int(digits[:2]) * 60 + int(digits[2:])
    return timezone(sign * timedelta(minutes=minutes))


def _parse(text: str, tz: tzinfo | None) -> tuple[datetime, bool] | None:
    """Parse a stored date string to an aware local datetime.

    Returns (moment, has_time) or None. Invalid calendar dates are rejected.
    """
    if not isinstance(text, str):
        return None
    m = _DATE_RE.match(text)
    if not m:
        return None
    year, month, day, hour, minute, second, offset = m.groups()
    local_tz = tz or get_local_timezone()
    try:
        if hour is None:
            return datetime(int(year), int(month), int(day), tzinfo=local_tz), False
        moment = datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second or 0),
        )
    except ValueError:
        return None
    if offset:
        moment = moment.replace(tzinfo=_parse_offset(offset)).astimezone(local_tz)
    else:
        moment = moment.replace(tzinfo=local_tz)
    return moment, True


# ---------------------------------------------------------------------------
# UTC anchoring
# ---------------------------------------------------------------------------

def create_utc_date_from_local_calendar_date(
    value: date | datetime, tz: tzinfo | None = None
) -> datetime:
    """Anchor the local calendar day of *value* at UTC midnight."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz or get_local_timezone())
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def convert_utc_to_local_calendar_date(value: date | datetime) -> date:
    """Recover the calendar day a UTC-anchored value stands for."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return date(value.year, value.month, value.day)
    return value


def format_date_for_storage(value: date | datetime) -> str:
    """Canonical YYYY-MM-DD form. Aware datetimes contribute their UTC fields."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return f"{value.year:04d}-{value.month:02d}-{value.day:02d}"


def to_calendar_date(value: date | datetime | str, tz: tzinfo | None = None) -> date | None:
    """Coerce a UTC-anchored datetime, a date or a stored string to a date."""
    if isinstance(value, str):
        anchored = parse_date_to_utc(value, tz)
        return convert_utc_to_local_calendar_date(anchored) if anchored else None
    return convert_utc_to_local_calendar_date(value)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_date_to_utc(text: str | None, tz: tzinfo | None = None) -> datetime | None:
    """Parse a stored date/date-time to the UTC-anchored local calendar day."""
    if not text:
        return None
    parsed = _parse(text, tz)
    if parsed is None:
        return None
    moment, _ = parsed
    return datetime(moment.year, moment.month, moment.day, tzinfo=timezone.utc)


def parse_date_to_local(text: str | None, tz: tzinfo | None = None) -> datetime | None:
    """Parse to an aware local datetime, keeping any time of day."""
    if not text:
        return None
    parsed = _parse(text, tz)
    return parsed[0] if parsed else None


def has_time_component(text: str | None) -> bool:
    if not text:
        return False
    parsed = _parse(text, None)
    return bool(parsed and parsed[1])


def get_date_part(text: str | None, tz: tzinfo | None = None) -> str | None:
    """YYYY-MM-DD of the local calendar day *text* falls on, or None."""
    anchored = parse_date_to_utc(text, tz)
    return format_date_for_storage(anchored) if anchored else None


def normalize_date_string(text: str | None, tz: tzinfo | None = None) -> str | None:
    return get_date_part(text, tz)


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------

def is_before_date_time_aware(a: str, b: str, tz: tzinfo | None = None) -> bool:
    """True if *a* is before *b*.

    Both carry a time: compare instants. Otherwise compare calendar days.
    Unparseable input is never "before" anything.
    """
    pa = _parse(a, tz)
    pb = _parse(b, tz)
    if pa is None or pb is None:
        return False
    (ma, ta), (mb, tb) = pa, pb
    if ta and tb:
        return ma < mb
    return ma.date() < mb.date()


def is_same_date_safe(a: str | None, b: str | None, tz: tzinfo | None = None) -> bool:
    da = get_date_part(a, tz)
    db = get_date_part(b, tz)
    return da is not None and da == db


def get_today_local(tz: tzinfo | None = None) -> date:
    return datetime.now(tz or get_local_timezone()).date()


def add_days(value: date | datetime, days: int) -> date | datetime:
    return value + timedelta(days=days)


# ---------------------------------------------------------------------------
# Natural language condition values
# ---------------------------------------------------------------------------

def is_natural_language_date(value: str | None) -> bool:
    if not isinstance(value, str):
        return False
    v = value.strip().lower()
    return v in NATURAL_LANGUAGE_OFFSETS or bool(_IN_DAYS_RE.match(v) or _DAYS_AGO_RE.match(v))


def resolve_natural_language_date(value: str, today: date | None = None) -> str:
    """Resolve 'today', 'in 3 days', ... to YYYY-MM-DD. Other input is returned as-is."""
    if not isinstance(value, str):
        return value
    v = value.strip().lower()
    ref = today or get_today_local()
    if v in NATURAL_LANGUAGE_OFFSETS:
        return format_date_for_storage(ref + timedelta(days=NATURAL_LANGUAGE_OFFSETS[v]))
    m = _IN_DAYS_RE.match(v)
    if m:
        return format_date_for_storage(ref + timedelta(days=int(m.group(1))))
    m = _DAYS_AGO_RE.match(v)
    if m:
        return format_date_for_storage(ref - timedelta(days=int(m.group(1))))
    return value
