import time

import pytest
from datetime import date, datetime, timedelta, timezone


def test_parse_date_only_anchors_at_utc_midnight():
    from tasknotes_mcp.dates import parse_date_to_utc
    result = parse_date_to_utc("2024-03-05")
    assert result == datetime(2024, 3, 5, tzinfo=timezone.utc)


def test_parse_accepts_iso_space_and_slash_forms():
    from tasknotes_mcp.dates import get_date_part
    assert get_date_part("2024-03-05T09:30") == "2024-03-05"
    assert get_date_part("2024-03-05T09:30:15.123") == "2024-03-05"
    assert get_date_part("2024-03-05 09:30") == "2024-03-05"
    assert get_date_part("2024/03/05") == "2024-03-05"


@pytest.mark.parametrize("bad", ["2024-13-01", "2024-02-30", "not a date", "", None])
def test_invalid_dates_return_none(bad):
    from tasknotes_mcp.dates import parse_date_to_utc, parse_date_to_local
    assert parse_date_to_utc(bad) is None
    assert parse_date_to_local(bad) is None


def test_offset_datetime_uses_local_calendar_day():
    from tasknotes_mcp.dates import get_date_part
    from zoneinfo import ZoneInfo
    tokyo = ZoneInfo("Asia/Tokyo")
    # 20:00 UTC is 05:00 the next day in Tokyo
    assert get_date_part("2024-03-05T20:00:00Z", tokyo) == "2024-03-06"
    assert get_date_part("2024-03-05T20:00:00Z", timezone.utc) == "2024-03-05"


def test_utc_anchor_does_not_drift_near_midnight():
    from tasknotes_mcp.dates import (
        convert_utc_to_local_calendar_date,
        create_utc_date_from_local_calendar_date,
        format_date_for_storage,
    )
    from zoneinfo import ZoneInfo
    la = ZoneInfo("America/Los_Angeles")
    late_evening = datetime(2024, 3, 5, 23, 30, tzinfo=la)
    anchored = create_utc_date_from_local_calendar_date(late_evening, la)
    assert anchored == datetime(2024, 3, 5, tzinfo=timezone.utc)
    assert convert_utc_to_local_calendar_date(anchored) == date(2024, 3, 5)
    assert format_date_for_storage(anchored) == "2024-03-05"


def test_format_date_for_storage_is_zero_padded():
    from tasknotes_mcp.dates import format_date_for_storage
    assert format_date_for_storage(date(987, 1, 2)) == "0987-01-02"


def test_has_time_component():
    from tasknotes_mcp.dates import has_time_component
    assert has_time_component("2024-03-05T09:00")
    assert not has_time_component("2024-03-05")
    assert not has_time_component(None)


def test_is_before_compares_days_unless_both_have_times():
    from tasknotes_mcp.dates import is_before_date_time_aware
    assert is_before_date_time_aware("2024-03-04", "2024-03-05")
    assert not is_before_date_time_aware("2024-03-05T08:00", "2024-03-05")
    assert is_before_date_time_aware("2024-03-05T08:00", "2024-03-05T09:00")
    assert not is_before_date_time_aware("garbage", "2024-03-05")


def test_is_same_date_safe():
    from tasknotes_mcp.dates import is_same_date_safe
    assert is_same_date_safe("2024-03-05", "2024-03-05T18:00")
    assert not is_same_date_safe("2024-03-05", None)


def test_resolve_natural_language_dates():
    from tasknotes_mcp.dates import is_natural_language_date, resolve_natural_language_date
    ref = date(2024, 3, 5)
    assert resolve_natural_language_date("today", ref) == "2024-03-05"
    assert resolve_natural_language_date("Tomorrow", ref) == "2024-03-06"
    assert resolve_natural_language_date("yesterday", ref) == "2024-03-04"
    assert resolve_natural_language_date("next week", ref) == "2024-03-12"
    assert resolve_natural_language_date("in 3 days", ref) == "2024-03-08"
    assert resolve_natural_language_date("2 days ago", ref) == "2024-03-03"
    assert resolve_natural_language_date("2024-01-01", ref) == "2024-01-01"
    assert is_natural_language_date("in 10 days")
    assert not is_natural_language_date("2024-01-01")


def test_add_days():
    from tasknotes_mcp.dates import add_days
    assert add_days(date(2024, 2, 28), 2) == date(2024, 3, 1)
    assert add_days(date(2024, 3, 1), -1) == date(2024, 2, 29)


@pytest.fixture
def new_york_system_zone(monkeypatch):
    """Point the process-local zone at New York for the duration of a test."""
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


@pytest.mark.skipif(not hasattr(time, "tzset"), reason="needs time.tzset")
def test_system_zone_uses_offset_in_force_at_each_instant(new_york_system_zone):
    from tasknotes_mcp.dates import get_date_part
    # 04:30Z in January is 23:30 EST the day before
    assert get_date_part("2024-01-01T04:30:00Z") == "2023-12-31"
    # 03:30Z in July is 23:30 EDT the day before
    assert get_date_part("2024-07-01T03:30:00Z") == "2024-06-30"
    assert get_date_part("2024-07-01T04:30:00Z") == "2024-07-01"


def test_unknown_named_zone_warns_and_falls_back(caplog):
    import logging
    from tasknotes_mcp.dates import get_local_timezone
    from dateutil.tz import tzlocal
    with caplog.at_level(logging.WARNING, logger="tasknotes_mcp.dates"):
        zone = get_local_timezone("Mars/Olympus_Mons")
    assert isinstance(zone, tzlocal)
    assert "Mars/Olympus_Mons" in caplog.text


def test_named_zone_is_used_when_valid():
    from zoneinfo import ZoneInfo
    from tasknotes_mcp.dates import get_local_timezone
    assert get_local_timezone("Asia/Tokyo") == ZoneInfo("Asia/Tokyo")
