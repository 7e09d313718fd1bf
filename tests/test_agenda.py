"""Agenda partitioning: every matching task lands in one day, overdue, or nowhere."""

import pytest
from datetime import date

TODAY = date(2024, 3, 5)
YESTERDAY = "2024-03-04"


def _make_task(title, **fields):
    from tasknotes_mcp.models import TaskRecord
    data = {"path": f"Tasks/{title}.md", "title": title, "status": "open"}
    data.update(fields)
    return TaskRecord.model_validate(data)


def _ctx(**kwargs):
    from tasknotes_mcp.models import EvaluationContext
    return EvaluationContext(today=TODAY, timezone="UTC", **kwargs)


def _week():
    from tasknotes_mcp.queries import build_agenda_dates
    return build_agenda_dates(TODAY, 7)


def _placements(agenda, title):
    """Where a task ended up: day ISO strings plus 'overdue'."""
    found = [d.date.isoformat() for d in agenda.daily if any(t.title == title for t in d.tasks)]
    if any(t.title == title for t in agenda.overdue):
        found.append("overdue")
    return found


def test_build_agenda_dates():
    from tasknotes_mcp.queries import build_agenda_dates
    assert build_agenda_dates(date(2024, 2, 28), 3) == [date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1)]


def test_due_yesterday_goes_to_overdue():
    from tasknotes_mcp.queries import partition_agenda
    agenda = partition_agenda([_make_task("Late", due=YESTERDAY)], _week(), True, _ctx())
    assert _placements(agenda, "Late") == ["overdue"]


def test_due_today_goes_to_today_only():
    from tasknotes_mcp.queries import partition_agenda
    agenda = partition_agenda([_make_task("Now", due="2024-03-05")], _week(), True, _ctx())
    assert _placements(agenda, "Now") == ["2024-03-05"]


def test_stale_recurring_instance_is_overdue():
    from tasknotes_mcp.queries import partition_agenda
    task = _make_task("Water", scheduled=YESTERDAY, recurrence="FREQ=DAILY")
    agenda = partition_agenda([task], _week(), True, _ctx())
    assert _placements(agenda, "Water") == ["overdue"]


def test_recurring_scheduled_today_is_not_overdue():
    from tasknotes_mcp.queries import partition_agenda
    task = _make_task("Water", scheduled="2024-03-05", recurrence="FREQ=DAILY")
    agenda = partition_agenda([task], _week(), True, _ctx())
    assert _placements(agenda, "Water") == ["2024-03-05"]


def test_editing_due_moves_task_on_next_evaluation():
    from tasknotes_mcp.queries import get_agenda_data
    task = _make_task("Report", due=YESTERDAY)
    before = get_agenda_data([task], _week(), context=_ctx())
    assert _placements(before, "Report") == ["overdue"]

    edited = task.model_copy(update={"due": "2024-03-05"})
    after = get_agenda_data([edited], _week(), context=_ctx())
    assert _placements(after, "Report") == ["2024-03-05"]


def test_completed_overdue_hidden_by_default():
    from tasknotes_mcp.queries import partition_agenda
    tasks = [
        _make_task("Done late", due=YESTERDAY, status="done"),
        _make_task("Instance done", scheduled=YESTERDAY, recurrence="FREQ=DAILY", complete_instances=[YESTERDAY]),
    ]
    agenda = partition_agenda(tasks, _week(), True, _ctx())
    assert agenda.overdue == []
    assert all(not day.tasks for day in agenda.daily)

    shown = partition_agenda(tasks, _week(), True, _ctx(hide_completed_from_overdue=False))
    assert [t.title for t in shown.overdue] == ["Done late", "Instance done"]


def test_without_overdue_section_past_tasks_are_dropped():
    from tasknotes_mcp.queries import partition_agenda
    agenda = partition_agenda([_make_task("Late", due=YESTERDAY)], _week(), False, _ctx())
    assert _placements(agenda, "Late") == []


def test_undated_and_out_of_range_tasks_are_dropped():
    from tasknotes_mcp.queries import partition_agenda
    tasks = [_make_task("Someday"), _make_task("Next month", due="2024-04-10")]
    agenda = partition_agenda(tasks, _week(), True, _ctx())
    assert _placements(agenda, "Someday") == []
    assert _placements(agenda, "Next month") == []


def test_recurring_task_lands_in_one_bucket_only():
    from tasknotes_mcp.queries import partition_agenda
    task = _make_task("Daily", scheduled="2024-03-05", recurrence="FREQ=DAILY")
    agenda = partition_agenda([task], _week(), True, _ctx())
    assert sum(len(day.tasks) for day in agenda.daily) + len(agenda.overdue) == 1


def test_undated_weekly_task_files_under_next_occurrence():
    from tasknotes_mcp.queries import partition_agenda
    task = _make_task("Review", dateCreated="2024-03-01", recurrence="FREQ=WEEKLY;BYDAY=MO")
    agenda = partition_agenda([task], _week(), True, _ctx())
    assert _placements(agenda, "Review") == ["2024-03-11"]


def test_completion_anchor_instance_can_be_overdue():
    from tasknotes_mcp.queries import partition_agenda
    task = _make_task(
        "Stretch",
        dateCreated="2024-02-01",
        recurrence="FREQ=DAILY",
        recurrence_anchor="completion",
        complete_instances=["2024-03-01"],
    )
    agenda = partition_agenda([task], _week(), True, _ctx())
    assert _placements(agenda, "Stretch") == ["overdue"]


def test_bucket_order_follows_input_order():
    from tasknotes_mcp.queries import partition_agenda
    tasks = [_make_task("B", due="2024-03-06"), _make_task("A", due="2024-03-06")]
    agenda = partition_agenda(tasks, _week(), True, _ctx())
    assert [t.title for t in agenda.daily[1].tasks] == ["B", "A"]


def test_no_task_is_duplicated_or_lost():
    from tasknotes_mcp.queries import partition_agenda
    tasks = [
        _make_task("Late", due=YESTERDAY),
        _make_task("Now", due="2024-03-05"),
        _make_task("Friday", scheduled="2024-03-08"),
        _make_task("Daily", scheduled="2024-03-01", recurrence="FREQ=DAILY"),
        _make_task("Weekly", scheduled="2024-03-06", recurrence="FREQ=WEEKLY"),
    ]
    agenda = partition_agenda(tasks, _week(), True, _ctx())
    placed = [t.title for day in agenda.daily for t in day.tasks] + [t.title for t in agenda.overdue]
    assert sorted(placed) == sorted(t.title for t in tasks)


def test_empty_dates_give_empty_agenda():
    from tasknotes_mcp.queries import partition_agenda
    agenda = partition_agenda([_make_task("Now", due="2024-03-05")], [], True, _ctx())
    assert agenda.daily == [] and agenda.overdue == []


def test_get_agenda_data_filters_and_sorts():
    from tasknotes_mcp.models import FilterCondition, FilterQuery
    from tasknotes_mcp.queries import get_agenda_data
    query = FilterQuery(
        children=[FilterCondition(id="c1", property="status", operator="is", value="open")],
        sort_key="priority",
    )
    tasks = [
        _make_task("Low", due="2024-03-05", priority="low"),
        _make_task("Closed", due="2024-03-05", status="done"),
        _make_task("High", due="2024-03-05", priority="high"),
    ]
    agenda = get_agenda_data(tasks, _week(), query, True, _ctx())
    assert [t.title for t in agenda.daily[0].tasks] == ["High", "Low"]
    assert agenda.daily_buckets[0] == agenda.daily[0].tasks


@pytest.mark.parametrize("due,expected", [
    ("2024-03-05T00:30:00+02:00", ["overdue"]),
    ("2024-03-05T23:59:00", ["2024-03-05"]),
])
def test_times_are_bucketed_by_local_calendar_day(due, expected):
    from tasknotes_mcp.queries import partition_agenda
    agenda = partition_agenda([_make_task("Timed", due=due)], _week(), True, _ctx())
    assert _placements(agenda, "Timed") == expected


def test_utc_anchored_target_dates_are_accepted():
    from tasknotes_mcp.dates import create_utc_date_from_local_calendar_date, parse_date_to_utc
    from tasknotes_mcp.queries import get_agenda_data, partition_agenda
    dates = [parse_date_to_utc("2024-03-05"), parse_date_to_utc("2024-03-06")]
    tasks = [_make_task("Late", due=YESTERDAY), _make_task("Next", due="2024-03-06")]
    agenda = partition_agenda(tasks, dates, True, _ctx())
    assert _placements(agenda, "Late") == ["overdue"]
    assert _placements(agenda, "Next") == ["2024-03-06"]
    assert [d.date for d in agenda.daily] == [date(2024, 3, 5), date(2024, 3, 6)]

    anchored = [create_utc_date_from_local_calendar_date(date(2024, 3, 5))]
    agenda = get_agenda_data([_make_task("Now", due="2024-03-05")], anchored, context=_ctx())
    assert _placements(agenda, "Now") == ["2024-03-05"]


def test_daily_buckets_follow_the_order_of_the_given_dates():
    from tasknotes_mcp.queries import partition_agenda
    dates = [date(2024, 3, 7), date(2024, 3, 5), date(2024, 3, 6)]
    tasks = [
        _make_task("Late", due=YESTERDAY),
        _make_task("Thursday", due="2024-03-07"),
        _make_task("Water", scheduled="2024-03-05", recurrence="FREQ=DAILY"),
    ]
    agenda = partition_agenda(tasks, dates, True, _ctx())
    assert [d.date for d in agenda.daily] == dates
    assert [t.title for t in agenda.daily_buckets[0]] == ["Thursday"]
    assert [t.title for t in agenda.daily_buckets[1]] == ["Water"]
    assert agenda.daily_buckets[2] == []
    assert _placements(agenda, "Late") == ["overdue"]
