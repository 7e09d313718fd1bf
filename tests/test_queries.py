import pytest
from datetime import date


def _make_task(title, **fields):
    """Helper to build a TaskRecord from API-style fields."""
    from tasknotes_mcp.models import TaskRecord
    data = {"path": f"Tasks/{title}.md", "title": title, "status": "open"}
    data.update(fields)
    return TaskRecord.model_validate(data)


def _ctx(**kwargs):
    from tasknotes_mcp.models import EvaluationContext
    return EvaluationContext(today=date(2024, 3, 5), timezone="UTC", **kwargs)


def _titles(tasks):
    return [t.title for t in tasks]


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

def test_sort_by_due_puts_missing_last():
    from tasknotes_mcp.queries import sort_tasks
    tasks = [
        _make_task("Later", due="2024-03-10"),
        _make_task("Undated"),
        _make_task("Soon", due="2024-03-01"),
    ]
    assert _titles(sort_tasks(tasks, "due", "asc", _ctx())) == ["Soon", "Later", "Undated"]
    assert _titles(sort_tasks(tasks, "due", "desc", _ctx())) == ["Later", "Soon", "Undated"]


def test_sort_mixes_dates_and_datetimes():
    from tasknotes_mcp.queries import sort_tasks
    tasks = [
        _make_task("Afternoon", due="2024-03-05T15:00:00"),
        _make_task("Morning", due="2024-03-05T09:00:00"),
        _make_task("Day before", due="2024-03-04"),
    ]
    assert _titles(sort_tasks(tasks, "due", "asc", _ctx())) == ["Day before", "Morning", "Afternoon"]


def test_sort_ties_break_on_title():
    from tasknotes_mcp.queries import sort_tasks
    tasks = [
        _make_task("beta", due="2024-03-01"),
        _make_task("Alpha", due="2024-03-01"),
        _make_task("gamma", due="2024-03-01"),
    ]
    assert _titles(sort_tasks(tasks, "due", "asc", _ctx())) == ["Alpha", "beta", "gamma"]


def test_sort_by_priority_highest_first():
    from tasknotes_mcp.queries import sort_tasks
    tasks = [
        _make_task("Low", priority="low"),
        _make_task("Unset"),
        _make_task("High", priority="high"),
        _make_task("Normal", priority="normal"),
    ]
    assert _titles(sort_tasks(tasks, "priority", "asc", _ctx())) == ["High", "Normal", "Low", "Unset"]
    assert _titles(sort_tasks(tasks, "priority", "desc", _ctx())) == ["Low", "Normal", "High", "Unset"]


def test_sort_by_status_follows_registry_order():
    from tasknotes_mcp.queries import sort_tasks
    tasks = [
        _make_task("Finished", status="done"),
        _make_task("Working", status="in-progress"),
        _make_task("Todo", status="open"),
    ]
    assert _titles(sort_tasks(tasks, "status", "asc", _ctx())) == ["Todo", "Working", "Finished"]


def test_sort_by_user_number_field():
    from tasknotes_mcp.models import UserField
    from tasknotes_mcp.queries import sort_tasks
    ctx = _ctx(user_fields=[UserField(id="effort", key="effort", type="number")])
    tasks = [
        _make_task("Big", customProperties={"effort": 8}),
        _make_task("Small", customProperties={"effort": "2"}),
        _make_task("Unknown"),
        _make_task("Medium", customProperties={"effort": 5}),
    ]
    assert _titles(sort_tasks(tasks, "user:effort", "asc", ctx)) == ["Small", "Medium", "Big", "Unknown"]


def test_sort_does_not_mutate_input():
    from tasknotes_mcp.queries import sort_tasks
    tasks = [_make_task("B", due="2024-03-02"), _make_task("A", due="2024-03-01")]
    sort_tasks(tasks, "due", "asc", _ctx())
    assert _titles(tasks) == ["B", "A"]


@pytest.mark.parametrize("value,expected", [
    (None, None),
    ("", None),
    ([], None),
    (3, (0, 3)),
    ("2.5", (0, 2.5)),
    (["x", "y"], (1, "x")),
    ("Hello", (1, "hello")),
])
def test_coerce_for_compare(value, expected):
    from tasknotes_mcp.queries import coerce_for_compare
    assert coerce_for_compare(value) == expected


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def test_group_none_returns_single_group():
    from tasknotes_mcp.queries import group_tasks
    tasks = [_make_task("A"), _make_task("B")]
    groups = group_tasks(tasks, "none", _ctx())
    assert list(groups) == ["all"]
    assert _titles(groups["all"]) == ["A", "B"]


def test_group_by_status_uses_status_order():
    from tasknotes_mcp.queries import group_tasks
    tasks = [
        _make_task("Finished", status="done"),
        _make_task("Custom", status="waiting"),
        _make_task("Todo", status="open"),
    ]
    groups = group_tasks(tasks, "status", _ctx())
    assert list(groups) == ["open", "done", "waiting"]


def test_group_by_priority_highest_first():
    from tasknotes_mcp.queries import group_tasks
    tasks = [_make_task("L", priority="low"), _make_task("H", priority="high"), _make_task("N")]
    groups = group_tasks(tasks, "priority", _ctx())
    assert list(groups) == ["high", "low", "none"]


def test_group_by_tag_places_task_in_each_tag():
    from tasknotes_mcp.queries import group_tasks
    tasks = [
        _make_task("Both", tags=["work", "urgent"]),
        _make_task("Work only", tags=["work"]),
        _make_task("Untagged"),
    ]
    groups = group_tasks(tasks, "tag", _ctx())
    assert list(groups) == ["urgent", "work", "none"]
    assert _titles(groups["work"]) == ["Both", "Work only"]
    assert _titles(groups["urgent"]) == ["Both"]
    assert _titles(groups["none"]) == ["Untagged"]


def test_group_by_due_uses_relative_buckets():
    from tasknotes_mcp.queries import group_tasks
    tasks = [
        _make_task("Far", due="2024-04-01"),
        _make_task("Past", due="2024-03-01"),
        _make_task("Now", due="2024-03-05"),
        _make_task("Next", due="2024-03-06"),
        _make_task("Soonish", due="2024-03-10"),
        _make_task("Never"),
    ]
    groups = group_tasks(tasks, "due", _ctx())
    assert list(groups) == ["Overdue", "Today", "Tomorrow", "This week", "Later", "No date"]
    assert _titles(groups["This week"]) == ["Soonish"]


def test_group_with_subgroups():
    from tasknotes_mcp.queries import group_tasks
    tasks = [
        _make_task("A", status="open", priority="high"),
        _make_task("B", status="open", priority="low"),
        _make_task("C", status="done", priority="high"),
    ]
    groups = group_tasks(tasks, "status", _ctx(), subgroup_key="priority")
    assert list(groups) == ["open", "done"]
    assert list(groups["open"]) == ["high", "low"]
    assert _titles(groups["done"]["high"]) == ["C"]


def test_group_by_user_list_field():
    from tasknotes_mcp.models import UserField
    from tasknotes_mcp.queries import group_tasks
    ctx = _ctx(user_fields=[UserField(id="area", key="area", type="list")])
    tasks = [_make_task("A", customProperties={"area": "home, garden"}), _make_task("B")]
    groups = group_tasks(tasks, "user:area", ctx)
    assert list(groups) == ["garden", "home", "none"]


@pytest.mark.parametrize("value,expected", [
    ("2024-03-04", "Overdue"),
    ("2024-03-05T23:30:00", "Today"),
    ("2024-03-06", "Tomorrow"),
    ("2024-03-12", "This week"),
    ("2024-03-13", "Later"),
    (None, "No date"),
    ("not a date", "No date"),
])
def test_date_bucket(value, expected):
    from tasknotes_mcp.queries import date_bucket
    assert date_bucket(value, date(2024, 3, 5)) == expected
