import json

from tasknotes_mcp.models import FilterCondition, FilterQuery


def _query(value="open", **kwargs):
    return FilterQuery(
        children=[FilterCondition(id="c1", property="status", operator="is", value=value)],
        **kwargs,
    )


def test_queries_match_ignores_sort_and_group():
    from tasknotes_mcp.views import queries_match
    a = _query(sort_key="due", group_key="none")
    b = _query(sort_key="priority", sort_direction="desc", group_key="status", subgroup_key="tag")
    assert queries_match(a, b)
    assert not queries_match(a, _query(value="done"))


def test_find_active_view_prefers_most_recent():
    from tasknotes_mcp.views import SavedViewStore
    store = SavedViewStore()
    store.create_view("Old", _query())
    newer = store.create_view("New", _query(sort_key="title"))
    store.create_view("Other", _query(value="done"))
    assert store.find_active(_query()).id == newer.id


def test_find_active_view_none_when_no_match():
    from tasknotes_mcp.views import find_active_view
    assert find_active_view(_query(), []) is None


def test_created_view_holds_a_copy_of_the_query():
    from tasknotes_mcp.views import SavedViewStore
    store = SavedViewStore()
    query = _query()
    view = store.create_view("Mine", query)
    query.children.clear()
    assert len(view.query.children) == 1


def test_delete_view():
    from tasknotes_mcp.views import SavedViewStore
    store = SavedViewStore()
    view = store.create_view("Gone soon", _query())
    assert store.delete_view(view.id)
    assert not store.delete_view(view.id)
    assert store.list_views() == []


def test_views_persist_to_json(tmp_path):
    from tasknotes_mcp.views import SavedViewStore
    path = tmp_path / "views.json"
    store = SavedViewStore(path)
    store.create_view("Work", _query(), visible_properties=["due", "priority"])

    data = json.loads(path.read_text())
    assert data[0]["name"] == "Work"
    assert data[0]["visibleProperties"] == ["due", "priority"]
    assert data[0]["query"]["sortKey"] == "due"

    reloaded = SavedViewStore(path)
    reloaded.load()
    assert [v.name for v in reloaded.list_views()] == ["Work"]
    assert reloaded.find_active(_query()) is not None


def test_corrupt_views_file_loads_empty(tmp_path):
    from tasknotes_mcp.views import SavedViewStore
    path = tmp_path / "views.json"
    path.write_text("{not json")
    store = SavedViewStore(path)
    store.load()
    assert store.list_views() == []
