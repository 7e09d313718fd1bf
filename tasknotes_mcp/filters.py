"""Filter-tree evaluation, completeness checks and validation.

Pure functions over the pydantic filter tree in models.py. A condition whose
property or operator is unknown never matches; a condition that is still being
built (no property, or a missing required value) is skipped entirely.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Iterator, Optional

from pydantic import ValidationError

from tasknotes_mcp.dates import (
    get_date_part,
    get_local_timezone,
    get_today_local,
    is_before_date_time_aware,
    is_same_date_safe,
    resolve_natural_language_date,
)
from tasknotes_mcp.models import (
    EvaluationContext,
    FilterCondition,
    FilterGroup,
    FilterQuery,
    TaskRecord,
)
from tasknotes_mcp.registry import (
    ABSENCE_OPERATORS,
    FilterOperator,
    ValueKind,
    get_valid_operators,
    get_value_input_kind,
    is_date_property,
    is_user_property,
    is_valid_group_key,
    is_valid_sort_key,
    operator_requires_value,
    parse_operator,
    user_field_id,
)
from tasknotes_mcp.search import generate_id

logger = logging.getLogger(__name__)

_NUMBER_PREFIX_RE = re.compile(r"^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")

_TRUE_STRINGS = frozenset({"true", "yes", "1", "x"})


class FilterValidationError(ValueError):
    """A filter node failed validation."""

    def __init__(self, message: str, field: str | None = None, node_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.node_id = node_id


class _UnknownProperty(Exception):
    pass


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def is_empty_value(value: Any) -> bool:
    """None, blank strings, and lists holding only blank strings are empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, list):
        return all(
            isinstance(item, str) and item.strip() in ("", '""', "''")
            for item in value
        )
    return False


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        m = _NUMBER_PREFIX_RE.match(value)
        if m:
            return float(m.group(0))
    return None


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return value is True


def _coerce_user_value(raw: Any, field_type: str) -> Any:
    if raw is None:
        return None
    if field_type == "number":
        return _to_number(raw)
    if field_type == "boolean":
        return _to_bool(raw)
    if field_type == "list":
        if isinstance(raw, list):
            return [str(item) for item in raw if item is not None]
        return [part.strip() for part in str(raw).split(",") if part.strip()]
    if isinstance(raw, list):
        return [str(item) for item in raw if item is not None]
    return str(raw)


_PROPERTY_GETTERS = {
    "title": lambda t, ctx: t.title,
    "path": lambda t, ctx: t.path,
    "status": lambda t, ctx: t.status,
    "priority": lambda t, ctx: t.priority,
    "tags": lambda t, ctx: t.tags,
    "contexts": lambda t, ctx: t.contexts,
    "projects": lambda t, ctx: t.projects,
    "blockedBy": lambda t, ctx: t.blocked_by,
    "blocking": lambda t, ctx: t.blocking,
    "due": lambda t, ctx: t.due,
    "scheduled": lambda t, ctx: t.scheduled,
    "completedDate": lambda t, ctx: t.completed_date,
    "dateCreated": lambda t, ctx: t.date_created,
    "dateModified": lambda t, ctx: t.date_modified,
    "archived": lambda t, ctx: t.archived,
    "timeEstimate": lambda t, ctx: t.time_estimate,
    "recurrence": lambda t, ctx: t.recurrence,
    "status.isCompleted": lambda t, ctx: ctx.is_completed_status(t.status),
    "dependencies.isBlocked": lambda t, ctx: t.is_blocked,
    "dependencies.isBlocking": lambda t, ctx: t.is_blocking,
}


def get_task_property_value(task: TaskRecord, property_id: str, context: EvaluationContext) -> Any:
    """Read *property_id* from *task*. Raises _UnknownProperty for ids outside the table."""
    getter = _PROPERTY_GETTERS.get(property_id)
    if getter is not None:
        return getter(task, context)
    if is_user_property(property_id):
        fid = user_field_id(property_id)
        field = context.get_user_field(fid)
        if field is None:
            return _coerce_user_value(task.custom_properties.get(fid), "text")
        raw = task.custom_properties.get(field.key, task.custom_properties.get(field.id))
        return _coerce_user_value(raw, field.type)
    raise _UnknownProperty(property_id)


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------

def matches_hierarchical_tag(task_tag: str, condition_tag: str) -> bool:
    """'a/b' matches 'a/b', 'a/b/c', and (substring fallback) 'x/a/b'."""
    if not task_tag or not condition_tag:
        return False
    t = task_tag.lower()
    c = condition_tag.lower()
    return t == c or t.startswith(c + "/") or c in t


def matches_tag_conditions(task_tags: list[str], condition_tags: list[str]) -> bool:
    """Inclusions match if any hits; any '-tag' exclusion hit rejects."""
    if not condition_tags:
        return True
    inclusions = [c for c in condition_tags if isinstance(c, str) and not c.startswith("-")]
    exclusions = [c[1:] for c in condition_tags if isinstance(c, str) and c.startswith("-") and c[1:]]
    for pattern in exclusions:
        if any(matches_hierarchical_tag(t, pattern) for t in task_tags):
            return False
    if inclusions:
        return any(matches_hierarchical_tag(t, p) for p in inclusions for t in task_tags)
    return True


def _is_equal(task_value: Any, cond_value: Any, property_id: str, ctx: EvaluationContext, today) -> bool:
    if (
        is_date_property(property_id, ctx)
        and isinstance(task_value, str)
        and isinstance(cond_value, str)
    ):
        tz = get_local_timezone(ctx.timezone)
        resolved = resolve_natural_language_date(cond_value, today)
        return is_same_date_safe(get_date_part(task_value, tz), get_date_part(resolved, tz), tz)
    if get_value_input_kind(property_id, FilterOperator.IS, ctx) is ValueKind.NUMBER:
        a, b = _to_number(task_value), _to_number(cond_value)
        return a is not None and a == b
    if isinstance(task_value, list):
        if isinstance(cond_value, list):
            return any(tv in cond_value for tv in task_value)
        return cond_value in task_value
    if isinstance(cond_value, list):
        return task_value in cond_value
    return task_value == cond_value


def _contains(task_value: Any, cond_value: Any, property_id: str) -> bool:
    tags = property_id == "tags"
    if isinstance(task_value, list):
        haystack = [tv for tv in task_value if isinstance(tv, str)]
    elif isinstance(task_value, str):
        haystack = [task_value]
    else:
        return False
    if isinstance(cond_value, list):
        needles = [cv for cv in cond_value if isinstance(cv, str)]
    elif isinstance(cond_value, str):
        needles = [cond_value]
    elif cond_value is None:
        needles = [""]
    else:
        needles = [str(cond_value)]
    if tags:
        return matches_tag_conditions(haystack, needles)
    return any(n.lower() in h.lower() for n in needles for h in haystack)


def _compare_dates(task_value: Any, cond_value: Any, operator: FilterOperator, ctx: EvaluationContext, today) -> bool:
    if not isinstance(task_value, str) or not isinstance(cond_value, str):
        return False
    if not task_value or not cond_value:
        return False
    tz = get_local_timezone(ctx.timezone)
    resolved = resolve_natural_language_date(cond_value, today)
    if get_date_part(resolved, tz) is None:
        logger.debug(f"Unparseable date in condition value: {cond_value!r}")
        return False
    same_day = is_same_date_safe(get_date_part(task_value, tz), get_date_part(resolved, tz), tz)
    if operator is FilterOperator.IS_BEFORE:
        return is_before_date_time_aware(task_value, resolved, tz)
    if operator is FilterOperator.IS_AFTER:
        return is_before_date_time_aware(resolved, task_value, tz)
    if operator is FilterOperator.IS_ON_OR_BEFORE:
        return is_before_date_time_aware(task_value, resolved, tz) or same_day
    return is_before_date_time_aware(resolved, task_value, tz) or same_day


def _compare_numbers(task_value: Any, cond_value: Any, operator: FilterOperator) -> bool:
    a, b = _to_number(task_value), _to_number(cond_value)
    if a is None or b is None:
        return False
    if operator is FilterOperator.IS_GREATER_THAN:
        return a > b
    if operator is FilterOperator.IS_LESS_THAN:
        return a < b
    if operator is FilterOperator.IS_GREATER_THAN_OR_EQUAL:
        return a >= b
    return a <= b


_DATE_COMPARISONS = frozenset({
    FilterOperator.IS_BEFORE, FilterOperator.IS_AFTER,
    FilterOperator.IS_ON_OR_BEFORE, FilterOperator.IS_ON_OR_AFTER,
})
_NUMBER_COMPARISONS = frozenset({
    FilterOperator.IS_GREATER_THAN, FilterOperator.IS_LESS_THAN,
    FilterOperator.IS_GREATER_THAN_OR_EQUAL, FilterOperator.IS_LESS_THAN_OR_EQUAL,
})


def apply_operator(
    task_value: Any,
    operator: FilterOperator,
    cond_value: Any,
    property_id: str,
    context: EvaluationContext,
) -> bool:
    """Apply one operator. Empty task values only satisfy the absence-style operators."""
    if is_empty_value(task_value):
        return operator in ABSENCE_OPERATORS
    if operator is FilterOperator.IS_EMPTY:
        return False
    if operator is FilterOperator.IS_NOT_EMPTY:
        return True
    if operator is FilterOperator.IS_CHECKED:
        return _to_bool(task_value)
    if operator is FilterOperator.IS_NOT_CHECKED:
        return not _to_bool(task_value)

    today = context.today or get_today_local(get_local_timezone(context.timezone))
    if operator is FilterOperator.IS:
        return _is_equal(task_value, cond_value, property_id, context, today)
    if operator is FilterOperator.IS_NOT:
        return not _is_equal(task_value, cond_value, property_id, context, today)
    if operator is FilterOperator.CONTAINS:
        return _contains(task_value, cond_value, property_id)
    if operator is FilterOperator.DOES_NOT_CONTAIN:
        return not _contains(task_value, cond_value, property_id)
    if operator in _DATE_COMPARISONS:
        return _compare_dates(task_value, cond_value, operator, context, today)
    return _compare_numbers(task_value, cond_value, operator)


# ---------------------------------------------------------------------------
# Completeness
# ---------------------------------------------------------------------------

def is_condition_complete(condition: FilterCondition) -> bool:
    if not condition.property:
        return False
    return not operator_requires_value(condition.operator) or not is_empty_value(condition.value)


def has_complete_conditions(node: FilterCondition | FilterGroup) -> bool:
    if isinstance(node, FilterCondition):
        return is_condition_complete(node)
    return any(has_complete_conditions(child) for child in node.children)


def is_complete(node: FilterCondition | FilterGroup) -> bool:
    """A group with no children counts as complete (it matches everything)."""
    if isinstance(node, FilterCondition):
        return is_condition_complete(node)
    return not node.children or has_complete_conditions(node)


def is_query_meaningful(query: FilterGroup) -> bool:
    """False while the only conditions are half-built placeholders."""
    return not query.children or has_complete_conditions(query)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _evaluate_condition(condition: FilterCondition, task: TaskRecord, context: EvaluationContext) -> bool:
    operator = parse_operator(condition.operator)
    if operator is None:
        logger.debug(f"Unknown operator {condition.operator!r} on node {condition.id}")
        return False
    try:
        value = get_task_property_value(task, condition.property, context)
    except _UnknownProperty:
        logger.debug(f"Unknown property {condition.property!r} on node {condition.id}")
        return False
    return apply_operator(value, operator, condition.value, condition.property, context)


def evaluate(
    node: FilterCondition | FilterGroup,
    task: TaskRecord,
    context: EvaluationContext | None = None,
) -> bool:
    """Evaluate a filter node against one task.

    Incomplete conditions are ignored; a group with no complete children is
    vacuously true.
    """
    if task is None:
        raise TypeError("evaluate() requires a task record, got None")
    ctx = context or EvaluationContext()
    if isinstance(node, FilterCondition):
        if not is_condition_complete(node):
            return True
        return _evaluate_condition(node, task, ctx)

    active = [child for child in node.children if is_complete(child)]
    if not active:
        return True
    if node.conjunction == "or":
        return any(evaluate(child, task, ctx) for child in active)
    return all(evaluate(child, task, ctx) for child in active)


def filter_tasks(
    tasks: Iterable[TaskRecord],
    query: FilterGroup,
    context: EvaluationContext | None = None,
) -> list[TaskRecord]:
    ctx = context or EvaluationContext()
    if not is_query_meaningful(query):
        return list(tasks)
    return [t for t in tasks if evaluate(query, t, ctx)]


# ---------------------------------------------------------------------------
# Tree walking
# ---------------------------------------------------------------------------

def iter_nodes(node: FilterCondition | FilterGroup) -> Iterator[FilterCondition | FilterGroup]:
    yield node
    if isinstance(node, FilterGroup):
        for child in node.children:
            yield from iter_nodes(child)


def collect_node_ids(node: FilterCondition | FilterGroup) -> list[str]:
    return [n.id for n in iter_nodes(node)]


def find_node(node: FilterCondition | FilterGroup, node_id: str) -> FilterCondition | FilterGroup | None:
    for n in iter_nodes(node):
        if n.id == node_id:
            return n
    return None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _validate_condition(condition: FilterCondition, strict: bool) -> None:
    if strict and not condition.property:
        raise FilterValidationError("Property must be selected", "property", condition.id)
    if not condition.property:
        return
    if not condition.operator:
        raise FilterValidationError("Condition must have a valid operator", "operator", condition.id)
    if condition.operator not in get_valid_operators(condition.property):
        raise FilterValidationError(
            f"Operator '{condition.operator}' is not valid for property '{condition.property}'",
            "operator",
            condition.id,
        )
    if strict and operator_requires_value(condition.operator) and is_empty_value(condition.value):
        raise FilterValidationError(
            f"Operator '{condition.operator}' requires a value", "value", condition.id
        )


def validate_filter_node(node: FilterCondition | FilterGroup, strict: bool = True) -> None:
    """Raise FilterValidationError for the first problem found under *node*.

    Non-strict mode tolerates placeholders and missing values, which is the
    state a filter is in while it is still being edited.
    """
    if not node.id:
        raise FilterValidationError("Filter node must have a valid string ID", None, node.id)
    if isinstance(node, FilterCondition):
        _validate_condition(node, strict)
        return
    if node.conjunction not in ("and", "or"):
        raise FilterValidationError("Group must have a valid conjunction (and/or)", "conjunction", node.id)
    for index, child in enumerate(node.children):
        try:
            validate_filter_node(child, strict)
        except FilterValidationError as e:
            raise FilterValidationError(f"Child {index}: {e.message}", e.field, node.id) from e


def validate_query(query: FilterQuery | dict, strict: bool = True) -> FilterQuery:
    """Validate a whole query, including id uniqueness and view keys."""
    if isinstance(query, dict):
        try:
            query = FilterQuery.model_validate(query)
        except ValidationError as e:
            raise FilterValidationError(f"Malformed query: {e.errors()[0]['msg']}") from e
    validate_filter_node(query, strict)

    seen: set[str] = set()
    for node in iter_nodes(query):
        if node.id in seen:
            raise FilterValidationError(f"Duplicate node id '{node.id}'", "id", node.id)
        seen.add(node.id)

    if not is_valid_sort_key(query.sort_key):
        raise FilterValidationError(f"Unknown sort key '{query.sort_key}'", "sortKey", query.id)
    if not is_valid_group_key(query.group_key):
        raise FilterValidationError(f"Unknown group key '{query.group_key}'", "groupKey", query.id)
    if query.subgroup_key and not is_valid_group_key(query.subgroup_key):
        raise FilterValidationError(f"Unknown subgroup key '{query.subgroup_key}'", "subgroupKey", query.id)
    return query


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------

def _repair_node(raw: Any, seen: set[str]) -> Optional[dict]:
    """Fill in missing ids/types and drop nodes that cannot be interpreted."""
    if not isinstance(raw, dict):
        return None
    node = dict(raw)
    node_type = node.get("type")
    if node_type not in ("condition", "group"):
        node_type = "group" if isinstance(node.get("children"), list) else "condition"
        node["type"] = node_type
    node_id = node.get("id")
    if not isinstance(node_id, str) or not node_id or node_id in seen:
        node["id"] = generate_id(node_type)
    seen.add(node["id"])

    if node_type == "group":
        if node.get("conjunction") not in ("and", "or"):
            node["conjunction"] = "and"
        children = node.get("children")
        node["children"] = [
            repaired
            for repaired in (_repair_node(c, seen) for c in (children if isinstance(children, list) else []))
            if repaired is not None
        ]
    else:
        if not isinstance(node.get("property"), str):
            node["property"] = ""
        if not isinstance(node.get("operator"), str):
            node["operator"] = ""
    return node


def _view_keys(raw: dict) -> dict:
    """The valid sort/group settings of *raw*, keyed by their wire names."""
    keys = {}
    for wire, snake, check in (
        ("sortKey", "sort_key", is_valid_sort_key),
        ("groupKey", "group_key", is_valid_group_key),
        ("subgroupKey", "subgroup_key", is_valid_group_key),
    ):
        value = raw.get(snake, raw.get(wire))
        if value is None:
            continue
        if isinstance(value, str) and check(value):
            keys[wire] = value
        else:
            logger.warning(f"Dropping invalid {wire} {value!r}")
    direction = raw.get("sort_direction", raw.get("sortDirection"))
    if direction in ("asc", "desc"):
        keys["sortDirection"] = direction
    return keys


def normalize_query(raw: Any) -> FilterQuery:
    """Coerce arbitrary input into a usable FilterQuery.

    A root without a children list or with a conjunction other than
    ``and``/``or`` is replaced by a fresh empty query that keeps only the
    valid sort and group settings. Below a sound root, defects such as
    missing ids, duplicate ids, bad nested conjunctions and junk children
    are repaired in place.
    """
    if raw is None:
        return FilterQuery()
    if isinstance(raw, FilterQuery):
        return raw.model_copy(deep=True)
    if not isinstance(raw, dict):
        logger.warning(f"Malformed filter query of type {type(raw).__name__}; using empty query")
        return FilterQuery()

    view = _view_keys(raw)
    if not isinstance(raw.get("children"), list) or raw.get("conjunction") not in ("and", "or"):
        logger.warning("Filter query root lacks children or a valid conjunction; using empty query")
        return FilterQuery.model_validate(view)

    data = _repair_node({**raw, "type": "group"}, set())
    data["id"] = raw.get("id") if isinstance(raw.get("id"), str) and raw.get("id") else "root"
    for key in ("sort_key", "sortKey", "group_key", "groupKey", "subgroup_key", "subgroupKey",
                "sort_direction", "sortDirection"):
        data.pop(key, None)
    data.update(view)

    try:
        return FilterQuery.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Malformed filter query ({e.error_count()} errors); using empty query")
        return FilterQuery.model_validate(view)
