"""Static table of filterable task properties and their operators.

The set of properties is closed: the built-ins below plus ``user:<fieldId>``
for user-defined fields, whose value kind comes from the field's declared type.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from tasknotes_mcp.models import EvaluationContext, TaskRecord

USER_PROPERTY_PREFIX = "user:"


class FilterOperator(str, Enum):
    IS = "is"
    IS_NOT = "is-not"
    CONTAINS = "contains"
    DOES_NOT_CONTAIN = "does-not-contain"
    IS_BEFORE = "is-before"
    IS_AFTER = "is-after"
    IS_ON_OR_BEFORE = "is-on-or-before"
    IS_ON_OR_AFTER = "is-on-or-after"
    IS_EMPTY = "is-empty"
    IS_NOT_EMPTY = "is-not-empty"
    IS_CHECKED = "is-checked"
    IS_NOT_CHECKED = "is-not-checked"
    IS_GREATER_THAN = "is-greater-than"
    IS_LESS_THAN = "is-less-than"
    IS_GREATER_THAN_OR_EQUAL = "is-greater-than-or-equal"
    IS_LESS_THAN_OR_EQUAL = "is-less-than-or-equal"


class ValueKind(str, Enum):
    """Shape of the value input a condition needs."""
    TEXT = "text"
    SELECT = "select"
    DATE = "date"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NONE = "none"


O = FilterOperator

NO_VALUE_OPERATORS = frozenset({O.IS_EMPTY, O.IS_NOT_EMPTY, O.IS_CHECKED, O.IS_NOT_CHECKED})

# Operators an empty task value can satisfy.
ABSENCE_OPERATORS = frozenset({O.IS_EMPTY, O.IS_NOT, O.DOES_NOT_CONTAIN, O.IS_NOT_CHECKED})

_EMPTY_CHECKS = (O.IS_EMPTY, O.IS_NOT_EMPTY)
_CHECKBOX = (O.IS_CHECKED, O.IS_NOT_CHECKED)
_LIST_OPS = (O.CONTAINS, O.DOES_NOT_CONTAIN, *_EMPTY_CHECKS)
_DATE_OPS = (O.IS, O.IS_NOT, O.IS_BEFORE, O.IS_AFTER, O.IS_ON_OR_BEFORE, O.IS_ON_OR_AFTER, *_EMPTY_CHECKS)
_NUMBER_OPS = (
    O.IS, O.IS_NOT,
    O.IS_GREATER_THAN, O.IS_LESS_THAN, O.IS_GREATER_THAN_OR_EQUAL, O.IS_LESS_THAN_OR_EQUAL,
)


@dataclass(frozen=True)
class PropertyDefinition:
    id: str
    label: str
    category: str
    kind: ValueKind
    operators: tuple[FilterOperator, ...]


FILTER_PROPERTIES: dict[str, PropertyDefinition] = {
    p.id: p
    for p in (
        PropertyDefinition("title", "Title", "text", ValueKind.TEXT,
                           (O.IS, O.IS_NOT, O.CONTAINS, O.DOES_NOT_CONTAIN, *_EMPTY_CHECKS)),
        PropertyDefinition("path", "Path", "text", ValueKind.TEXT, _LIST_OPS),
        PropertyDefinition("status", "Status", "select", ValueKind.SELECT, (O.IS, O.IS_NOT, *_EMPTY_CHECKS)),
        PropertyDefinition("priority", "Priority", "select", ValueKind.SELECT, (O.IS, O.IS_NOT, *_EMPTY_CHECKS)),
        PropertyDefinition("tags", "Tags", "select", ValueKind.SELECT, _LIST_OPS),
        PropertyDefinition("contexts", "Contexts", "select", ValueKind.SELECT, _LIST_OPS),
        PropertyDefinition("projects", "Projects", "select", ValueKind.SELECT, _LIST_OPS),
        PropertyDefinition("blockedBy", "Blocked by", "select", ValueKind.SELECT, _LIST_OPS),
        PropertyDefinition("blocking", "Blocking", "select", ValueKind.SELECT, _LIST_OPS),
        PropertyDefinition("due", "Due date", "date", ValueKind.DATE, _DATE_OPS),
        PropertyDefinition("scheduled", "Scheduled date", "date", ValueKind.DATE, _DATE_OPS),
        PropertyDefinition("completedDate", "Completed date", "date", ValueKind.DATE, _DATE_OPS),
        PropertyDefinition("dateCreated", "Created date", "date", ValueKind.DATE, _DATE_OPS),
        PropertyDefinition("dateModified", "Modified date", "date", ValueKind.DATE, _DATE_OPS),
        PropertyDefinition("archived", "Archived", "boolean", ValueKind.BOOLEAN, _CHECKBOX),
        PropertyDefinition("dependencies.isBlocked", "Blocked", "boolean", ValueKind.BOOLEAN, _CHECKBOX),
        PropertyDefinition("dependencies.isBlocking", "Blocking others", "boolean", ValueKind.BOOLEAN, _CHECKBOX),
        PropertyDefinition("timeEstimate", "Time estimate", "numeric", ValueKind.NUMBER, _NUMBER_OPS),
        PropertyDefinition("recurrence", "Recurrence", "special", ValueKind.NONE, _EMPTY_CHECKS),
        PropertyDefinition("status.isCompleted", "Completed", "special", ValueKind.BOOLEAN, _CHECKBOX),
    )
}

DATE_PROPERTIES = frozenset(pid for pid, p in FILTER_PROPERTIES.items() if p.kind is ValueKind.DATE)

_USER_KIND = {
    "text": ValueKind.TEXT,
    "list": ValueKind.TEXT,
    "number": ValueKind.NUMBER,
    "date": ValueKind.DATE,
    "boolean": ValueKind.BOOLEAN,
}

SORT_KEYS = (
    "due", "scheduled", "priority", "status", "title", "path",
    "dateCreated", "dateModified", "completedDate", "timeEstimate",
)

GROUP_KEYS = (
    "none", "status", "priority", "context", "project", "tag",
    "due", "scheduled", "completedDate",
)


def is_user_property(property_id: str) -> bool:
    return isinstance(property_id, str) and property_id.startswith(USER_PROPERTY_PREFIX)


def user_field_id(property_id: str) -> str:
    return property_id[len(USER_PROPERTY_PREFIX):]


def parse_operator(raw: str) -> FilterOperator | None:
    try:
        return FilterOperator(raw)
    except ValueError:
        return None


def get_property_definition(property_id: str) -> PropertyDefinition | None:
    return FILTER_PROPERTIES.get(property_id)


def get_valid_operators(property_id: str) -> tuple[FilterOperator, ...]:
    """Operators allowed for a property; empty for unknown or placeholder ids."""
    if is_user_property(property_id):
        return tuple(FilterOperator)
    definition = FILTER_PROPERTIES.get(property_id)
    return definition.operators if definition else ()


def operator_requires_value(operator: str | FilterOperator) -> bool:
    op = parse_operator(operator) if isinstance(operator, str) else operator
    return op not in NO_VALUE_OPERATORS


def is_date_property(property_id: str, context: EvaluationContext | None = None) -> bool:
    if property_id in DATE_PROPERTIES:
        return True
    if is_user_property(property_id) and context is not None:
        field = context.get_user_field(user_field_id(property_id))
        return field is not None and field.type == "date"
    return False


def get_value_input_kind(
    property_id: str,
    operator: str | FilterOperator,
    context: EvaluationContext | None = None,
) -> ValueKind:
    """Which value editor a condition needs, or NONE for unary operators."""
    if not operator_requires_value(operator):
        return ValueKind.NONE
    if is_user_property(property_id):
        field = context.get_user_field(user_field_id(property_id)) if context else None
        return _USER_KIND.get(field.type, ValueKind.TEXT) if field else ValueKind.TEXT
    definition = FILTER_PROPERTIES.get(property_id)
    return definition.kind if definition else ValueKind.NONE


def is_valid_sort_key(key: str) -> bool:
    return key in SORT_KEYS or is_user_property(key)


def is_valid_group_key(key: str) -> bool:
    return key in GROUP_KEYS or is_user_property(key)


def build_filter_options(tasks: Iterable[TaskRecord], context: EvaluationContext) -> dict[str, list]:
    """Options for select-type properties, resolved from registries and the task set."""
    tags: set[str] = set()
    contexts: set[str] = set()
    projects: set[str] = set()
    folders: set[str] = set()
    for t in tasks:
        tags.update(x for x in t.tags if x)
        contexts.update(x for x in t.contexts if x)
        projects.update(x for x in t.projects if x)
        if t.folder:
            folders.add(t.folder)
    return {
        "statuses": [s.model_dump(by_alias=True) for s in sorted(context.statuses, key=lambda s: s.order)],
        "priorities": [
            p.model_dump(by_alias=True)
            for p in sorted(context.priorities, key=lambda p: p.weight, reverse=True)
        ],
        "tags": sorted(tags, key=str.lower),
        "contexts": sorted(contexts, key=str.lower),
        "projects": sorted(projects, key=str.lower),
        "folders": sorted(folders, key=str.lower),
        "userProperties": [f.model_dump(by_alias=True) for f in context.user_fields],
    }
