"""Pydantic models for the TaskNotes filter core and MCP tools.

Domain models (task records, the filter tree, saved views, registries) accept
both the TaskNotes API's camelCase names and snake_case attribute names.
Tool input models use the strict shared config so bad input is caught before
it reaches the core.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ResponseFormat(str, Enum):
    """Output format for tool responses."""
    MARKDOWN = "markdown"
    JSON = "json"


class Conjunction(str, Enum):
    AND = "and"
    OR = "or"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class RecurrenceAnchor(str, Enum):
    """Which date a recurring task's current instance is keyed off."""
    SCHEDULED = "scheduled"
    COMPLETION = "completion"


class EffectiveStatus(str, Enum):
    """Displayable state of a task on one calendar day."""
    OPEN = "open"
    COMPLETED = "completed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Shared model config
# ---------------------------------------------------------------------------

_STRICT_CONFIG = ConfigDict(
    str_strip_whitespace=True,
    validate_assignment=True,
    extra="forbid",
)

_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="ignore",
)


# ---------------------------------------------------------------------------
# Task records
# ---------------------------------------------------------------------------

class TaskRecord(BaseModel):
    """A task as served by the TaskNotes API. Read-only input to the core."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    path: str
    title: str = ""
    status: str = ""
    priority: str = ""
    due: Optional[str] = None
    scheduled: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    contexts: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    recurrence: Optional[str] = None
    recurrence_anchor: RecurrenceAnchor = RecurrenceAnchor.SCHEDULED
    complete_instances: list[str] = Field(default_factory=list)
    skipped_instances: list[str] = Field(default_factory=list)
    completed_date: Optional[str] = Field(default=None, alias="completedDate")
    date_created: Optional[str] = Field(default=None, alias="dateCreated")
    date_modified: Optional[str] = Field(default=None, alias="dateModified")
    archived: bool = False
    time_estimate: Optional[float] = Field(default=None, alias="timeEstimate")
    blocked_by: list[str] = Field(default_factory=list, alias="blockedBy")
    blocking: list[str] = Field(default_factory=list)
    is_blocked: bool = Field(default=False, alias="isBlocked")
    is_blocking: bool = Field(default=False, alias="isBlocking")
    custom_properties: dict[str, Any] = Field(default_factory=dict, alias="customProperties")

    @field_validator("title", "status", "priority", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("archived", "is_blocked", "is_blocking", mode="before")
    @classmethod
    def none_to_false(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("tags", "contexts", "projects", "blocking", "complete_instances",
                     "skipped_instances", mode="before")
    @classmethod
    def coerce_string_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v else []
        return [str(item) for item in v if item is not None]

    @field_validator("blocked_by", mode="before")
    @classmethod
    def flatten_dependencies(cls, v: Any) -> list[str]:
        """The API sends blockedBy as [{uid: ...}]; keep only the uids."""
        if not v:
            return []
        out = []
        for item in v:
            if isinstance(item, dict):
                uid = item.get("uid")
                if uid:
                    out.append(str(uid))
            elif item:
                out.append(str(item))
        return out

    @field_validator("recurrence_anchor", mode="before")
    @classmethod
    def default_unknown_anchor(cls, v: Any) -> Any:
        if v not in ("scheduled", "completion", RecurrenceAnchor.SCHEDULED, RecurrenceAnchor.COMPLETION):
            return RecurrenceAnchor.SCHEDULED
        return v

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurrence and self.recurrence.strip())

    @property
    def folder(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""


# ---------------------------------------------------------------------------
# Filter tree
# ---------------------------------------------------------------------------

FilterValue = Union[str, list[str], int, float, bool, None]


class FilterCondition(BaseModel):
    """Leaf of the filter tree: property <operator> value."""
    model_config = ConfigDict(extra="ignore")

    type: Literal["condition"] = "condition"
    id: str
    property: str = ""
    operator: str = ""
    value: FilterValue = None


class FilterGroup(BaseModel):
    """Inner node: children combined with one conjunction."""
    model_config = ConfigDict(extra="ignore")

    type: Literal["group"] = "group"
    id: str
    conjunction: Conjunction = Conjunction.AND
    children: list[FilterNode] = Field(default_factory=list)


FilterNode = Annotated[Union[FilterCondition, FilterGroup], Field(discriminator="type")]

FilterGroup.model_rebuild()


class FilterQuery(FilterGroup):
    """Root group plus view-level sort and grouping."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str = "root"
    sort_key: str = "due"
    sort_direction: SortDirection = SortDirection.ASC
    group_key: str = "none"
    subgroup_key: Optional[str] = None


class SavedView(BaseModel):
    """A named, persisted filter query."""
    model_config = _WIRE_CONFIG

    id: str
    name: str
    query: FilterQuery
    view_options: Optional[dict[str, Any]] = None
    visible_properties: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# Registries and evaluation context
# ---------------------------------------------------------------------------

class StatusConfig(BaseModel):
    model_config = _WIRE_CONFIG

    value: str
    label: str = ""
    color: str = "#808080"
    is_completed: bool = False
    order: int = 0


class PriorityConfig(BaseModel):
    model_config = _WIRE_CONFIG

    value: str
    label: str = ""
    color: str = "#808080"
    weight: int = 0


class UserField(BaseModel):
    """A user-defined property, filterable as ``user:<id>``."""
    model_config = _WIRE_CONFIG

    id: str
    display_name: str = ""
    key: str
    type: Literal["text", "number", "date", "boolean", "list"] = "text"


DEFAULT_STATUSES = [
    StatusConfig(value="none", label="None", color="#cccccc", is_completed=False, order=0),
    StatusConfig(value="open", label="Open", color="#808080", is_completed=False, order=1),
    StatusConfig(value="in-progress", label="In progress", color="#0066cc", is_completed=False, order=2),
    StatusConfig(value="done", label="Done", color="#00aa00", is_completed=True, order=3),
]

DEFAULT_PRIORITIES = [
    PriorityConfig(value="none", label="None", color="#cccccc", weight=0),
    PriorityConfig(value="low", label="Low", color="#00aa00", weight=1),
    PriorityConfig(value="normal", label="Normal", color="#ffaa00", weight=2),
    PriorityConfig(value="high", label="High", color="#ff0000", weight=3),
]


class EvaluationContext(BaseModel):
    """Everything the core reads besides the query and the tasks."""
    model_config = _WIRE_CONFIG

    statuses: list[StatusConfig] = Field(default_factory=lambda: list(DEFAULT_STATUSES))
    priorities: list[PriorityConfig] = Field(default_factory=lambda: list(DEFAULT_PRIORITIES))
    user_fields: list[UserField] = Field(default_factory=list)
    today: Optional[date] = None
    timezone: Optional[str] = None
    hide_completed_from_overdue: bool = True

    def is_completed_status(self, status: str | None) -> bool:
        return any(s.value == status and s.is_completed for s in self.statuses)

    def status_order(self, status: str | None) -> int | None:
        for s in self.statuses:
            if s.value == status:
                return s.order
        return None

    def priority_weight(self, priority: str | None) -> int | None:
        for p in self.priorities:
            if p.value == priority:
                return p.weight
        return None

    def completed_status_value(self) -> str:
        for s in self.statuses:
            if s.is_completed:
                return s.value
        return "done"

    def get_user_field(self, field_id: str) -> UserField | None:
        for f in self.user_fields:
            if f.id == field_id:
                return f
        return None


# ---------------------------------------------------------------------------
# Agenda results
# ---------------------------------------------------------------------------

class AgendaDay(BaseModel):
    date: date
    tasks: list[TaskRecord] = Field(default_factory=list)


class AgendaData(BaseModel):
    daily: list[AgendaDay] = Field(default_factory=list)
    overdue: list[TaskRecord] = Field(default_factory=list)

    @property
    def daily_buckets(self) -> list[list[TaskRecord]]:
        return [day.tasks for day in self.daily]


# ---------------------------------------------------------------------------
# Tool input models
# ---------------------------------------------------------------------------

class QueryTasksInput(BaseModel):
    """Input for filtering, sorting and grouping all tasks."""
    model_config = _STRICT_CONFIG

    query: Optional[dict[str, Any]] = Field(
        default=None,
        description="FilterQuery JSON (root group with children, sortKey, sortDirection, groupKey). "
                    "Omit to match every task.",
    )
    search_term: Optional[str] = Field(
        default=None,
        description="Free-text title search ANDed with the query (e.g., 'invoice')",
    )
    include_archived: bool = Field(default=False, description="Include archived tasks")
    response_format: ResponseFormat = Field(
        default=ResponseFormat.MARKDOWN,
        description="Output format: 'markdown' (human-readable) or 'json' (machine-readable)",
    )


class GetAgendaInput(BaseModel):
    """Input for the day-by-day agenda with an overdue section."""
    model_config = _STRICT_CONFIG

    start_date: Optional[str] = Field(
        default=None,
        description="First agenda day as YYYY-MM-DD (default: today)",
    )
    days: int = Field(default=7, description="Number of days to show", ge=1, le=62)
    query: Optional[dict[str, Any]] = Field(default=None, description="Optional FilterQuery JSON")
    show_overdue_section: bool = Field(
        default=True,
        description="Collect tasks dated before the first day into an Overdue section",
    )
    response_format: ResponseFormat = Field(default=ResponseFormat.MARKDOWN, description="Output format")

    @field_validator("start_date")
    @classmethod
    def validate_start_date(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                date.fromisoformat(v)
            except ValueError:
                raise ValueError(f"start_date must be YYYY-MM-DD, got: {v}")
        return v


class SetSearchTermInput(BaseModel):
    """Input for splicing a search term into a query."""
    model_config = _STRICT_CONFIG

    query: Optional[dict[str, Any]] = Field(default=None, description="Current FilterQuery JSON")
    term: str = Field(default="", description="Search term; empty string removes the search")


class CheckQueryInput(BaseModel):
    """Input for validating a query."""
    model_config = _STRICT_CONFIG

    query: dict[str, Any] = Field(..., description="FilterQuery JSON to check")


class GetFilterOptionsInput(BaseModel):
    model_config = _STRICT_CONFIG

    response_format: ResponseFormat = Field(default=ResponseFormat.MARKDOWN, description="Output format")


class ListSavedViewsInput(BaseModel):
    model_config = _STRICT_CONFIG

    response_format: ResponseFormat = Field(default=ResponseFormat.MARKDOWN, description="Output format")


class SaveViewInput(BaseModel):
    """Input for saving the current query as a named view."""
    model_config = _STRICT_CONFIG

    name: str = Field(..., description="View name (e.g., 'This week at work')", min_length=1, max_length=200)
    query: dict[str, Any] = Field(..., description="FilterQuery JSON to save")
    visible_properties: Optional[list[str]] = Field(
        default=None,
        description="Task properties to display with this view (e.g., ['due', 'priority'])",
    )


class DeleteViewInput(BaseModel):
    model_config = _STRICT_CONFIG

    view_id: str = Field(..., description="Saved view ID to delete", min_length=1)


class MatchSavedViewInput(BaseModel):
    """Input for finding which saved view a query corresponds to."""
    model_config = _STRICT_CONFIG

    query: dict[str, Any] = Field(..., description="FilterQuery JSON to compare")


class TaskInstanceInput(BaseModel):
    """A task path plus one calendar day of its recurrence."""
    model_config = _STRICT_CONFIG

    task_path: str = Field(..., description="Task file path (e.g., 'Tasks/Water plants.md')", min_length=1)
    date: Optional[str] = Field(
        default=None,
        description="Instance date as YYYY-MM-DD (default: today)",
    )

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                date.fromisoformat(v)
            except ValueError:
                raise ValueError(f"date must be YYYY-MM-DD, got: {v}")
        return v


class NextOccurrenceInput(BaseModel):
    model_config = _STRICT_CONFIG

    task_path: str = Field(..., description="Task file path", min_length=1)
