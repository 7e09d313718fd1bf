"""TaskNotes MCP Server: filter queries, saved views and agenda over TaskNotes.

Task records are read from the TaskNotes HTTP API; filtering, search, saved
view matching, recurrence state and agenda bucketing run locally.

Usage:
    python -m tasknotes_mcp          # streamable-http transport (default)
    MCP_TRANSPORT=stdio python -m tasknotes_mcp
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator

import httpx
from fastmcp import Context, FastMCP
from pydantic import ValidationError

from tasknotes_mcp.client import TaskNotesAPIError, TaskNotesClient
from tasknotes_mcp.dates import format_date_for_storage, get_local_timezone, get_today_local
from tasknotes_mcp.filters import (
    FilterValidationError,
    evaluate,
    is_query_meaningful,
    normalize_query,
    validate_query,
)
from tasknotes_mcp.formatting import (
    agenda_to_dict,
    format_agenda_md,
    format_filter_node_md,
    format_filter_options_md,
    format_groups_md,
    format_json,
    format_saved_views_md,
    groups_to_dict,
    truncate_response,
)
from tasknotes_mcp.models import (
    CheckQueryInput,
    DeleteViewInput,
    EvaluationContext,
    GetAgendaInput,
    GetFilterOptionsInput,
    ListSavedViewsInput,
    MatchSavedViewInput,
    NextOccurrenceInput,
    PriorityConfig,
    QueryTasksInput,
    ResponseFormat,
    SaveViewInput,
    SetSearchTermInput,
    StatusConfig,
    TaskInstanceInput,
    TaskRecord,
    UserField,
)
from tasknotes_mcp.queries import build_agenda_dates, get_agenda_data, group_tasks, sort_tasks
from tasknotes_mcp.recurrence import (
    get_effective_status,
    get_next_uncompleted_occurrence,
    toggle_instance_skipped,
)
from tasknotes_mcp.registry import build_filter_options
from tasknotes_mcp.search import get_search_term, set_search_term
from tasknotes_mcp.views import SavedViewStore

logger = logging.getLogger(__name__)

_FALSE_STRINGS = {"0", "false", "no", "off"}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def build_evaluation_context(filter_options: dict | None = None) -> EvaluationContext:
    """Evaluation context from the environment plus the API's registries, when known."""
    hide = os.getenv("TASKNOTES_HIDE_COMPLETED_FROM_OVERDUE", "true").strip().lower()
    ctx = EvaluationContext(
        timezone=os.getenv("TASKNOTES_TIMEZONE") or None,
        hide_completed_from_overdue=hide not in _FALSE_STRINGS,
    )
    if not filter_options:
        return ctx
    try:
        statuses = [StatusConfig.model_validate(s) for s in filter_options.get("statuses") or []]
        priorities = [PriorityConfig.model_validate(p) for p in filter_options.get("priorities") or []]
        fields = [UserField.model_validate(f) for f in filter_options.get("userProperties") or []]
    except ValidationError as e:
        logger.warning(f"Ignoring malformed registries from filter options: {e.error_count()} errors")
        return ctx
    update = {}
    if statuses:
        update["statuses"] = statuses
    if priorities:
        update["priorities"] = priorities
    if fields:
        update["user_fields"] = fields
    return ctx.model_copy(update=update)


# ---------------------------------------------------------------------------
# Lifespan: shared client, saved views and evaluation context
# ---------------------------------------------------------------------------

@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[dict]:
    """Create the API client and load saved views at startup, close on shutdown.

    Status/priority registries are taken from the API when it is reachable;
    otherwise the TaskNotes defaults are used.
    """
    client = TaskNotesClient()
    views = SavedViewStore(os.getenv("TASKNOTES_VIEWS_FILE") or None)
    views.load()
    logger.info(f"Loaded {len(views.list_views())} saved views")

    filter_options = None
    try:
        filter_options = await client.get_filter_options()
        logger.info(f"Connected to TaskNotes API at {client.base_url}")
    except (TaskNotesAPIError, httpx.HTTPError) as e:
        logger.warning(f"Filter options unavailable, using default registries: {e}")

    try:
        yield {
            "tasknotes": client,
            "views": views,
            "eval_context": build_evaluation_context(filter_options),
        }
    finally:
        await client.close()


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "tasknotes_mcp",
    instructions=(
        "Filter, search and plan TaskNotes tasks. Tools are prefixed with "
        "'tasknotes_' and support Markdown and JSON output. Queries are "
        "FilterQuery JSON: a root group {conjunction, children} whose children "
        "are conditions {type:'condition', id, property, operator, value} or "
        "nested groups. Use tasknotes_get_filter_options to discover valid "
        "statuses, priorities, tags and user properties, and "
        "tasknotes_check_query to validate a query before saving it."
    ),
    lifespan=app_lifespan,
)


# ---------------------------------------------------------------------------
# Error handler
# ---------------------------------------------------------------------------

def _handle_error(e: Exception) -> str:
    """Convert exceptions to LLM-friendly error messages."""
    if isinstance(e, TaskNotesAPIError):
        if e.status_code == 401:
            return (
                "Error: Authentication failed. Check TASKNOTES_API_TOKEN matches the "
                "API token set in the TaskNotes plugin settings."
            )
        if e.status_code == 404:
            return "Error: Task not found. Check the task path (e.g., 'Tasks/Water plants.md')."
        return f"Error: TaskNotes API returned status {e.status_code}: {e.detail}"
    if isinstance(e, FilterValidationError):
        location = []
        if e.node_id:
            location.append(f"node `{e.node_id}`")
        if e.field:
            location.append(f"field `{e.field}`")
        where = f" ({', '.join(location)})" if location else ""
        return f"Error: Invalid query{where}: {e.message}"
    if isinstance(e, ValueError):
        return f"Error: Invalid input: {e}"
    return f"Error: {type(e).__name__}: {e}"


def _get_client(ctx) -> TaskNotesClient:
    """Extract the TaskNotes client from request context."""
    return ctx.request_context.lifespan_context["tasknotes"]


def _get_views(ctx) -> SavedViewStore:
    return ctx.request_context.lifespan_context["views"]


def _get_eval_context(ctx) -> EvaluationContext:
    """Evaluation context for this request, with today pinned."""
    base: EvaluationContext = ctx.request_context.lifespan_context["eval_context"]
    if base.today is not None:
        return base
    return base.model_copy(update={"today": get_today_local(get_local_timezone(base.timezone))})


async def _fetch_all_tasks(ctx, include_archived: bool = False) -> list[TaskRecord]:
    """Fetch every task from the API, dropping archived ones unless asked for."""
    tasks = await _get_client(ctx).get_all_tasks()
    if include_archived:
        return tasks
    return [t for t in tasks if not t.archived]


async def _get_task_or_raise(ctx, path: str) -> TaskRecord:
    task = await _get_client(ctx).get_task_info(path)
    if task is None:
        raise TaskNotesAPIError(404, f"No task at {path}")
    return task


def _instance_day(raw: str | None, eval_ctx: EvaluationContext) -> date:
    return date.fromisoformat(raw) if raw else eval_ctx.today


# ===================================================================
# QUERY TOOLS
# ===================================================================


@mcp.tool(
    name="tasknotes_query_tasks",
    annotations={
        "title": "Query TaskNotes Tasks",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True,
    },
)
async def tasknotes_query_tasks(params: QueryTasksInput, ctx: Context) -> str:
    """Filter, sort and group all tasks with a FilterQuery.

    Conditions that are still incomplete (no property, or no value for an
    operator that needs one) are ignored. Results are grouped by the query's
    groupKey and ordered by its sortKey.

    Args:
        params: Contains query, optional search_term, include_archived and response_format.

    Returns:
        Grouped Markdown checklist, or JSON {group: [task]}.

    Examples:
        - "High priority work tasks" -> query with priority is 'high' AND contexts contains 'work'
        - "Anything mentioning invoice" -> search_term="invoice"
    """
    try:
        eval_ctx = _get_eval_context(ctx)
        query = normalize_query(params.query)
        if params.search_term:
            query = set_search_term(query, params.search_term)
        tasks = await _fetch_all_tasks(ctx, params.include_archived)
        if is_query_meaningful(query):
            tasks = [t for t in tasks if evaluate(query, t, eval_ctx)]
        ordered = sort_tasks(tasks, query.sort_key, query.sort_direction, eval_ctx)
        groups = group_tasks(ordered, query.group_key, eval_ctx, query.subgroup_key)

        if params.response_format == ResponseFormat.JSON:
            return truncate_response(format_json({"total": len(tasks), "groups": groups_to_dict(groups)}))
        return truncate_response(format_groups_md(groups, eval_ctx))
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="tasknotes_get_agenda",
    annotations={
        "title": "Get TaskNotes Agenda",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True,
    },
)
async def tasknotes_get_agenda(params: GetAgendaInput, ctx: Context) -> str:
    """Day-by-day agenda with an Overdue section.

    Each task is listed once: under the first agenda day it falls on, or
    under Overdue when its date is before the first day. Recurring tasks
    appear on the days their rule occurs.

    Args:
        params: Contains start_date, days, optional query, show_overdue_section and response_format.

    Returns:
        Markdown agenda, or JSON {overdue: [...], daily: [{date, tasks}]}.

    Examples:
        - "What's on this week?" -> call with defaults
        - "Next two weeks of work tasks" -> days=14, query on contexts
    """
    try:
        eval_ctx = _get_eval_context(ctx)
        start = date.fromisoformat(params.start_date) if params.start_date else eval_ctx.today
        query = normalize_query(params.query)
        tasks = await _fetch_all_tasks(ctx)
        agenda = get_agenda_data(
            tasks,
            build_agenda_dates(start, params.days),
            query,
            params.show_overdue_section,
            eval_ctx,
        )
        if params.response_format == ResponseFormat.JSON:
            return truncate_response(format_json(agenda_to_dict(agenda)))
        return truncate_response(format_agenda_md(agenda, eval_ctx))
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="tasknotes_set_search_term",
    annotations={
        "title": "Set Search Term in Query",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def tasknotes_set_search_term(params: SetSearchTermInput, ctx: Context) -> str:
    """Return the query with a title search added, replaced or removed.

    Existing filters are kept intact inside a wrapper group so the search is
    ANDed with them. An empty term removes the search and restores the
    original structure.

    Args:
        params: Contains query and term.

    Returns:
        JSON FilterQuery.
    """
    try:
        updated = set_search_term(normalize_query(params.query), params.term)
        return format_json(updated.model_dump(mode="json", by_alias=True))
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="tasknotes_check_query",
    annotations={
        "title": "Validate a Filter Query",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def tasknotes_check_query(params: CheckQueryInput, ctx: Context) -> str:
    """Validate a FilterQuery and describe it.

    Reports the first problem found (unknown operator for a property, missing
    value, duplicate node id, unknown sort/group key) or an outline of the
    query when it is valid.

    Args:
        params: Contains query.

    Returns:
        "Valid query" plus an outline, or an error message.
    """
    try:
        query = validate_query(params.query)
        lines = ["Valid query", "", format_filter_node_md(query)]
        term = get_search_term(query)
        if term:
            lines.append(f"\nSearch term: `{term}`")
        lines.append(f"\nSort: {query.sort_key} {query.sort_direction.value}; group: {query.group_key}")
        return "\n".join(lines)
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="tasknotes_get_filter_options",
    annotations={
        "title": "Get Filter Options",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True,
    },
)
async def tasknotes_get_filter_options(params: GetFilterOptionsInput, ctx: Context) -> str:
    """List values usable in conditions: statuses, priorities, tags, contexts, projects, folders.

    Args:
        params: Contains response_format.

    Returns:
        Markdown sections or a JSON object of option lists.
    """
    try:
        eval_ctx = _get_eval_context(ctx)
        tasks = await _fetch_all_tasks(ctx, include_archived=True)
        options = build_filter_options(tasks, eval_ctx)
        if params.response_format == ResponseFormat.JSON:
            return truncate_response(format_json(options))
        return truncate_response(format_filter_options_md(options))
    except Exception as e:
        return _handle_error(e)


# ===================================================================
# SAVED VIEW TOOLS
# ===================================================================


@mcp.tool(
    name="tasknotes_list_saved_views",
    annotations={
        "title": "List Saved Views",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def tasknotes_list_saved_views(params: ListSavedViewsInput, ctx: Context) -> str:
    """List saved views in creation order."""
    try:
        views = _get_views(ctx).list_views()
        if params.response_format == ResponseFormat.JSON:
            return format_json([v.model_dump(mode="json", by_alias=True) for v in views])
        return format_saved_views_md(views)
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="tasknotes_save_view",
    annotations={
        "title": "Save Query as View",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False,
    },
)
async def tasknotes_save_view(params: SaveViewInput, ctx: Context) -> str:
    """Save a query under a name. The query is validated first.

    Args:
        params: Contains name, query and optional visible_properties.

    Returns:
        Confirmation with the new view ID.
    """
    try:
        query = validate_query(params.query, strict=False)
        view = _get_views(ctx).create_view(
            params.name, query, visible_properties=params.visible_properties
        )
        return f"Saved view **{view.name}** (ID: `{view.id}`)"
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="tasknotes_delete_view",
    annotations={
        "title": "Delete Saved View",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def tasknotes_delete_view(params: DeleteViewInput, ctx: Context) -> str:
    """Delete a saved view by ID."""
    try:
        if not _get_views(ctx).delete_view(params.view_id):
            return f"Error: No saved view with ID `{params.view_id}`. Use tasknotes_list_saved_views to find IDs."
        return f"Deleted view `{params.view_id}`"
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="tasknotes_match_saved_view",
    annotations={
        "title": "Find Matching Saved View",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def tasknotes_match_saved_view(params: MatchSavedViewInput, ctx: Context) -> str:
    """Find the saved view whose filters equal the given query.

    Sort and grouping settings are ignored. When several views match, the
    most recently created one wins.
    """
    try:
        query = normalize_query(params.query)
        view = _get_views(ctx).find_active(query)
        if view is None:
            return "No saved view matches this query."
        return f"Matches saved view **{view.name}** (ID: `{view.id}`)"
    except Exception as e:
        return _handle_error(e)


# ===================================================================
# RECURRENCE TOOLS
# ===================================================================


@mcp.tool(
    name="tasknotes_get_effective_status",
    annotations={
        "title": "Get Task Status on a Date",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True,
    },
)
async def tasknotes_get_effective_status(params: TaskInstanceInput, ctx: Context) -> str:
    """Status of a task on one day: open, completed or skipped.

    For recurring tasks this reads the per-day completion and skip lists;
    other tasks report their own status.

    Args:
        params: Contains task_path and optional date (default today).
    """
    try:
        eval_ctx = _get_eval_context(ctx)
        task = await _get_task_or_raise(ctx, params.task_path)
        day = _instance_day(params.date, eval_ctx)
        status = get_effective_status(task, day, eval_ctx)
        kind = "recurring" if task.is_recurring else "one-off"
        return f"**{task.title or task.path}** ({kind}) on {format_date_for_storage(day)}: {status.value}"
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="tasknotes_toggle_instance",
    annotations={
        "title": "Toggle Task Completion on a Date",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": True,
    },
)
async def tasknotes_toggle_instance(params: TaskInstanceInput, ctx: Context) -> str:
    """Toggle completion of one day's instance of a recurring task.

    Completing an instance also clears a skip on that day. One-off tasks
    toggle between the registry's completed status and 'open'.

    Args:
        params: Contains task_path and optional date (default today).
    """
    try:
        client = _get_client(ctx)
        eval_ctx = _get_eval_context(ctx)
        task = await _get_task_or_raise(ctx, params.task_path)
        day = _instance_day(params.date, eval_ctx)

        if task.is_recurring:
            updated = await client.complete_recurring_instance(task.path, format_date_for_storage(day))
        else:
            done = eval_ctx.is_completed_status(task.status)
            new_status = "open" if done else eval_ctx.completed_status_value()
            updated = await client.update_task(task.path, {"status": new_status})

        status = get_effective_status(updated, day, eval_ctx)
        return f"**{updated.title or updated.path}** on {format_date_for_storage(day)} is now {status.value}"
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="tasknotes_skip_instance",
    annotations={
        "title": "Skip a Recurring Instance",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": True,
    },
)
async def tasknotes_skip_instance(params: TaskInstanceInput, ctx: Context) -> str:
    """Toggle the skip of one day's instance of a recurring task.

    Skipping an instance also clears its completion on that day.
    """
    try:
        eval_ctx = _get_eval_context(ctx)
        task = await _get_task_or_raise(ctx, params.task_path)
        if not task.is_recurring:
            return f"Error: `{task.path}` is not a recurring task."
        day = _instance_day(params.date, eval_ctx)
        toggled = toggle_instance_skipped(task, day)
        updated = await _get_client(ctx).update_task(
            task.path,
            {
                "complete_instances": toggled.complete_instances,
                "skipped_instances": toggled.skipped_instances,
            },
        )
        status = get_effective_status(updated, day, eval_ctx)
        return f"**{updated.title or updated.path}** on {format_date_for_storage(day)} is now {status.value}"
    except Exception as e:
        return _handle_error(e)


@mcp.tool(
    name="tasknotes_next_occurrence",
    annotations={
        "title": "Next Open Occurrence",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True,
    },
)
async def tasknotes_next_occurrence(params: NextOccurrenceInput, ctx: Context) -> str:
    """Next instance of a recurring task that is neither completed nor skipped.

    Tasks anchored on completion restart their rule from the latest
    completion; scheduled-anchored tasks follow the rule from its start.
    """
    try:
        task = await _get_task_or_raise(ctx, params.task_path)
        if not task.is_recurring:
            return f"Error: `{task.path}` is not a recurring task."
        nxt = get_next_uncompleted_occurrence(task)
        if nxt is None:
            return f"**{task.title or task.path}** has no remaining occurrences."
        anchor = task.recurrence_anchor.value
        return f"**{task.title or task.path}** next occurs on {format_date_for_storage(nxt)} ({anchor} anchor)"
    except Exception as e:
        return _handle_error(e)
