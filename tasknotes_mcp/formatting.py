"""Response formatting helpers for TaskNotes MCP.

Provides consistent Markdown and JSON formatting across all tools.
Markdown is the default, kept compact for LLM readability.
"""

from __future__ import annotations

import json
from typing import Any

from tasknotes_mcp.models import AgendaData, EvaluationContext, FilterCondition, FilterGroup, SavedView, TaskRecord

CHARACTER_LIMIT = 25_000


# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------

def status_label(status: str, context: EvaluationContext) -> str:
    """Registry label for a status value, or the raw value."""
    for s in context.statuses:
        if s.value == status:
            return s.label or s.value
    return status or "None"


def priority_label(priority: str, context: EvaluationContext) -> str:
    for p in context.priorities:
        if p.value == priority:
            return p.label or p.value
    return priority or "None"


def _checkbox(task: TaskRecord, context: EvaluationContext) -> str:
    return "x" if context.is_completed_status(task.status) else " "


# ---------------------------------------------------------------------------
# Markdown formatters
# ---------------------------------------------------------------------------

def format_task_md(task: TaskRecord, context: EvaluationContext) -> str:
    """Format a single task as Markdown."""
    lines = [f"## {task.title or 'Untitled'}"]
    lines.append(f"- **Path**: `{task.path}`")
    lines.append(f"- **Status**: {status_label(task.status, context)}")
    if task.priority:
        lines.append(f"- **Priority**: {priority_label(task.priority, context)}")
    if task.due:
        lines.append(f"- **Due**: {task.due}")
    if task.scheduled:
        lines.append(f"- **Scheduled**: {task.scheduled}")
    if task.recurrence:
        lines.append(f"- **Recurrence**: `{task.recurrence}` ({task.recurrence_anchor.value})")
    if task.tags:
        lines.append(f"- **Tags**: {', '.join(task.tags)}")
    if task.contexts:
        lines.append(f"- **Contexts**: {', '.join(task.contexts)}")
    if task.projects:
        lines.append(f"- **Projects**: {', '.join(task.projects)}")
    if task.time_estimate:
        lines.append(f"- **Estimate**: {task.time_estimate:g} min")
    if task.archived:
        lines.append("- **Archived**: yes")
    return "\n".join(lines)


def format_task_line(task: TaskRecord, context: EvaluationContext) -> str:
    """One-line checklist form used inside groups and agenda days."""
    parts = [f"- [{_checkbox(task, context)}] {task.title or 'Untitled'}"]
    if task.priority and task.priority != "none":
        parts.append(f"({priority_label(task.priority, context)})")
    if task.due:
        parts.append(f"due {task.due}")
    elif task.scheduled:
        parts.append(f"scheduled {task.scheduled}")
    if task.is_recurring:
        parts.append("[recurring]")
    parts.append(f"`{task.path}`")
    return " ".join(parts)


def format_tasks_md(tasks: list[TaskRecord], context: EvaluationContext, title: str = "Tasks") -> str:
    """Format a flat list of tasks as Markdown."""
    if not tasks:
        return "No tasks found."
    lines = [f"# {title} ({len(tasks)})", ""]
    lines.extend(format_task_line(t, context) for t in tasks)
    return "\n".join(lines)


def format_groups_md(groups: dict[str, Any], context: EvaluationContext, title: str = "Tasks") -> str:
    """Format grouped tasks; nested dicts render as subgroups."""
    total = len({t.path for t in _iter_grouped(groups)})
    if total == 0:
        return "No tasks found."
    lines = [f"# {title} ({total})"]
    for name, members in groups.items():
        lines.append("")
        if isinstance(members, dict):
            lines.append(f"## {name}")
            for sub, sub_members in members.items():
                lines.append(f"### {sub} ({len(sub_members)})")
                lines.extend(format_task_line(t, context) for t in sub_members)
        else:
            if name != "all":
                lines.append(f"## {name} ({len(members)})")
            lines.extend(format_task_line(t, context) for t in members)
    return "\n".join(lines)


def _iter_grouped(groups: dict[str, Any]):
    for members in groups.values():
        if isinstance(members, dict):
            yield from _iter_grouped(members)
        else:
            yield from members


def format_agenda_md(agenda: AgendaData, context: EvaluationContext) -> str:
    """Format an agenda: overdue section first, then one section per day."""
    lines = ["# Agenda"]
    if agenda.overdue:
        lines.append("")
        lines.append(f"## Overdue ({len(agenda.overdue)})")
        lines.extend(format_task_line(t, context) for t in agenda.overdue)
    for day in agenda.daily:
        lines.append("")
        lines.append(f"## {day.date.strftime('%a %Y-%m-%d')} ({len(day.tasks)})")
        if day.tasks:
            lines.extend(format_task_line(t, context) for t in day.tasks)
        else:
            lines.append("_Nothing scheduled_")
    return "\n".join(lines)


def format_filter_node_md(node: FilterCondition | FilterGroup, depth: int = 0) -> str:
    """Render a filter tree as an indented outline."""
    pad = "  " * depth
    if isinstance(node, FilterCondition):
        value = "" if node.value is None else f" `{node.value}`"
        prop = node.property or "(no property)"
        op = node.operator or "(no operator)"
        return f"{pad}- {prop} {op}{value}"
    conj = node.conjunction.value if hasattr(node.conjunction, "value") else node.conjunction
    lines = [f"{pad}- {conj.upper()} group `{node.id}`"]
    for child in node.children:
        lines.append(format_filter_node_md(child, depth + 1))
    return "\n".join(lines)


def format_saved_views_md(views: list[SavedView], active_id: str | None = None) -> str:
    if not views:
        return "No saved views."
    lines = [f"# Saved views ({len(views)})"]
    for v in views:
        marker = " (active)" if v.id == active_id else ""
        lines.append("")
        lines.append(f"## {v.name}{marker}")
        lines.append(f"- **ID**: `{v.id}`")
        lines.append(f"- **Sort**: {v.query.sort_key} {v.query.sort_direction.value}")
        if v.query.group_key != "none":
            lines.append(f"- **Group**: {v.query.group_key}")
        if v.visible_properties:
            lines.append(f"- **Properties**: {', '.join(v.visible_properties)}")
        lines.append(format_filter_node_md(v.query))
    return "\n".join(lines)


def format_filter_options_md(options: dict[str, list]) -> str:
    lines = ["# Filter options"]
    for key in ("statuses", "priorities"):
        entries = options.get(key) or []
        if entries:
            lines.append("")
            lines.append(f"## {key.capitalize()}")
            for e in entries:
                lines.append(f"- `{e.get('value')}` {e.get('label', '')}".rstrip())
    for key in ("tags", "contexts", "projects", "folders"):
        values = options.get(key) or []
        if values:
            lines.append("")
            lines.append(f"## {key.capitalize()} ({len(values)})")
            lines.append(", ".join(values))
    fields = options.get("userProperties") or []
    if fields:
        lines.append("")
        lines.append("## User properties")
        for f in fields:
            lines.append(f"- `user:{f.get('id')}` {f.get('displayName', '')} ({f.get('type', 'text')})")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# JSON formatters
# ---------------------------------------------------------------------------

def task_to_dict(task: TaskRecord) -> dict:
    return task.model_dump(mode="json", by_alias=True, exclude_defaults=True)


def agenda_to_dict(agenda: AgendaData) -> dict:
    return {
        "overdue": [task_to_dict(t) for t in agenda.overdue],
        "daily": [
            {"date": day.date.isoformat(), "tasks": [task_to_dict(t) for t in day.tasks]}
            for day in agenda.daily
        ],
    }


def groups_to_dict(groups: dict[str, Any]) -> dict:
    return {
        name: groups_to_dict(members) if isinstance(members, dict) else [task_to_dict(t) for t in members]
        for name, members in groups.items()
    }


def format_json(data: Any) -> str:
    """Format data as indented JSON string."""
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------

def truncate_response(response: str) -> str:
    """Truncate response if it exceeds CHARACTER_LIMIT."""
    if len(response) <= CHARACTER_LIMIT:
        return response
    return (
        response[:CHARACTER_LIMIT]
        + "\n\n---\n"
        + f"**Response truncated** ({len(response):,} chars, limit {CHARACTER_LIMIT:,}). "
        + "Narrow the query or shorten the agenda range."
    )
