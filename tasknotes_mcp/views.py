"""Saved views: named filter queries and the matcher that detects which one is active."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from tasknotes_mcp.models import FilterQuery, SavedView
from tasknotes_mcp.search import generate_id

logger = logging.getLogger(__name__)

# View-level keys that do not change which tasks a query selects.
_PRESENTATION_FIELDS = {"sort_key", "sort_direction", "group_key", "subgroup_key"}

_VIEWS_ADAPTER = TypeAdapter(list[SavedView])


def _filter_shape(query: FilterQuery) -> dict:
    return query.model_dump(mode="json", by_alias=True, exclude=_PRESENTATION_FIELDS)


def queries_match(a: FilterQuery, b: FilterQuery) -> bool:
    """Structural equality of two queries, ignoring sort and grouping."""
    return _filter_shape(a) == _filter_shape(b)


def find_active_view(query: FilterQuery, views: list[SavedView]) -> SavedView | None:
    """The most recently created view whose filters match *query*."""
    for view in reversed(views):
        if queries_match(query, view.query):
            return view
    return None


class SavedViewStore:
    """Saved views in creation order, optionally persisted to a JSON file."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path).expanduser() if path else None
        self._views: list[SavedView] = []

    def load(self) -> None:
        """Read views from disk. A missing file means no views; a corrupt one is logged and ignored."""
        if self.path is None or not self.path.exists():
            self._views = []
            return
        try:
            self._views = _VIEWS_ADAPTER.validate_json(self.path.read_bytes())
        except (ValidationError, OSError) as e:
            logger.warning(f"Could not load saved views from {self.path}: {e}")
            self._views = []

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(_VIEWS_ADAPTER.dump_json(self._views, by_alias=True, indent=2))

    def list_views(self) -> list[SavedView]:
        return list(self._views)

    def get_view(self, view_id: str) -> SavedView | None:
        for view in self._views:
            if view.id == view_id:
                return view
        return None

    def create_view(
        self,
        name: str,
        query: FilterQuery,
        view_options: Optional[dict[str, Any]] = None,
        visible_properties: Optional[list[str]] = None,
    ) -> SavedView:
        view = SavedView(
            id=generate_id("view"),
            name=name,
            query=query.model_copy(deep=True),
            view_options=view_options,
            visible_properties=visible_properties,
        )
        self._views.append(view)
        self.save()
        return view

    def delete_view(self, view_id: str) -> bool:
        """Remove a view. Returns False when no view has that id."""
        remaining = [v for v in self._views if v.id != view_id]
        if len(remaining) == len(self._views):
            return False
        self._views = remaining
        self.save()
        return True

    def find_active(self, query: FilterQuery) -> SavedView | None:
        return find_active_view(query, self._views)
