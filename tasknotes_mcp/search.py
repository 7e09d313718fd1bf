"""Splice a free-text title search into a filter query.

The search lives in a single condition (id prefix ``search_``, property
``title``, operator ``contains``) directly under the root. When other filters
exist they are moved into one wrapper group so the search is ANDed with them
regardless of the root's original conjunction.
"""

from __future__ import annotations

import itertools
import time

from tasknotes_mcp.models import Conjunction, FilterCondition, FilterGroup, FilterQuery

SEARCH_ID_PREFIX = "search_"
WRAPPER_ID_PREFIX = "search_wrapper_"

_counter = itertools.count(1)


def generate_id(prefix: str = "filter") -> str:
    """Unique node id, e.g. ``filter_1718000000000_3``."""
    return f"{prefix}_{int(time.time() * 1000)}_{next(_counter)}"


def is_search_condition(node: FilterCondition | FilterGroup) -> bool:
    return (
        isinstance(node, FilterCondition)
        and node.id.startswith(SEARCH_ID_PREFIX)
        and not node.id.startswith(WRAPPER_ID_PREFIX)
        and node.property == "title"
        and node.operator == "contains"
    )


def _find_search_condition(query: FilterGroup) -> FilterCondition | None:
    for child in query.children:
        if is_search_condition(child):
            return child
    return None


def get_search_term(query: FilterGroup) -> str:
    """The active search term, or '' when the query has no search condition."""
    condition = _find_search_condition(query)
    if condition is None or not isinstance(condition.value, str):
        return ""
    return condition.value


def set_search_term(query: FilterQuery, term: str | None) -> FilterQuery:
    """Return a copy of *query* with its search condition set to *term*.

    An empty or blank term removes the search and unwraps the filters it had
    wrapped. The input query is not modified. Repeating a call with the same
    term yields an identical tree, because the ids of the previous search
    condition and wrapper group are reused.
    """
    result = query.model_copy(deep=True)

    # Remove phase
    previous = _find_search_condition(result)
    previous_wrapper_id = None
    if previous is not None:
        result.children = [c for c in result.children if c is not previous]
        if len(result.children) == 1 and isinstance(result.children[0], FilterGroup):
            wrapper = result.children[0]
            previous_wrapper_id = wrapper.id
            result.children = wrapper.children
            result.conjunction = wrapper.conjunction

    cleaned = (term or "").strip()
    if not cleaned:
        return result

    # Add phase
    search = FilterCondition(
        id=previous.id if previous is not None else generate_id("search"),
        property="title",
        operator="contains",
        value=cleaned,
    )
    others = [c for c in result.children if not is_search_condition(c)]
    if not others:
        result.children = [search]
        return result

    wrapper = FilterGroup(
        id=previous_wrapper_id or generate_id("search_wrapper"),
        conjunction=result.conjunction,
        children=others,
    )
    result.children = [search, wrapper]
    result.conjunction = Conjunction.AND
    return result
