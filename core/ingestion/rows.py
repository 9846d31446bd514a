"""
Raw row model shared by all format parsers.

A raw row is a mapping from column name to a small closed set of value
shapes: text, number, boolean, missing, a list of values, or a nested
mapping (tagged-markup feeds). Rows are produced fresh on every pass and
never persisted.
"""

from __future__ import annotations

from typing import Any, Final, Optional, Union

RowValue = Union[str, int, float, bool, None, list["RowValue"], dict[str, "RowValue"]]
RawRow = dict[str, RowValue]

# Feeds wrap their row array in a handful of containers at most
MAX_SEARCH_DEPTH: Final[int] = 64


def find_first_list(node: Any, max_depth: int = MAX_SEARCH_DEPTH) -> Optional[list]:
    """
    Depth-first search for the first list anywhere in a parsed object graph.

    Mappings are searched in key order. The search gives up below
    `max_depth` levels of nesting.

    Returns:
        The first list found, or None
    """
    if isinstance(node, list):
        return node
    if not isinstance(node, dict) or max_depth <= 0:
        return None
    for value in node.values():
        found = find_first_list(value, max_depth - 1)
        if found is not None:
            return found
    return None


def as_rows(items: list) -> list[RawRow]:
    """Keep only mapping-shaped entries of a located row list."""
    return [item for item in items if isinstance(item, dict)]
