"""Nested-dict helpers for local mirrors of the realtime store."""

from __future__ import annotations

import copy
from typing import Any

from power_switch.store.paths import split_path


def get_in(tree: dict[str, Any], path: str) -> Any:
    """Return a deep copy of the value at path, or None if absent."""
    node: Any = tree
    for segment in split_path(path):
        if not isinstance(node, dict) or segment not in node:
            return None
        node = node[segment]
    return copy.deepcopy(node)


def set_in(tree: dict[str, Any], path: str, value: Any) -> None:
    """Replace the value at path. None deletes it, as in the store."""
    segments = split_path(path)
    if not segments:
        tree.clear()
        if isinstance(value, dict):
            tree.update(copy.deepcopy(value))
        return

    node = tree
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            if value is None:
                return
            child = {}
            node[segment] = child
        node = child

    if value is None:
        node.pop(segments[-1], None)
    else:
        node[segments[-1]] = copy.deepcopy(value)


def merge_in(tree: dict[str, Any], path: str, children: dict[str, Any]) -> None:
    """Merge children into the mapping at path (multi-location update)."""
    for key, value in children.items():
        set_in(tree, f"{path}/{key}", value)
