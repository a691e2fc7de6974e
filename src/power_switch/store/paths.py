"""Logical store paths shared with the field controller."""

from __future__ import annotations

CONNECTED_PATH = ".info/connected"


def build_paths(root: str = "system") -> dict[str, str]:
    """Build all store paths from a configurable root."""
    root = root.strip("/")
    return {
        "current_data": f"{root}/current_data",
        "system_status": f"{root}/system_status",
        "commands": f"{root}/commands",
        "energy_data": f"{root}/energy_data",
        "auto_mode_logs": f"{root}/auto_mode_logs",
        "solar_priority_blocks": f"{root}/solar_priority_blocks",
    }


def split_path(path: str) -> list[str]:
    """Split a slash-separated path into its non-empty segments."""
    return [segment for segment in path.strip("/").split("/") if segment]


def join_path(*parts: str) -> str:
    return "/".join(segment for part in parts for segment in split_path(part))


def is_related(a: str, b: str) -> bool:
    """True if one path is an ancestor of (or equal to) the other."""
    sa, sb = split_path(a), split_path(b)
    n = min(len(sa), len(sb))
    return sa[:n] == sb[:n]
