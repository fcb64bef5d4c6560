"""
Configuration tree helpers.

Small functions shared by the components that walk, copy and merge
configuration dictionaries. Configurations are plain JSON-compatible
dicts; nothing here mutates its inputs unless the name says so.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Tuple


_MISSING = object()


def clone(value: Any) -> Any:
    """Return an independent structural copy of a configuration value."""
    return copy.deepcopy(value)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def deep_merge(target: Dict[str, Any], source: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge ``source`` into a copy of ``target``.

    Nested dicts are merged key by key. Lists and scalars from ``source``
    replace the value in ``target``.

    Args:
        target: Base mapping.
        source: Mapping whose values win.

    Returns:
        A new merged dictionary. Neither input is modified.
    """
    result = clone(target)
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = clone(value)
    return result


def split_path(path: str) -> List[str]:
    """Split a dotted field path into its segments."""
    return [segment for segment in path.split(".") if segment]


def get_path(data: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Read a dotted path, returning ``default`` if any segment is missing."""
    current: Any = data
    for segment in split_path(path):
        if not isinstance(current, dict) or segment not in current:
            return default
        current = current[segment]
    return current


def has_path(data: Dict[str, Any], path: str) -> bool:
    """Whether every segment of a dotted path exists."""
    return get_path(data, path, _MISSING) is not _MISSING


def set_path(data: Dict[str, Any], path: str, value: Any) -> None:
    """Set a dotted path in place, creating intermediate dicts as needed."""
    segments = split_path(path)
    if not segments:
        raise ValueError("Field path must not be empty")

    current = data
    for segment in segments[:-1]:
        child = current.get(segment)
        if not isinstance(child, dict):
            child = {}
            current[segment] = child
        current = child
    current[segments[-1]] = value


def flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten nested dicts into dotted keys.

    Lists and scalars are leaves. Empty dicts are kept as leaves so they
    survive a round trip.
    """
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict) and value:
            flat.update(flatten(value, full_key))
        else:
            flat[full_key] = value
    return flat


def walk_differences(
    left: Any, right: Any, path: str = ""
) -> Iterator[Tuple[str, str, Any, Any]]:
    """
    Yield ``(kind, path, old, new)`` for every leaf that differs.

    ``kind`` is one of ``added``, ``removed`` or ``changed``. Dicts are
    compared key by key; any other value is compared by equality.
    """
    if isinstance(left, dict) and isinstance(right, dict):
        for key in sorted(set(left) | set(right), key=str):
            child = f"{path}.{key}" if path else str(key)
            if key not in left:
                yield "added", child, None, right[key]
            elif key not in right:
                yield "removed", child, left[key], None
            else:
                yield from walk_differences(left[key], right[key], child)
    elif left != right:
        yield "changed", path, left, right
