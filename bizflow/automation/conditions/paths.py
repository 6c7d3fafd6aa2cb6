"""
Field path resolution over JSON-like payloads.

A path such as ``client.tags.0`` descends through mappings by key and through
lists by integer index. A missing segment, or a value that cannot be
descended into, resolves to ``ABSENT``, which is distinct from ``None``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, List


class _Absent:
    """Marker for a field that does not exist in the payload."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


def is_absent(value: Any) -> bool:
    return value is ABSENT


def resolve_field(payload: Any, path: str) -> Any:
    """Resolve a dot path against ``payload``."""
    if not isinstance(path, str) or not path:
        return ABSENT
    return _descend(payload, path.split("."))


def _descend(value: Any, segments: List[str]) -> Any:
    if not segments:
        return value

    head, rest = segments[0], segments[1:]

    if isinstance(value, Mapping):
        if head not in value:
            return ABSENT
        return _descend(value[head], rest)

    if isinstance(value, (list, tuple)):
        if not head.isdigit():
            return ABSENT
        index = int(head)
        if index >= len(value):
            return ABSENT
        return _descend(value[index], rest)

    return ABSENT
