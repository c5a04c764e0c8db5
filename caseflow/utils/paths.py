"""Dot-path lookups into context documents."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

MISSING: Any = object()


def resolve_path(document: Any, path: str) -> Any:
    """Return the value at ``path`` (``a.b.0.c``) or ``MISSING``.

    Mappings are indexed by key, sequences by integer position. Never raises.
    """

    current = document
    for part in path.split("."):
        if current is None or current is MISSING:
            return MISSING
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return MISSING
        else:
            return MISSING
    return current
