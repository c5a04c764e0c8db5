"""``{{dot.path}}`` interpolation of action configuration."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from ..utils.paths import MISSING, resolve_path

TOKEN = re.compile(r"\{\{([^}]+)\}\}")


def interpolate_message(message: Any, context: Mapping[str, Any]) -> str:
    """Replace tokens in ``message``; unresolved tokens are left verbatim."""
    if not message:
        return ""

    def replace(match: re.Match[str]) -> str:
        value = resolve_path(context, match.group(1).strip())
        if value is MISSING or value is None:
            return match.group(0)
        return str(value)

    return TOKEN.sub(replace, str(message))


def interpolate_value(value: Any, context: Mapping[str, Any]) -> Any:
    """Recursively interpolate strings inside lists and mappings."""
    if isinstance(value, str):
        return interpolate_message(value, context)
    if isinstance(value, (list, tuple)):
        return [interpolate_value(item, context) for item in value]
    if isinstance(value, Mapping):
        return {key: interpolate_value(val, context) for key, val in value.items()}
    return value
