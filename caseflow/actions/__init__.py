"""Side-effecting actions and automatic step logic."""

from __future__ import annotations

from .executor import ActionExecutor, check_action
from .targets import ActionTarget, DocumentTarget, RecordingTarget, WebhookTarget, default_targets
from .templating import interpolate_message, interpolate_value

__all__ = [
    "ActionExecutor",
    "ActionTarget",
    "DocumentTarget",
    "RecordingTarget",
    "WebhookTarget",
    "check_action",
    "default_targets",
    "interpolate_message",
    "interpolate_value",
]
