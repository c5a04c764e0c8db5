"""Error taxonomy for caseflow."""

from __future__ import annotations

from typing import Iterable

from pydantic import BaseModel


class ValidationIssue(BaseModel):
    """A single structural or business-rule violation."""

    field: str
    message: str
    code: str


class CaseflowError(Exception):
    """Base class for all caseflow errors."""


class ValidationError(CaseflowError):
    """A definition failed validation; carries every issue found."""

    def __init__(self, issues: Iterable[ValidationIssue], message: str | None = None):
        self.issues = list(issues)
        summary = "; ".join(f"{i.field}: {i.message}" for i in self.issues)
        super().__init__(message or f"Workflow validation failed: {summary}")

    @property
    def codes(self) -> list[str]:
        return [issue.code for issue in self.issues]


class PreconditionError(CaseflowError):
    """Operation attempted against an entity not in the required state."""


class NotFoundError(PreconditionError, LookupError):
    """Referenced definition, instance or step instance does not exist."""


class IllegalStatusTransition(PreconditionError):
    """A status change that the lifecycle tables do not allow."""


class ActionExecutionError(CaseflowError):
    """A single action's side effect failed."""

    def __init__(self, action_type: str, message: str):
        self.action_type = action_type
        super().__init__(f"Action '{action_type}' failed: {message}")


class StepExecutionError(CaseflowError):
    """An automatic step's logic failed."""


class EventLogError(CaseflowError):
    """Writing to the audit log failed. Always swallowed by the event log."""
