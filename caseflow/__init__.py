"""caseflow: workflow definition and execution engine for repair cases."""

from .actions import ActionExecutor, ActionTarget
from .conditions import ConditionEvaluator
from .config import CaseflowConfig, load_config
from .definitions import DefinitionService
from .engine import InstanceFilters, InstancePage, WorkflowEngine
from .errors import (
    CaseflowError,
    NotFoundError,
    PreconditionError,
    ValidationError,
    ValidationIssue,
)
from .events import EventFilters, EventLog
from .models import WorkflowDefinition, WorkflowEvent, WorkflowInstance
from .persistence import get_repository
from .timers import TimeoutScheduler
from .transports import get_transport
from .validation import DefinitionValidator

__version__ = "0.1.0"
__all__ = [
    "ActionExecutor",
    "ActionTarget",
    "CaseflowConfig",
    "CaseflowError",
    "ConditionEvaluator",
    "DefinitionService",
    "DefinitionValidator",
    "EventFilters",
    "EventLog",
    "InstanceFilters",
    "InstancePage",
    "NotFoundError",
    "PreconditionError",
    "TimeoutScheduler",
    "ValidationError",
    "ValidationIssue",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowEvent",
    "WorkflowInstance",
    "get_repository",
    "get_transport",
    "load_config",
]
