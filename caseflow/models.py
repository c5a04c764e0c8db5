"""Data model for workflow definitions, instances and events."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from .errors import IllegalStatusTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class DefinitionStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class StepType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    DECISION = "decision"
    PARALLEL = "parallel"
    WAIT = "wait"


class InstanceStatus(str, Enum):
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class StepInstanceStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    IN = "in"
    NOT_IN = "not_in"
    REGEX = "regex"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


VALUELESS_OPERATORS = frozenset(
    {
        ConditionOperator.EXISTS,
        ConditionOperator.NOT_EXISTS,
        ConditionOperator.IS_EMPTY,
        ConditionOperator.IS_NOT_EMPTY,
    }
)


class ActionType(str, Enum):
    NOTIFICATION = "notification"
    ASSIGNMENT = "assignment"
    STATUS_UPDATE = "status_update"
    FIELD_UPDATE = "field_update"
    WEBHOOK = "webhook"
    EMAIL = "email"
    SMS = "sms"
    CREATE_DOCUMENT = "create_document"
    UPDATE_INVENTORY = "update_inventory"


class AutomaticType(str, Enum):
    STATUS_CHECK = "status_check"
    DATA_VALIDATION = "data_validation"
    CALCULATION = "calculation"
    INTEGRATION = "integration"


class EventType(str, Enum):
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_SUSPENDED = "workflow_suspended"
    WORKFLOW_RESUMED = "workflow_resumed"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    STEP_ACTIVATED = "step_activated"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    STEP_EXECUTION_FAILED = "step_execution_failed"
    STEP_TIMED_OUT = "step_timed_out"
    TRANSITION_EXECUTED = "transition_executed"
    ACTION_FAILED = "action_failed"
    TIMEOUT_SCHEDULED = "timeout_scheduled"


ALLOWED_STEP_TRANSITIONS: dict[StepInstanceStatus, set[StepInstanceStatus]] = {
    StepInstanceStatus.PENDING: {StepInstanceStatus.ACTIVE},
    StepInstanceStatus.ACTIVE: {
        StepInstanceStatus.COMPLETED,
        StepInstanceStatus.FAILED,
        StepInstanceStatus.SKIPPED,
        StepInstanceStatus.SUSPENDED,
        StepInstanceStatus.CANCELLED,
    },
    StepInstanceStatus.SUSPENDED: {
        StepInstanceStatus.ACTIVE,
        StepInstanceStatus.CANCELLED,
    },
}

ALLOWED_INSTANCE_TRANSITIONS: dict[InstanceStatus, set[InstanceStatus]] = {
    InstanceStatus.RUNNING: {
        InstanceStatus.SUSPENDED,
        InstanceStatus.COMPLETED,
        InstanceStatus.CANCELLED,
        InstanceStatus.FAILED,
    },
    InstanceStatus.SUSPENDED: {InstanceStatus.RUNNING, InstanceStatus.CANCELLED},
}

TERMINAL_INSTANCE_STATUSES = frozenset(
    {InstanceStatus.COMPLETED, InstanceStatus.CANCELLED, InstanceStatus.FAILED}
)


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases for the authoring format."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ----------------------------------------------------------------------
# Definitions


class WorkflowCondition(CamelModel):
    """Guard predicate evaluated against an instance context."""

    field: str
    operator: ConditionOperator
    value: Any = None


class WorkflowAction(CamelModel):
    """Side effect executed when a transition fires."""

    type: ActionType
    config: dict[str, Any] = Field(default_factory=dict)


class WorkflowTransition(CamelModel):
    name: str
    target_step_name: str
    conditions: list[WorkflowCondition] = Field(default_factory=list)
    actions: list[WorkflowAction] = Field(default_factory=list)


class StepPosition(CamelModel):
    x: float
    y: float


class WorkflowStep(CamelModel):
    """A named node of the step graph."""

    name: str
    description: Optional[str] = None
    type: StepType
    position: StepPosition = StepPosition(x=0, y=0)
    config: dict[str, Any] = Field(default_factory=dict)
    transitions: list[WorkflowTransition] = Field(default_factory=list)


class WorkflowDefinition(CamelModel):
    """Versioned, named template describing a step graph."""

    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    version: int = 1
    status: DefinitionStatus = DefinitionStatus.DRAFT
    device_types: list[str] = Field(default_factory=list)
    service_types: list[str] = Field(default_factory=list)
    customer_tiers: list[str] = Field(default_factory=list)
    steps: list[WorkflowStep] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    parent_definition_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def get_step(self, name: str) -> Optional[WorkflowStep]:
        return next((s for s in self.steps if s.name == name), None)

    def start_steps(self) -> list[WorkflowStep]:
        """Steps with no incoming transitions across the whole definition."""
        targets = {t.target_step_name for s in self.steps for t in s.transitions}
        return [s for s in self.steps if s.name not in targets]

    def end_steps(self) -> list[WorkflowStep]:
        return [s for s in self.steps if not s.transitions]

    def applies_to(
        self,
        device_type: Optional[str] = None,
        service_type: Optional[str] = None,
        customer_tier: Optional[str] = None,
    ) -> bool:
        checks = (
            (device_type, self.device_types),
            (service_type, self.service_types),
            (customer_tier, self.customer_tiers),
        )
        return all(value is None or value in allowed for value, allowed in checks)


# ----------------------------------------------------------------------
# Instances


class WorkflowStepInstance(CamelModel):
    """Runtime state of one definition step within an instance."""

    id: str = Field(default_factory=new_id)
    instance_id: str
    step_name: str
    step_type: StepType
    step_config: dict[str, Any] = Field(default_factory=dict)
    status: StepInstanceStatus = StepInstanceStatus.PENDING
    activated_by: Optional[str] = None
    activated_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    execution_data: Optional[dict[str, Any]] = None
    comment: Optional[str] = None
    error_message: Optional[str] = None

    def transition_to(self, status: StepInstanceStatus) -> None:
        allowed = ALLOWED_STEP_TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise IllegalStatusTransition(
                f"Illegal step transition for '{self.step_name}': "
                f"{self.status.value} -> {status.value}"
            )
        self.status = status


class WorkflowInstance(CamelModel):
    """One running execution of a definition, bound to an external case."""

    id: str = Field(default_factory=new_id)
    definition_id: str
    definition_name: Optional[str] = None
    definition_version: Optional[int] = None
    case_ref: str
    status: InstanceStatus = InstanceStatus.RUNNING
    priority: Priority = Priority.NORMAL
    context: dict[str, Any] = Field(default_factory=dict)
    started_by: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    step_instances: list[WorkflowStepInstance] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field(alias="currentSteps")  # type: ignore[prop-decorator]
    @property
    def current_steps(self) -> list[str]:
        return [
            s.step_name
            for s in self.step_instances
            if s.status == StepInstanceStatus.ACTIVE
        ]

    def transition_to(self, status: InstanceStatus) -> None:
        allowed = ALLOWED_INSTANCE_TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise IllegalStatusTransition(
                f"Illegal workflow transition: {self.status.value} -> {status.value}"
            )
        self.status = status
        self.updated_at = utcnow()
        if status in TERMINAL_INSTANCE_STATUSES:
            self.completed_at = self.updated_at

    def get_step_instance(self, step_instance_id: str) -> Optional[WorkflowStepInstance]:
        return next((s for s in self.step_instances if s.id == step_instance_id), None)

    def step_instance_by_name(self, step_name: str) -> Optional[WorkflowStepInstance]:
        return next((s for s in self.step_instances if s.step_name == step_name), None)

    def steps_in(self, *statuses: StepInstanceStatus) -> list[WorkflowStepInstance]:
        return [s for s in self.step_instances if s.status in statuses]


class WorkflowEvent(CamelModel):
    """Append-only audit record."""

    id: str = Field(default_factory=new_id)
    instance_id: str
    step_instance_id: Optional[str] = None
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    actor: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
