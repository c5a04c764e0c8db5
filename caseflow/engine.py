"""Workflow execution engine.

Every public mutating call is one unit of work: the instance aggregate is
loaded under its per-instance lock, activations and completions are drained
from a FIFO work queue, the aggregate is saved with a single repository call
and only then are the buffered events written and wait-step timers armed.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import Field

from .actions import ActionExecutor, default_targets
from .conditions import ConditionEvaluator
from .config import CaseflowConfig
from .errors import NotFoundError, PreconditionError
from .events import EventLog
from .models import (
    TERMINAL_INSTANCE_STATUSES,
    CamelModel,
    DefinitionStatus,
    EventType,
    InstanceStatus,
    Priority,
    StepInstanceStatus,
    StepType,
    WorkflowDefinition,
    WorkflowEvent,
    WorkflowInstance,
    WorkflowStepInstance,
    utcnow,
)
from .persistence.repository import WorkflowRepository
from .timers import TimeoutScheduler
from .utils.locks import InstanceLocks

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class InstanceFilters(CamelModel):
    case_ref: Optional[str] = None
    definition_id: Optional[str] = None
    status: Optional[InstanceStatus] = None
    priority: Optional[Priority] = None
    started_by: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)

    def matches(self, instance: WorkflowInstance) -> bool:
        return (
            (self.case_ref is None or instance.case_ref == self.case_ref)
            and (self.definition_id is None or instance.definition_id == self.definition_id)
            and (self.status is None or instance.status == self.status)
            and (self.priority is None or instance.priority == self.priority)
            and (self.started_by is None or instance.started_by == self.started_by)
        )


class InstancePage(CamelModel):
    instances: list[WorkflowInstance]
    total: int
    page: int
    limit: int
    total_pages: int


@dataclass
class _Activate:
    step_name: str
    actor: Optional[str]


@dataclass
class _Complete:
    step_instance_id: str
    action: str
    data: Optional[dict[str, Any]] = None
    actor: Optional[str] = None
    comment: Optional[str] = None


@dataclass
class _Unit:
    """Mutable state of one unit of work on a single instance."""

    instance: WorkflowInstance
    definition: WorkflowDefinition
    queue: deque = field(default_factory=deque)
    events: list[WorkflowEvent] = field(default_factory=list)
    timers: list[tuple[str, float]] = field(default_factory=list)
    completed_any: bool = False

    def emit(
        self,
        event_type: EventType,
        payload: dict[str, Any],
        actor: Optional[str] = None,
        step_instance: Optional[WorkflowStepInstance] = None,
    ) -> None:
        self.events.append(
            WorkflowEvent(
                instance_id=self.instance.id,
                step_instance_id=step_instance.id if step_instance else None,
                event_type=event_type.value,
                payload=payload,
                actor=actor,
            )
        )


class WorkflowEngine:
    """Drive workflow instances through their step graph."""

    def __init__(
        self,
        repository: WorkflowRepository,
        *,
        config: Optional[CaseflowConfig] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        action_executor: Optional[ActionExecutor] = None,
        event_log: Optional[EventLog] = None,
        scheduler: Optional[TimeoutScheduler] = None,
        locks: Optional[InstanceLocks] = None,
    ) -> None:
        self.repository = repository
        self.config = config or CaseflowConfig()
        settings = self.config.execution
        self.evaluator = evaluator or ConditionEvaluator()
        self.action_executor = action_executor or ActionExecutor(
            default_targets(webhook_timeout=settings.webhook_timeout_seconds),
            timeout_seconds=settings.action_timeout_seconds,
            evaluator=self.evaluator,
        )
        self.event_log = event_log or EventLog(repository)
        self.scheduler = scheduler or TimeoutScheduler(settings.timeout_unit_seconds)
        self.locks = locks or InstanceLocks()

    # ------------------------------------------------------------------
    # Instance lifecycle
    async def start(
        self,
        definition_id: str,
        case_ref: str,
        context: Optional[dict[str, Any]] = None,
        started_by: Optional[str] = None,
        priority: Priority = Priority.NORMAL,
    ) -> WorkflowInstance:
        """Create an instance of an active definition and activate its start steps."""
        definition = await self.repository.get_definition(definition_id)
        if definition is None:
            raise NotFoundError(f"Workflow definition {definition_id} not found")
        if definition.status != DefinitionStatus.ACTIVE:
            raise PreconditionError(
                f"Workflow definition {definition.name} v{definition.version} is "
                f"{definition.status.value}, not active"
            )

        instance = WorkflowInstance(
            definition_id=definition.id,
            definition_name=definition.name,
            definition_version=definition.version,
            case_ref=case_ref,
            priority=Priority(priority),
            context=dict(context or {}),
            started_by=started_by,
        )
        instance.step_instances = [
            WorkflowStepInstance(
                instance_id=instance.id,
                step_name=step.name,
                step_type=step.type,
                step_config=copy.deepcopy(step.config),
            )
            for step in definition.steps
        ]

        unit = _Unit(instance=instance, definition=definition)
        start_steps = [step.name for step in definition.start_steps()]
        async with self.locks.hold(instance.id):
            unit.emit(
                EventType.WORKFLOW_STARTED,
                {
                    "definitionId": definition.id,
                    "definitionName": definition.name,
                    "definitionVersion": definition.version,
                    "caseRef": case_ref,
                    "startSteps": start_steps,
                },
                actor=started_by,
            )
            for name in start_steps:
                unit.queue.append(_Activate(name, started_by))
            await self._drain(unit)
            await self._commit(unit)

        logger.info(
            f"Started workflow {definition.name} v{definition.version} "
            f"for case {case_ref} as instance {instance.id}"
        )
        return instance

    async def execute_step(
        self,
        instance_id: str,
        step_instance_id: str,
        action: str = "complete",
        data: Optional[dict[str, Any]] = None,
        executed_by: Optional[str] = None,
        comment: Optional[str] = None,
    ) -> WorkflowInstance:
        """Complete an active step and follow every transition whose guard holds.

        Raises:
            NotFoundError: unknown instance or step instance.
            PreconditionError: the instance is not running or the step is not active.
        """
        async with self.locks.hold(instance_id):
            unit = await self._load_unit(instance_id)
            instance = unit.instance
            try:
                self._ensure_executable(instance, step_instance_id)
            except PreconditionError as exc:
                await self.event_log.log_step_event(
                    instance_id,
                    step_instance_id,
                    EventType.STEP_EXECUTION_FAILED,
                    {"error": str(exc), "action": action},
                    actor=executed_by,
                )
                raise

            unit.queue.append(
                _Complete(step_instance_id, action, data, executed_by, comment)
            )
            await self._drain(unit)
            await self._commit(unit)

        self._forget_if_finished(instance)
        return instance

    async def handle_step_timeout(self, instance_id: str, step_instance_id: str) -> bool:
        """Force completion of a waiting step whose timeout elapsed.

        Returns ``False`` without touching anything when the instance is no
        longer running or the step is no longer active.
        """
        async with self.locks.hold(instance_id):
            instance = await self.repository.get_instance(instance_id)
            if instance is None or instance.status != InstanceStatus.RUNNING:
                return False
            step_instance = instance.get_step_instance(step_instance_id)
            if step_instance is None or step_instance.status != StepInstanceStatus.ACTIVE:
                logger.debug(f"Ignoring stale timeout for step instance {step_instance_id}")
                return False

            unit = await self._load_unit(instance_id, instance)
            unit.emit(
                EventType.STEP_TIMED_OUT,
                {
                    "stepName": step_instance.step_name,
                    "timeoutMinutes": step_instance.step_config.get("timeoutMinutes"),
                },
                actor=SYSTEM_ACTOR,
                step_instance=step_instance,
            )
            unit.queue.append(_Complete(step_instance_id, "timeout", None, SYSTEM_ACTOR))
            await self._drain(unit)
            await self._commit(unit)

        logger.info(f"Step {step_instance.step_name} of instance {instance_id} timed out")
        self._forget_if_finished(unit.instance)
        return True

    async def suspend(
        self, instance_id: str, actor: Optional[str] = None, reason: Optional[str] = None
    ) -> WorkflowInstance:
        async with self.locks.hold(instance_id):
            unit = await self._load_unit(instance_id, require_definition=False)
            instance = unit.instance
            if instance.status != InstanceStatus.RUNNING:
                raise PreconditionError(
                    f"Only running instances can be suspended; {instance_id} is "
                    f"{instance.status.value}"
                )
            instance.transition_to(InstanceStatus.SUSPENDED)
            suspended = []
            for step_instance in instance.steps_in(StepInstanceStatus.ACTIVE):
                step_instance.transition_to(StepInstanceStatus.SUSPENDED)
                suspended.append(step_instance.step_name)
            unit.emit(
                EventType.WORKFLOW_SUSPENDED,
                {"reason": reason, "suspendedSteps": suspended},
                actor=actor,
            )
            self.scheduler.cancel_for_instance(instance_id)
            await self._commit(unit)

        logger.info(f"Suspended workflow instance {instance_id}")
        return instance

    async def resume(self, instance_id: str, actor: Optional[str] = None) -> WorkflowInstance:
        async with self.locks.hold(instance_id):
            unit = await self._load_unit(instance_id, require_definition=False)
            instance = unit.instance
            if instance.status != InstanceStatus.SUSPENDED:
                raise PreconditionError(
                    f"Only suspended instances can be resumed; {instance_id} is "
                    f"{instance.status.value}"
                )
            instance.transition_to(InstanceStatus.RUNNING)
            resumed = []
            for step_instance in instance.steps_in(StepInstanceStatus.SUSPENDED):
                step_instance.transition_to(StepInstanceStatus.ACTIVE)
                resumed.append(step_instance.step_name)
                self._arm_timeout(unit, step_instance)
            unit.emit(
                EventType.WORKFLOW_RESUMED, {"resumedSteps": resumed}, actor=actor
            )
            await self._commit(unit)

        logger.info(f"Resumed workflow instance {instance_id}")
        return instance

    async def cancel(
        self, instance_id: str, actor: Optional[str] = None, reason: Optional[str] = None
    ) -> WorkflowInstance:
        async with self.locks.hold(instance_id):
            unit = await self._load_unit(instance_id, require_definition=False)
            instance = unit.instance
            if instance.status not in (InstanceStatus.RUNNING, InstanceStatus.SUSPENDED):
                raise PreconditionError(
                    f"Workflow instance {instance_id} is already {instance.status.value}"
                )
            instance.transition_to(InstanceStatus.CANCELLED)
            cancelled = []
            for step_instance in instance.steps_in(
                StepInstanceStatus.ACTIVE, StepInstanceStatus.SUSPENDED
            ):
                step_instance.transition_to(StepInstanceStatus.CANCELLED)
                cancelled.append(step_instance.step_name)
            unit.emit(
                EventType.WORKFLOW_CANCELLED,
                {"reason": reason, "cancelledSteps": cancelled},
                actor=actor,
            )
            await self._commit(unit)

        logger.info(f"Cancelled workflow instance {instance_id}")
        self._forget_if_finished(instance)
        return instance

    # ------------------------------------------------------------------
    # Reads
    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self.repository.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"Workflow instance {instance_id} not found")
        return instance

    async def list_instances(self, filters: Optional[InstanceFilters] = None) -> InstancePage:
        filters = filters or InstanceFilters()
        instances = await self.repository.list_instances(filters.definition_id)
        matched = sorted(
            (i for i in instances if filters.matches(i)),
            key=lambda i: i.started_at,
            reverse=True,
        )
        start = (filters.page - 1) * filters.limit
        return InstancePage(
            instances=matched[start : start + filters.limit],
            total=len(matched),
            page=filters.page,
            limit=filters.limit,
            total_pages=math.ceil(len(matched) / filters.limit),
        )

    async def close(self) -> None:
        await self.scheduler.close()

    # ------------------------------------------------------------------
    # Unit of work
    async def _load_unit(
        self,
        instance_id: str,
        instance: Optional[WorkflowInstance] = None,
        require_definition: bool = True,
    ) -> _Unit:
        instance = instance or await self.repository.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"Workflow instance {instance_id} not found")
        definition = await self.repository.get_definition(instance.definition_id)
        if definition is None:
            if require_definition:
                raise NotFoundError(
                    f"Workflow definition {instance.definition_id} of instance "
                    f"{instance_id} not found"
                )
            definition = WorkflowDefinition(
                id=instance.definition_id, name=instance.definition_name or ""
            )
        return _Unit(instance=instance, definition=definition)

    async def _commit(self, unit: _Unit) -> None:
        instance = unit.instance
        instance.updated_at = utcnow()
        await self.repository.save_instance(instance)

        for event in unit.events:
            await self.event_log.write(event)

        if instance.status in TERMINAL_INSTANCE_STATUSES:
            self.scheduler.cancel_for_instance(instance.id)
            return
        if instance.status != InstanceStatus.RUNNING:
            return
        for step_instance_id, minutes in unit.timers:
            self.scheduler.schedule(
                instance.id, step_instance_id, minutes, self.handle_step_timeout
            )

    @staticmethod
    def _ensure_executable(instance: WorkflowInstance, step_instance_id: str) -> None:
        if instance.status != InstanceStatus.RUNNING:
            raise PreconditionError(
                f"Workflow instance {instance.id} is {instance.status.value}, not running"
            )
        step_instance = instance.get_step_instance(step_instance_id)
        if step_instance is None:
            raise NotFoundError(f"Step instance {step_instance_id} not found")
        if step_instance.status != StepInstanceStatus.ACTIVE:
            raise PreconditionError(
                f"Step {step_instance.step_name} is {step_instance.status.value}, not active"
            )

    def _forget_if_finished(self, instance: WorkflowInstance) -> None:
        if instance.status in TERMINAL_INSTANCE_STATUSES:
            self.locks.discard(instance.id)

    async def _drain(self, unit: _Unit) -> None:
        instance = unit.instance
        limit = self.config.execution.max_chain_length
        processed = 0
        while unit.queue:
            if instance.status != InstanceStatus.RUNNING:
                unit.queue.clear()
                break
            processed += 1
            if processed > limit:
                message = f"Activation chain exceeded {limit} steps"
                logger.error(f"Instance {instance.id}: {message}")
                instance.error_message = message
                instance.transition_to(InstanceStatus.FAILED)
                unit.queue.clear()
                return

            item = unit.queue.popleft()
            if isinstance(item, _Activate):
                await self._activate(unit, item)
            else:
                await self._complete(unit, item)

        if (
            unit.completed_any
            and instance.status == InstanceStatus.RUNNING
            and not instance.steps_in(StepInstanceStatus.ACTIVE)
        ):
            instance.transition_to(InstanceStatus.COMPLETED)
            untouched = [s.step_name for s in instance.steps_in(StepInstanceStatus.PENDING)]
            unit.emit(
                EventType.WORKFLOW_COMPLETED,
                {
                    "completedSteps": [
                        s.step_name for s in instance.steps_in(StepInstanceStatus.COMPLETED)
                    ],
                    "untouchedSteps": untouched,
                },
                actor=SYSTEM_ACTOR,
            )
            logger.info(f"Workflow instance {instance.id} completed")

    async def _activate(self, unit: _Unit, item: _Activate) -> None:
        instance = unit.instance
        step_instance = instance.step_instance_by_name(item.step_name)
        if step_instance is None:
            logger.warning(f"Instance {instance.id} has no step named {item.step_name}")
            return
        if step_instance.status != StepInstanceStatus.PENDING:
            logger.debug(
                f"Step {item.step_name} already {step_instance.status.value}; not re-activated"
            )
            return

        step_instance.transition_to(StepInstanceStatus.ACTIVE)
        step_instance.activated_by = item.actor or SYSTEM_ACTOR
        step_instance.activated_at = utcnow()
        unit.emit(
            EventType.STEP_ACTIVATED,
            {"stepName": step_instance.step_name, "stepType": step_instance.step_type.value},
            actor=step_instance.activated_by,
            step_instance=step_instance,
        )

        if step_instance.step_type == StepType.AUTOMATIC:
            await self._run_automatic(unit, step_instance)
            return

        self._arm_timeout(unit, step_instance)

        auto_advance = step_instance.step_config.get("autoAdvanceConditions")
        if auto_advance and self.evaluator.evaluate_conditions(auto_advance, instance.context):
            unit.queue.append(_Complete(step_instance.id, "auto_advance", None, SYSTEM_ACTOR))

    def _arm_timeout(self, unit: _Unit, step_instance: WorkflowStepInstance) -> None:
        minutes = step_instance.step_config.get("timeoutMinutes")
        if step_instance.step_type != StepType.WAIT or not minutes:
            return
        unit.timers.append((step_instance.id, minutes))
        unit.emit(
            EventType.TIMEOUT_SCHEDULED,
            {"stepName": step_instance.step_name, "timeoutMinutes": minutes},
            actor=SYSTEM_ACTOR,
            step_instance=step_instance,
        )

    async def _run_automatic(self, unit: _Unit, step_instance: WorkflowStepInstance) -> None:
        timeout = self.config.execution.automatic_step_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self.action_executor.execute_automatic_step(
                    step_instance, unit.instance.context
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self._fail_step(unit, step_instance, f"Automatic step timed out after {timeout}s")
        except Exception as exc:
            self._fail_step(unit, step_instance, str(exc))
        else:
            unit.queue.append(
                _Complete(step_instance.id, "automatic_execution", result, SYSTEM_ACTOR)
            )

    def _fail_step(self, unit: _Unit, step_instance: WorkflowStepInstance, error: str) -> None:
        logger.error(
            f"Automatic step {step_instance.step_name} of instance {unit.instance.id} "
            f"failed: {error}"
        )
        step_instance.transition_to(StepInstanceStatus.FAILED)
        step_instance.error_message = error
        step_instance.completed_at = utcnow()
        unit.emit(
            EventType.STEP_FAILED,
            {"stepName": step_instance.step_name, "error": error},
            actor=SYSTEM_ACTOR,
            step_instance=step_instance,
        )

    async def _complete(self, unit: _Unit, item: _Complete) -> None:
        instance = unit.instance
        step_instance = instance.get_step_instance(item.step_instance_id)
        if step_instance is None or step_instance.status != StepInstanceStatus.ACTIVE:
            return

        step_instance.transition_to(StepInstanceStatus.COMPLETED)
        step_instance.completed_by = item.actor or SYSTEM_ACTOR
        step_instance.completed_at = utcnow()
        step_instance.execution_data = dict(item.data or {})
        step_instance.comment = item.comment
        unit.completed_any = True
        unit.emit(
            EventType.STEP_COMPLETED,
            {
                "stepName": step_instance.step_name,
                "action": item.action,
                "data": item.data or {},
                "comment": item.comment,
            },
            actor=step_instance.completed_by,
            step_instance=step_instance,
        )

        if item.data:
            instance.context.update(item.data)

        step = unit.definition.get_step(step_instance.step_name)
        if step is None:
            return
        for transition in step.transitions:
            if not self.evaluator.evaluate_conditions(transition.conditions, instance.context):
                continue

            results = await self.action_executor.execute_actions(
                transition.actions, instance.context
            )
            for result in results:
                if "error" in result:
                    unit.emit(
                        EventType.ACTION_FAILED,
                        {
                            "transitionName": transition.name,
                            "actionType": result.get("type"),
                            "error": result["error"],
                        },
                        actor=SYSTEM_ACTOR,
                        step_instance=step_instance,
                    )
            unit.emit(
                EventType.TRANSITION_EXECUTED,
                {
                    "transitionName": transition.name,
                    "fromStep": step.name,
                    "toStep": transition.target_step_name,
                    "actionResults": results,
                },
                actor=step_instance.completed_by,
                step_instance=step_instance,
            )
            unit.queue.append(_Activate(transition.target_step_name, step_instance.completed_by))
