import pytest

from caseflow.errors import IllegalStatusTransition, PreconditionError
from caseflow.models import (
    InstanceStatus,
    StepInstanceStatus,
    StepType,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStepInstance,
)


def step_instance(status=StepInstanceStatus.PENDING):
    return WorkflowStepInstance(
        instance_id="i", step_name="s", step_type=StepType.MANUAL, status=status
    )


@pytest.mark.parametrize(
    "start, target",
    [
        (StepInstanceStatus.PENDING, StepInstanceStatus.ACTIVE),
        (StepInstanceStatus.ACTIVE, StepInstanceStatus.COMPLETED),
        (StepInstanceStatus.ACTIVE, StepInstanceStatus.SUSPENDED),
        (StepInstanceStatus.SUSPENDED, StepInstanceStatus.ACTIVE),
        (StepInstanceStatus.SUSPENDED, StepInstanceStatus.CANCELLED),
    ],
)
def test_legal_step_transitions(start, target):
    step = step_instance(start)
    step.transition_to(target)
    assert step.status == target


@pytest.mark.parametrize(
    "start, target",
    [
        (StepInstanceStatus.PENDING, StepInstanceStatus.COMPLETED),
        (StepInstanceStatus.COMPLETED, StepInstanceStatus.ACTIVE),
        (StepInstanceStatus.FAILED, StepInstanceStatus.ACTIVE),
    ],
)
def test_illegal_step_transitions(start, target):
    with pytest.raises(IllegalStatusTransition):
        step_instance(start).transition_to(target)


def test_instance_terminal_status_sets_completed_at():
    instance = WorkflowInstance(definition_id="d", case_ref="C-1")
    instance.transition_to(InstanceStatus.SUSPENDED)
    assert instance.completed_at is None
    instance.transition_to(InstanceStatus.CANCELLED)
    assert instance.completed_at is not None
    with pytest.raises(PreconditionError):
        instance.transition_to(InstanceStatus.RUNNING)


def test_current_steps_lists_active_names():
    instance = WorkflowInstance(definition_id="d", case_ref="C-1")
    instance.step_instances = [
        step_instance(StepInstanceStatus.ACTIVE),
        step_instance(StepInstanceStatus.PENDING),
    ]
    assert instance.current_steps == ["s"]
    assert instance.to_document()["currentSteps"] == ["s"]


def test_definition_helpers(repair_payload):
    definition = WorkflowDefinition.model_validate(repair_payload)
    assert [s.name for s in definition.start_steps()] == ["intake"]
    assert [s.name for s in definition.end_steps()] == ["quality-check"]
    assert definition.get_step("repair").type == StepType.MANUAL
    assert definition.applies_to(device_type="phone", customer_tier="premium")
    assert not definition.applies_to(service_type="installation")
