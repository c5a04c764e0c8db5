"""Tests for definition validation."""

import pytest

from caseflow.config import ValidationLimits
from caseflow.errors import ValidationError
from caseflow.models import WorkflowDefinition
from caseflow.validation import DefinitionValidator

validator = DefinitionValidator()


def codes(issues):
    return [issue.code for issue in issues]


def test_valid_definition_has_no_issues(repair_payload):
    assert validator.collect_issues(repair_payload) == []
    assert validator.collect_activation_issues(repair_payload) == []


def test_accepts_definition_models(repair_payload):
    model = WorkflowDefinition.model_validate(repair_payload)
    assert validator.validate(model) == []


def test_missing_fields_are_all_reported():
    issues = validator.collect_issues({"description": 5})
    assert codes(issues) == [
        "REQUIRED_FIELD",
        "INVALID_TYPE",
        "REQUIRED_FIELD",
        "REQUIRED_FIELD",
        "REQUIRED_FIELD",
        "REQUIRED_FIELD",
    ]
    assert [i.field for i in issues] == [
        "name",
        "description",
        "deviceTypes",
        "serviceTypes",
        "customerTiers",
        "steps",
    ]


def test_limits_are_configurable(wf):
    limits = ValidationLimits(max_name_length=5, max_steps_per_workflow=1)
    payload = wf.definition(
        [wf.step("a", transitions=[wf.transition("b")]), wf.step("b")], name="too-long"
    )
    issues = DefinitionValidator(limits).collect_issues(payload)
    assert set(codes(issues)) == {"FIELD_TOO_LONG", "TOO_MANY_STEPS"}


def test_step_shape_errors(wf):
    bad = wf.step("a", type="teleport")
    bad["position"] = {"x": True, "y": 0}
    payload = wf.definition([bad, wf.step("a"), {"name": "c", "type": "wait", "config": []}])
    issues = validator.collect_issues(payload)
    found = {(i.field, i.code) for i in issues}
    assert ("steps[0].type", "INVALID_VALUE") in found
    assert ("steps[0].position", "INVALID_POSITION") in found
    assert ("steps[2].position", "INVALID_POSITION") in found
    assert ("steps[2].config", "INVALID_TYPE") in found
    assert ("steps", "DUPLICATE_STEP_NAME") in found


def test_manual_step_config(wf):
    payload = wf.definition(
        [
            wf.step("a", config={"assigneeType": "team"}, transitions=[wf.transition("b")]),
            wf.step("b", config={"assigneeType": "user", "timeoutMinutes": 0, "requiredFields": "x"}),
        ]
    )
    fields = {i.field for i in validator.collect_issues(payload)}
    assert "steps[0].config.assigneeType" in fields
    assert "steps[0].config.assigneeValue" in fields
    assert "steps[1].config.assigneeValue" in fields
    assert "steps[1].config.timeoutMinutes" in fields
    assert "steps[1].config.requiredFields" in fields


def test_transition_errors(wf):
    a = wf.step(
        "a",
        transitions=[
            wf.transition("ghost"),
            wf.transition(
                "b",
                conditions=[{"field": "x", "operator": "near", "value": 1}],
                actions=[{"type": "webhook", "config": {}}],
            ),
        ],
    )
    b = wf.step("b")
    b["transitions"] = "nope"
    issues = validator.collect_issues(wf.definition([a, b]))
    found = {(i.field, i.code) for i in issues}
    assert ("steps[0].transitions[0].targetStepName", "INVALID_REFERENCE") in found
    assert ("steps[0].transitions[1].conditions[0]", "INVALID_CONDITION") in found
    assert ("steps[0].transitions[1].actions[0]", "INVALID_ACTION") in found
    assert ("steps[1].transitions", "INVALID_TYPE") in found


def test_missing_transitions_and_config_default_to_empty(wf):
    payload = wf.definition([{"name": "only", "type": "wait", "position": {"x": 1, "y": 2}}])
    assert validator.collect_issues(payload) == []


def test_cycle_without_start_step(wf):
    payload = wf.definition(
        [
            wf.step("a", transitions=[wf.transition("b")]),
            wf.step("b", transitions=[wf.transition("a")]),
        ]
    )
    assert set(codes(validator.collect_issues(payload))) >= {
        "NO_START_STEP",
        "UNREACHABLE_STEP",
        "CIRCULAR_DEPENDENCY",
    }


def test_cycle_reported_once(wf):
    payload = wf.definition(
        [
            wf.step("start", transitions=[wf.transition("a"), wf.transition("c")]),
            wf.step("a", transitions=[wf.transition("b")]),
            wf.step("b", transitions=[wf.transition("a")]),
            wf.step("c", transitions=[wf.transition("d")]),
            wf.step("d", transitions=[wf.transition("c")]),
        ]
    )
    assert codes(validator.collect_issues(payload)).count("CIRCULAR_DEPENDENCY") == 1


def test_unreachable_step_is_an_error(wf):
    payload = wf.definition(
        [
            wf.step("a", transitions=[wf.transition("b")]),
            wf.step("b"),
            wf.step("island", transitions=[wf.transition("loop")]),
            wf.step("loop", transitions=[wf.transition("island")]),
        ]
    )
    messages = [i.message for i in validator.collect_issues(payload) if i.code == "UNREACHABLE_STEP"]
    assert messages == [
        "Step 'island' is unreachable from start steps",
        "Step 'loop' is unreachable from start steps",
    ]


def test_validate_raises_with_every_issue(wf):
    with pytest.raises(ValidationError) as excinfo:
        validator.validate(wf.definition([], name=""))
    assert excinfo.value.codes == ["REQUIRED_FIELD", "REQUIRED_FIELD"]


def test_activation_rules(wf):
    payload = wf.definition(
        [
            wf.step("decide", type="decision", transitions=[wf.transition("assess")]),
            wf.step("assess", config={"assigneeType": "auto"}),
        ]
    )
    assert validator.collect_issues(payload) == []
    issues = validator.collect_activation_issues(payload)
    assert codes(issues) == ["INSUFFICIENT_TRANSITIONS", "INVALID_ASSIGNEE"]
    with pytest.raises(ValidationError, match="activation"):
        validator.validate_for_activation(payload)
