"""Structural and business-rule validation of workflow definitions."""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel

from .actions.executor import check_action
from .conditions import check_condition
from .config import ValidationLimits
from .errors import ValidationError, ValidationIssue
from .models import StepType

ASSIGNEE_TYPES = ("role", "user", "auto")


def _issue(field: str, message: str, code: str) -> ValidationIssue:
    return ValidationIssue(field=field, message=message, code=code)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_document(candidate: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(candidate, BaseModel):
        return candidate.model_dump(mode="json", by_alias=True)
    if isinstance(candidate, Mapping):
        return candidate
    return None


class DefinitionValidator:
    """Accumulates every violation so callers can report them in one pass."""

    def __init__(self, limits: Optional[ValidationLimits] = None) -> None:
        self.limits = limits or ValidationLimits()

    # ------------------------------------------------------------------
    # Public API
    def collect_issues(self, candidate: Any) -> list[ValidationIssue]:
        """Return all structural and business-rule problems of ``candidate``."""
        document = _as_document(candidate)
        if document is None:
            return [_issue("definition", "Workflow definition must be an object", "INVALID_TYPE")]

        issues: list[ValidationIssue] = []
        steps = document.get("steps")
        self._check_basic_fields(document, issues)
        self._check_steps(steps, issues)
        if isinstance(steps, list) and steps:
            step_docs = [s for s in steps if isinstance(s, Mapping)]
            self._check_transitions(step_docs, issues)
            self._check_graph(step_docs, issues)
        return issues

    def validate(self, candidate: Any) -> list[ValidationIssue]:
        """Raise ``ValidationError`` unless ``candidate`` is valid."""
        issues = self.collect_issues(candidate)
        if issues:
            raise ValidationError(issues)
        return issues

    def collect_activation_issues(self, candidate: Any) -> list[ValidationIssue]:
        """Creation checks plus the stricter activation requirements."""
        issues = self.collect_issues(candidate)
        document = _as_document(candidate) or {}
        steps = document.get("steps")
        steps = [s for s in steps if isinstance(s, Mapping)] if isinstance(steps, list) else []
        self._check_activation(steps, issues)
        return issues

    def validate_for_activation(self, candidate: Any) -> list[ValidationIssue]:
        issues = self.collect_activation_issues(candidate)
        if issues:
            raise ValidationError(
                issues, message=f"Workflow activation validation failed: {len(issues)} issue(s)"
            )
        return issues

    # ------------------------------------------------------------------
    # Field checks
    def _check_basic_fields(self, document: Mapping[str, Any], issues: list[ValidationIssue]) -> None:
        name = document.get("name")
        if not name or not isinstance(name, str):
            issues.append(
                _issue("name", "Workflow name is required and must be a string", "REQUIRED_FIELD")
            )
        elif len(name) > self.limits.max_name_length:
            issues.append(
                _issue(
                    "name",
                    f"Workflow name must be less than {self.limits.max_name_length} characters",
                    "FIELD_TOO_LONG",
                )
            )

        description = document.get("description")
        if description is not None and not isinstance(description, str):
            issues.append(_issue("description", "Description must be a string", "INVALID_TYPE"))
        elif description and len(description) > self.limits.max_description_length:
            issues.append(
                _issue(
                    "description",
                    f"Description must be less than {self.limits.max_description_length} characters",
                    "FIELD_TOO_LONG",
                )
            )

        for field, label in (
            ("deviceTypes", "device type"),
            ("serviceTypes", "service type"),
            ("customerTiers", "customer tier"),
        ):
            value = document.get(field)
            if not isinstance(value, list) or not value:
                issues.append(
                    _issue(field, f"At least one {label} must be specified", "REQUIRED_FIELD")
                )

    # ------------------------------------------------------------------
    # Step checks
    def _check_steps(self, steps: Any, issues: list[ValidationIssue]) -> None:
        if not isinstance(steps, list) or not steps:
            issues.append(_issue("steps", "Workflow must have at least one step", "REQUIRED_FIELD"))
            return

        if len(steps) > self.limits.max_steps_per_workflow:
            issues.append(
                _issue(
                    "steps",
                    f"Workflow cannot have more than {self.limits.max_steps_per_workflow} steps",
                    "TOO_MANY_STEPS",
                )
            )

        seen: set[str] = set()
        duplicates: list[str] = []
        valid_types = [t.value for t in StepType]

        for index, step in enumerate(steps):
            path = f"steps[{index}]"
            if not isinstance(step, Mapping):
                issues.append(_issue(path, "Step must be an object", "INVALID_TYPE"))
                continue

            name = step.get("name")
            if not name or not isinstance(name, str):
                issues.append(
                    _issue(f"{path}.name", "Step name is required and must be a string", "REQUIRED_FIELD")
                )
            elif name in seen:
                if name not in duplicates:
                    duplicates.append(name)
            else:
                seen.add(name)

            if step.get("type") not in valid_types:
                issues.append(
                    _issue(
                        f"{path}.type",
                        f"Step type must be one of: {', '.join(valid_types)}",
                        "INVALID_VALUE",
                    )
                )

            position = step.get("position")
            if (
                not isinstance(position, Mapping)
                or not _is_number(position.get("x"))
                or not _is_number(position.get("y"))
            ):
                issues.append(
                    _issue(
                        f"{path}.position",
                        "Step position must have numeric x and y coordinates",
                        "INVALID_POSITION",
                    )
                )

            self._check_step_config(step, path, issues)

        for name in duplicates:
            issues.append(_issue("steps", f"Duplicate step name: {name}", "DUPLICATE_STEP_NAME"))

    def _check_step_config(
        self, step: Mapping[str, Any], path: str, issues: list[ValidationIssue]
    ) -> None:
        config = step.get("config", {})
        if not isinstance(config, Mapping):
            issues.append(
                _issue(f"{path}.config", "Step config must be an object", "INVALID_TYPE")
            )
            return

        if step.get("type") == StepType.MANUAL.value:
            assignee_type = config.get("assigneeType")
            if assignee_type not in ASSIGNEE_TYPES:
                issues.append(
                    _issue(
                        f"{path}.config.assigneeType",
                        "Manual steps must have assigneeType: role, user, or auto",
                        "INVALID_VALUE",
                    )
                )
            if assignee_type != "auto" and not config.get("assigneeValue"):
                issues.append(
                    _issue(
                        f"{path}.config.assigneeValue",
                        "assigneeValue is required when assigneeType is not auto",
                        "REQUIRED_FIELD",
                    )
                )

        if "timeoutMinutes" in config:
            timeout = config["timeoutMinutes"]
            if not _is_number(timeout) or timeout <= 0:
                issues.append(
                    _issue(
                        f"{path}.config.timeoutMinutes",
                        "timeoutMinutes must be a positive number",
                        "INVALID_VALUE",
                    )
                )

        for key in ("requiredFields", "allowedActions"):
            if config.get(key) is not None and not isinstance(config[key], list):
                issues.append(
                    _issue(f"{path}.config.{key}", f"{key} must be an array", "INVALID_TYPE")
                )

        if config.get("autoAdvanceConditions") is not None:
            self._check_conditions(
                config["autoAdvanceConditions"], f"{path}.config.autoAdvanceConditions", issues
            )

    # ------------------------------------------------------------------
    # Transition checks
    def _check_transitions(self, steps: list[Mapping[str, Any]], issues: list[ValidationIssue]) -> None:
        names = {s.get("name") for s in steps}

        for index, step in enumerate(steps):
            transitions = step.get("transitions", [])
            if not isinstance(transitions, list):
                issues.append(
                    _issue(
                        f"steps[{index}].transitions",
                        "Step transitions must be an array",
                        "INVALID_TYPE",
                    )
                )
                continue

            for t_index, transition in enumerate(transitions):
                path = f"steps[{index}].transitions[{t_index}]"
                if not isinstance(transition, Mapping):
                    issues.append(_issue(path, "Transition must be an object", "INVALID_TYPE"))
                    continue

                if not transition.get("name") or not isinstance(transition.get("name"), str):
                    issues.append(
                        _issue(
                            f"{path}.name",
                            "Transition name is required and must be a string",
                            "REQUIRED_FIELD",
                        )
                    )

                target = transition.get("targetStepName")
                if not target or not isinstance(target, str):
                    issues.append(
                        _issue(
                            f"{path}.targetStepName",
                            "Transition targetStepName is required and must be a string",
                            "REQUIRED_FIELD",
                        )
                    )
                elif target not in names:
                    issues.append(
                        _issue(
                            f"{path}.targetStepName",
                            f"Target step '{target}' does not exist",
                            "INVALID_REFERENCE",
                        )
                    )

                if transition.get("conditions") is not None:
                    self._check_conditions(transition["conditions"], f"{path}.conditions", issues)
                if transition.get("actions") is not None:
                    self._check_actions(transition["actions"], f"{path}.actions", issues)

    def _check_conditions(self, conditions: Any, path: str, issues: list[ValidationIssue]) -> None:
        if not isinstance(conditions, list):
            issues.append(_issue(path, "Conditions must be an array", "INVALID_TYPE"))
            return
        for index, condition in enumerate(conditions):
            for message in check_condition(condition):
                issues.append(_issue(f"{path}[{index}]", message, "INVALID_CONDITION"))

    def _check_actions(self, actions: Any, path: str, issues: list[ValidationIssue]) -> None:
        if not isinstance(actions, list):
            issues.append(_issue(path, "Actions must be an array", "INVALID_TYPE"))
            return
        for index, action in enumerate(actions):
            for message in check_action(action):
                issues.append(_issue(f"{path}[{index}]", message, "INVALID_ACTION"))

    # ------------------------------------------------------------------
    # Graph checks
    @staticmethod
    def _edges(steps: list[Mapping[str, Any]]) -> dict[str, list[str]]:
        names = {s.get("name") for s in steps if isinstance(s.get("name"), str)}
        edges: dict[str, list[str]] = {}
        for step in steps:
            name = step.get("name")
            if not isinstance(name, str):
                continue
            transitions = step.get("transitions") or []
            targets = [
                t.get("targetStepName")
                for t in transitions
                if isinstance(transitions, list) and isinstance(t, Mapping)
            ]
            edges.setdefault(name, []).extend(t for t in targets if t in names)
        return edges

    def _check_graph(self, steps: list[Mapping[str, Any]], issues: list[ValidationIssue]) -> None:
        edges = self._edges(steps)
        with_incoming = {target for targets in edges.values() for target in targets}
        start_steps = [name for name in edges if name not in with_incoming]

        if not start_steps:
            issues.append(
                _issue(
                    "steps",
                    "Workflow must have at least one start step (step with no incoming transitions)",
                    "NO_START_STEP",
                )
            )

        reachable: set[str] = set()
        queue = deque(start_steps)
        while queue:
            current = queue.popleft()
            if current in reachable:
                continue
            reachable.add(current)
            queue.extend(t for t in edges.get(current, []) if t not in reachable)

        for name in edges:
            if name not in reachable:
                issues.append(
                    _issue("steps", f"Step '{name}' is unreachable from start steps", "UNREACHABLE_STEP")
                )

        cycle_at = self._find_cycle(edges)
        if cycle_at is not None:
            issues.append(
                _issue(
                    "steps",
                    f"Circular dependency detected involving step '{cycle_at}'",
                    "CIRCULAR_DEPENDENCY",
                )
            )

    @staticmethod
    def _find_cycle(edges: dict[str, list[str]]) -> Optional[str]:
        """Depth-first search with a recursion stack; returns the first root on a cycle."""
        visited: set[str] = set()
        for root in edges:
            if root in visited:
                continue
            on_stack = {root}
            visited.add(root)
            stack = [(root, iter(edges.get(root, [])))]
            while stack:
                node, children = stack[-1]
                child = next(children, None)
                if child is None:
                    stack.pop()
                    on_stack.discard(node)
                    continue
                if child in on_stack:
                    return root
                if child not in visited:
                    visited.add(child)
                    on_stack.add(child)
                    stack.append((child, iter(edges.get(child, []))))
        return None

    # ------------------------------------------------------------------
    # Activation checks
    def _check_activation(self, steps: list[Mapping[str, Any]], issues: list[ValidationIssue]) -> None:
        if steps and not any(not (s.get("transitions") or []) for s in steps):
            issues.append(
                _issue(
                    "steps",
                    "Workflow must have at least one end step (step with no outgoing transitions)",
                    "NO_END_STEP",
                )
            )

        for step in steps:
            config = step.get("config") if isinstance(step.get("config"), Mapping) else {}
            if step.get("type") == StepType.MANUAL.value:
                if config.get("assigneeType") in (None, "auto") or not config.get("assigneeValue"):
                    issues.append(
                        _issue(
                            "steps",
                            f"Manual step '{step.get('name')}' must have a specific assignee (role or user)",
                            "INVALID_ASSIGNEE",
                        )
                    )
            if step.get("type") == StepType.DECISION.value:
                transitions = step.get("transitions") or []
                if not isinstance(transitions, list) or len(transitions) < 2:
                    issues.append(
                        _issue(
                            "steps",
                            f"Decision step '{step.get('name')}' must have at least 2 transitions",
                            "INSUFFICIENT_TRANSITIONS",
                        )
                    )
