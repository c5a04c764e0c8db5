"""Dispatch of transition actions and automatic step logic."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Iterable, Optional, Union

from ..conditions import ConditionEvaluator
from ..errors import ActionExecutionError, StepExecutionError
from ..models import ActionType, AutomaticType, WorkflowAction, WorkflowStepInstance
from ..utils.formula import FormulaError, evaluate_formula
from ..utils.paths import MISSING, resolve_path
from .targets import ActionTarget, default_targets
from .templating import interpolate_value

logger = logging.getLogger(__name__)

ActionLike = Union[WorkflowAction, Mapping[str, Any]]

_REQUIRED_CONFIG: dict[ActionType, tuple[str, ...]] = {
    ActionType.NOTIFICATION: ("recipients", "message"),
    ActionType.WEBHOOK: ("url",),
    ActionType.EMAIL: ("to", "subject", "body"),
    ActionType.FIELD_UPDATE: ("field", "value"),
}


class ActionExecutor:
    """Run side-effecting actions independently of control flow."""

    def __init__(
        self,
        targets: Optional[Mapping[ActionType, ActionTarget]] = None,
        *,
        timeout_seconds: float = 30.0,
        evaluator: Optional[ConditionEvaluator] = None,
    ) -> None:
        self._targets: dict[ActionType, ActionTarget] = dict(default_targets())
        self._targets.update(targets or {})
        self.timeout_seconds = timeout_seconds
        self._evaluator = evaluator or ConditionEvaluator()

    def register_target(self, action_type: ActionType, target: ActionTarget) -> None:
        self._targets[ActionType(action_type)] = target

    def target(self, action_type: ActionType) -> ActionTarget:
        return self._targets[ActionType(action_type)]

    # ------------------------------------------------------------------
    # Transition actions
    async def execute_actions(
        self, actions: Iterable[ActionLike], context: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        """Run every action; a failure only fills its own result slot."""
        results: list[dict[str, Any]] = []
        for action in actions:
            try:
                results.append(await self.execute_action(action, context))
            except Exception as exc:
                action_type = _type_name(action)
                logger.error(f"Action execution error ({action_type}): {exc}")
                results.append({"type": action_type, "error": str(exc)})
        return results

    async def execute_action(
        self, action: ActionLike, context: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Interpolate the config, then call the target for the action type."""
        type_name = _type_name(action)
        try:
            if not isinstance(action, WorkflowAction):
                action = WorkflowAction.model_validate(action)
        except ValueError as exc:
            raise ActionExecutionError(type_name, f"Unknown action: {exc}") from exc

        target = self._targets.get(action.type)
        if target is None:
            raise ActionExecutionError(action.type.value, "No target registered")

        config = interpolate_value(action.config, context)
        try:
            return await asyncio.wait_for(
                target.execute(config, context), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise ActionExecutionError(
                action.type.value, f"timed out after {self.timeout_seconds}s"
            ) from exc
        except ActionExecutionError:
            raise
        except Exception as exc:
            raise ActionExecutionError(action.type.value, str(exc)) from exc

    # ------------------------------------------------------------------
    # Automatic steps
    async def execute_automatic_step(
        self, step_instance: WorkflowStepInstance, context: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Run the logic configured by ``automaticType``.

        Raises:
            StepExecutionError: the step's logic failed.
        """
        config = step_instance.step_config
        raw_type = config.get("automaticType") or "default"
        try:
            automatic_type = AutomaticType(raw_type)
        except ValueError:
            return {"result": "automatic_step_completed", "stepType": raw_type}

        handlers = {
            AutomaticType.STATUS_CHECK: self._status_check,
            AutomaticType.DATA_VALIDATION: self._data_validation,
            AutomaticType.CALCULATION: self._calculation,
            AutomaticType.INTEGRATION: self._integration,
        }
        return await handlers[automatic_type](config, context)

    async def _status_check(
        self, config: dict[str, Any], context: Mapping[str, Any]
    ) -> dict[str, Any]:
        field = config.get("checkField") or config.get("checkType")
        actual = resolve_path(context, field) if field else MISSING
        if "expectedValue" in config:
            passed = actual is not MISSING and actual == config["expectedValue"]
        else:
            passed = actual is not MISSING and actual is not None
        if not passed and config.get("failOnMismatch"):
            raise StepExecutionError(
                f"Status check on '{field}' failed: expected {config.get('expectedValue')!r}"
            )
        return {
            "checkType": config.get("checkType"),
            "passed": passed,
            "actualValue": None if actual is MISSING else actual,
        }

    async def _data_validation(
        self, config: dict[str, Any], context: Mapping[str, Any]
    ) -> dict[str, Any]:
        rules = config.get("validationRules") or []
        results = [
            {
                "field": rule.get("field") if isinstance(rule, Mapping) else None,
                "passed": self._evaluator.evaluate_condition(rule, context),
            }
            for rule in rules
        ]
        valid = all(r["passed"] for r in results)
        if not valid and config.get("failOnInvalid"):
            failed = ", ".join(str(r["field"]) for r in results if not r["passed"])
            raise StepExecutionError(f"Data validation failed for: {failed}")
        return {"valid": valid, "validationResults": results}

    async def _calculation(
        self, config: dict[str, Any], context: Mapping[str, Any]
    ) -> dict[str, Any]:
        formula = config.get("formula")
        if not formula:
            raise StepExecutionError("Calculation step requires a formula")
        inputs = config.get("inputs") or {}
        try:
            value = evaluate_formula(formula, inputs, context)
        except FormulaError as exc:
            raise StepExecutionError(str(exc)) from exc
        return {config.get("outputField") or "result": value, "formula": formula}

    async def _integration(
        self, config: dict[str, Any], context: Mapping[str, Any]
    ) -> dict[str, Any]:
        endpoint = config.get("endpoint")
        if not endpoint:
            raise StepExecutionError("Integration step requires an endpoint")
        request = {
            "url": endpoint,
            "method": config.get("method", "POST"),
            "payload": interpolate_value(config.get("parameters") or {}, context),
        }
        result = await self.target(ActionType.WEBHOOK).execute(request, context)
        if not result.get("success"):
            raise StepExecutionError(
                f"Integration '{config.get('integrationType')}' failed: "
                f"{result.get('error') or result.get('status')}"
            )
        return {
            "integrationType": config.get("integrationType"),
            "success": True,
            "response": result.get("response"),
        }


def _type_name(action: ActionLike) -> str:
    if isinstance(action, WorkflowAction):
        return action.type.value
    if isinstance(action, Mapping):
        return str(action.get("type"))
    return type(action).__name__


def check_action(action: Any) -> list[str]:
    """Return shape errors for a single raw action."""
    if not isinstance(action, Mapping):
        return ["Action must be an object"]

    errors: list[str] = []
    raw_type = action.get("type")
    try:
        action_type: Optional[ActionType] = ActionType(raw_type)
    except ValueError:
        action_type = None
        valid = ", ".join(t.value for t in ActionType)
        errors.append(f"Action type must be one of: {valid}")

    config = action.get("config")
    if not isinstance(config, Mapping):
        errors.append("Action config is required and must be an object")
        return errors

    required = _REQUIRED_CONFIG.get(action_type, ()) if action_type else ()
    missing = [key for key in required if config.get(key) in (None, "", [])]
    if missing:
        errors.append(f"{action_type.value} action requires {', '.join(missing)}")
    return errors
