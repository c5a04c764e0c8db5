"""Guard condition evaluation against an instance context."""

from __future__ import annotations

import logging
import math
import operator as op
import re
from collections.abc import Mapping
from typing import Any, Callable, Iterable, Sequence, Union

from .models import VALUELESS_OPERATORS, ConditionOperator, WorkflowCondition
from .utils.paths import MISSING, resolve_path

logger = logging.getLogger(__name__)

ConditionLike = Union[WorkflowCondition, Mapping[str, Any]]

_COLLECTIONS = (list, tuple, set, frozenset)


def _as_number(value: Any) -> float | None:
    """Best-effort numeric coercion; ``None`` when not a number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return None if math.isnan(parsed) else parsed
    return None


def _is_absent(value: Any) -> bool:
    return value is MISSING or value is None


def _equals(actual: Any, expected: Any) -> bool:
    if _is_absent(actual) or _is_absent(expected):
        return _is_absent(actual) and _is_absent(expected)
    return actual == expected


def _numeric(compare: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def apply(actual: Any, expected: Any) -> bool:
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return False
        return compare(left, right)

    return apply


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return isinstance(expected, str) and expected.lower() in actual.lower()
    if isinstance(actual, _COLLECTIONS):
        return expected in actual
    if isinstance(actual, Mapping):
        return expected in actual.values()
    return False


def _starts_with(actual: Any, prefix: Any) -> bool:
    if isinstance(actual, str) and isinstance(prefix, str):
        return actual.lower().startswith(prefix.lower())
    return False


def _ends_with(actual: Any, suffix: Any) -> bool:
    if isinstance(actual, str) and isinstance(suffix, str):
        return actual.lower().endswith(suffix.lower())
    return False


def _member(actual: Any, expected: Any) -> bool:
    if actual is MISSING or not isinstance(expected, _COLLECTIONS):
        return False
    return actual in expected


def _regex(actual: Any, pattern: Any) -> bool:
    if not isinstance(actual, str) or not isinstance(pattern, str):
        return False
    try:
        return re.search(pattern, actual, re.IGNORECASE) is not None
    except re.error:
        logger.warning(f"Invalid regex pattern: {pattern}")
        return False


def _is_empty(value: Any) -> bool:
    if _is_absent(value):
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (*_COLLECTIONS, Mapping)):
        return len(value) == 0
    return False


def _negate(fn: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    return lambda actual, expected: not fn(actual, expected)


_OPERATORS: dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.NOT_EQUALS: _negate(_equals),
    ConditionOperator.GREATER_THAN: _numeric(op.gt),
    ConditionOperator.LESS_THAN: _numeric(op.lt),
    ConditionOperator.GREATER_THAN_OR_EQUAL: _numeric(op.ge),
    ConditionOperator.LESS_THAN_OR_EQUAL: _numeric(op.le),
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.NOT_CONTAINS: _negate(_contains),
    ConditionOperator.STARTS_WITH: _starts_with,
    ConditionOperator.ENDS_WITH: _ends_with,
    ConditionOperator.EXISTS: lambda actual, _: not _is_absent(actual),
    ConditionOperator.NOT_EXISTS: lambda actual, _: _is_absent(actual),
    ConditionOperator.IN: _member,
    ConditionOperator.NOT_IN: _negate(_member),
    ConditionOperator.REGEX: _regex,
    ConditionOperator.IS_EMPTY: lambda actual, _: _is_empty(actual),
    ConditionOperator.IS_NOT_EMPTY: lambda actual, _: not _is_empty(actual),
}

class ConditionEvaluator:
    """Evaluate field/operator/value predicates.

    Evaluation is pure and fail-closed: an unknown operator, a malformed
    condition or any error while comparing yields ``False``.
    """

    def evaluate_conditions(
        self, conditions: Iterable[ConditionLike] | None, context: Mapping[str, Any]
    ) -> bool:
        """AND of every condition; an empty list is true."""
        for condition in conditions or []:
            if not self.evaluate_condition(condition, context):
                return False
        return True

    def evaluate_conditions_with_or(
        self,
        groups: Iterable[Sequence[ConditionLike]] | None,
        context: Mapping[str, Any],
    ) -> bool:
        """True when any AND-group is true; no groups at all is true."""
        groups = list(groups or [])
        if not groups:
            return True
        return any(self.evaluate_conditions(group, context) for group in groups)

    def evaluate_condition(
        self, condition: ConditionLike, context: Mapping[str, Any]
    ) -> bool:
        try:
            if not isinstance(condition, WorkflowCondition):
                condition = WorkflowCondition.model_validate(condition)
            actual = resolve_path(context, condition.field)
            return _OPERATORS[condition.operator](actual, condition.value)
        except Exception as exc:
            logger.warning(f"Condition evaluation error for {condition!r}: {exc}")
            return False


def check_condition(condition: Any) -> list[str]:
    """Return shape errors for a single raw condition."""
    if not isinstance(condition, Mapping):
        return ["Condition must be an object"]

    errors: list[str] = []
    field = condition.get("field")
    if not field or not isinstance(field, str):
        errors.append("Field is required")

    operator = condition.get("operator")
    if not operator:
        errors.append("Operator is required")
        return errors
    if operator not in {o.value for o in ConditionOperator}:
        errors.append(f"Invalid operator: {operator}")
        return errors

    if operator not in {o.value for o in VALUELESS_OPERATORS} and "value" not in condition:
        errors.append("Value is required for this operator")
    if operator in (ConditionOperator.IN.value, ConditionOperator.NOT_IN.value):
        if not isinstance(condition.get("value"), list):
            errors.append("Value must be an array for in/not_in operators")
    return errors
