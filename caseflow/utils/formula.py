"""Restricted arithmetic evaluation for calculation steps."""

from __future__ import annotations

import ast
import operator
from typing import Any, Callable, Mapping, Optional

from .paths import MISSING, resolve_path

_BINARY: dict[type, Callable[[float, float], float]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY: dict[type, Callable[[float], float]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class FormulaError(ValueError):
    """The formula is malformed or refers to a non-numeric value."""


MAX_EXPONENT = 100


def _power(base: float, exponent: float) -> float:
    if abs(exponent) > MAX_EXPONENT:
        raise FormulaError(f"Exponent {exponent:g} exceeds the limit of {MAX_EXPONENT}")
    result = base**exponent
    if isinstance(result, complex):
        raise FormulaError(f"{base:g} ** {exponent:g} has no real result")
    return result


def _round(value: float, digits: float = 0) -> float:
    if not float(digits).is_integer():
        raise FormulaError(f"round() needs a whole number of digits, got {digits:g}")
    return round(value, int(digits))


_FUNCTIONS: dict[str, Callable[..., float]] = {
    "min": min,
    "max": max,
    "abs": abs,
    "round": _round,
}


def get_expr_name(node: ast.AST) -> Optional[str]:
    """Return dotted name for expressions like attributes or names."""

    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        value = get_expr_name(node.value)
        return f"{value}.{node.attr}" if value else None
    return None


def evaluate_formula(
    formula: str, inputs: Mapping[str, Any], context: Mapping[str, Any]
) -> float:
    """Evaluate ``formula`` using only arithmetic and a few numeric builtins.

    Names resolve through ``inputs`` first (literal numbers or dot paths into
    ``context``), then directly as dot paths into ``context``.
    """

    try:
        tree = ast.parse(formula, mode="eval")
    except SyntaxError as exc:
        raise FormulaError(f"Invalid formula '{formula}': {exc.msg}") from exc

    def lookup(name: str) -> float:
        source = inputs.get(name, name)
        value = source if not isinstance(source, str) else resolve_path(context, source)
        if value is MISSING:
            raise FormulaError(f"Unknown formula input '{name}'")
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise FormulaError(f"Formula input '{name}' is not numeric")
        try:
            return float(value)
        except ValueError as exc:
            raise FormulaError(f"Formula input '{name}' is not numeric") from exc

    def visit(node: ast.AST) -> float:
        if isinstance(node, ast.Expression):
            return visit(node.body)
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
            if isinstance(node.value, bool):
                raise FormulaError("Booleans are not allowed in formulas")
            return float(node.value)
        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.Pow):
            return _power(visit(node.left), visit(node.right))
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY:
            return _BINARY[type(node.op)](visit(node.left), visit(node.right))
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY:
            return _UNARY[type(node.op)](visit(node.operand))
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
            fn = _FUNCTIONS.get(node.func.id)
            if fn is None or node.keywords:
                raise FormulaError(f"Function '{node.func.id}' is not allowed")
            return fn(*(visit(arg) for arg in node.args))
        name = get_expr_name(node)
        if name is not None:
            return lookup(name)
        raise FormulaError(f"Unsupported expression in formula: {ast.dump(node)}")

    try:
        return visit(tree)
    except ZeroDivisionError as exc:
        raise FormulaError(f"Division by zero in formula '{formula}'") from exc
    except (TypeError, OverflowError) as exc:
        raise FormulaError(f"Cannot evaluate formula '{formula}': {exc}") from exc
