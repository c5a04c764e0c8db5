import pytest

from caseflow.utils import MISSING, FormulaError, evaluate_formula, resolve_path


def test_resolve_path_walks_mappings_and_sequences():
    doc = {"a": {"b": [{"c": 3}]}}
    assert resolve_path(doc, "a.b.0.c") == 3
    assert resolve_path(doc, "a.b.1.c") is MISSING
    assert resolve_path(doc, "a.x") is MISSING
    assert resolve_path({"s": "text"}, "s.0") is MISSING


def test_formula_with_inputs_and_context():
    context = {"labor": {"hours": 2}, "rate": 40}
    inputs = {"hours": "labor.hours", "markup": 1.5}
    assert evaluate_formula("hours * rate * markup", inputs, context) == 120


def test_formula_functions():
    assert evaluate_formula("max(a, b) - abs(-1)", {}, {"a": 3, "b": 7}) == 6
    assert evaluate_formula("round(total / 3, 2)", {}, {"total": 10}) == 3.33


@pytest.mark.parametrize(
    "formula, context",
    [
        ("a +", {"a": 1}),
        ("a / b", {"a": 1, "b": 0}),
        ("missing * 2", {}),
        ("name * 2", {"name": "bob"}),
        ("__import__('os')", {}),
        ("a if a else 1", {"a": 1}),
        ("flag + 1", {"flag": True}),
    ],
)
def test_invalid_formulas_raise(formula, context):
    with pytest.raises(FormulaError):
        evaluate_formula(formula, {}, context)


def test_power_is_bounded():
    assert evaluate_formula("base ** 2", {}, {"base": 3}) == 9
    with pytest.raises(FormulaError, match="Exponent"):
        evaluate_formula("7 ** 7 ** 8", {}, {})
    with pytest.raises(FormulaError):
        evaluate_formula("1e300 ** 2", {}, {})
    with pytest.raises(FormulaError, match="no real result"):
        evaluate_formula("(-8) ** 0.5", {}, {})
    with pytest.raises(FormulaError, match="whole number"):
        evaluate_formula("round(x, 1.5)", {}, {"x": 1})
