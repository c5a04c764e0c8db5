from .formula import FormulaError, evaluate_formula
from .locks import InstanceLocks
from .paths import MISSING, resolve_path

__all__ = [
    "FormulaError",
    "InstanceLocks",
    "MISSING",
    "evaluate_formula",
    "resolve_path",
]
