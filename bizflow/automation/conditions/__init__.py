"""
Bizflow Condition System

Field path resolution, operators and evaluation.
"""

from bizflow.automation.conditions.evaluator import (
    ConditionEvaluator,
    evaluate_condition,
    evaluate_conditions,
)
from bizflow.automation.conditions.operators import OperatorRegistry, compare
from bizflow.automation.conditions.paths import ABSENT, is_absent, resolve_field

__all__ = [
    "ABSENT",
    "ConditionEvaluator",
    "OperatorRegistry",
    "compare",
    "evaluate_condition",
    "evaluate_conditions",
    "is_absent",
    "resolve_field",
]
