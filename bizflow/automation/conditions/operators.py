"""
Bizflow Condition Operators

Comparison operators for condition evaluation. The left operand is the
resolved payload field and may be ``ABSENT``.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

from bizflow.automation.conditions.paths import ABSENT
from bizflow.automation.types import ConditionOperator


class MalformedOperand(TypeError):
    """The comparison value cannot be used with the operator."""


class OperatorRegistry:
    """
    Registry of comparison operators.

    Provides the closed operator set; lookups accept enum members or their
    string values.
    """

    def __init__(self):
        self._operators: Dict[ConditionOperator, Callable[[Any, Any], bool]] = {}
        self._register_builtin_operators()

    def _register_builtin_operators(self) -> None:
        """Register built-in operators."""
        self._operators[ConditionOperator.EQUALS] = self._equals
        self._operators[ConditionOperator.NOT_EQUALS] = self._not_equals
        self._operators[ConditionOperator.GREATER_THAN] = self._greater_than
        self._operators[ConditionOperator.LESS_THAN] = self._less_than
        self._operators[ConditionOperator.CONTAINS] = self._contains
        self._operators[ConditionOperator.NOT_CONTAINS] = self._not_contains
        self._operators[ConditionOperator.IN] = self._in
        self._operators[ConditionOperator.NOT_IN] = self._not_in
        self._operators[ConditionOperator.IS_NULL] = self._is_null
        self._operators[ConditionOperator.IS_NOT_NULL] = self._is_not_null

    def supports(self, operator: Any) -> bool:
        return self._lookup(operator) is not None

    def evaluate(self, operator: Any, left: Any, right: Any) -> bool:
        """Evaluate an operator."""
        func = self._lookup(operator)
        if not func:
            raise ValueError(f"Unknown operator: {operator}")

        return func(left, right)

    def _lookup(self, operator: Any) -> Optional[Callable[[Any, Any], bool]]:
        try:
            return self._operators.get(ConditionOperator(operator))
        except ValueError:
            return None

    # === Operator Implementations ===

    @staticmethod
    def _equals(left: Any, right: Any) -> bool:
        """Structural equality; an absent field equals nothing."""
        if left is ABSENT:
            return False
        return values_equal(left, right)

    @staticmethod
    def _not_equals(left: Any, right: Any) -> bool:
        return not OperatorRegistry._equals(left, right)

    @staticmethod
    def _greater_than(left: Any, right: Any) -> bool:
        a, b = to_number(left), to_number(right)
        if a is None or b is None:
            return False
        return a > b

    @staticmethod
    def _less_than(left: Any, right: Any) -> bool:
        a, b = to_number(left), to_number(right)
        if a is None or b is None:
            return False
        return a < b

    @staticmethod
    def _contains(left: Any, right: Any) -> bool:
        """Substring check after converting both sides to text."""
        if left is ABSENT:
            return False
        return to_text(right) in to_text(left)

    @staticmethod
    def _not_contains(left: Any, right: Any) -> bool:
        return not OperatorRegistry._contains(left, right)

    @staticmethod
    def _in(left: Any, right: Any) -> bool:
        """Membership in a collection, a comma-separated string or mapping keys."""
        if isinstance(right, (list, tuple, set, frozenset)):
            members = right
        elif isinstance(right, str):
            members = [item.strip() for item in right.split(",")]
        elif isinstance(right, Mapping):
            members = list(right.keys())
        else:
            raise MalformedOperand(f"'in' needs a collection, got {type(right).__name__}")

        if left is ABSENT:
            return False

        if isinstance(right, str):
            return to_text(left) in members

        return any(values_equal(left, member) for member in members)

    @staticmethod
    def _not_in(left: Any, right: Any) -> bool:
        return not OperatorRegistry._in(left, right)

    @staticmethod
    def _is_null(left: Any, right: Any) -> bool:
        return left is ABSENT or left is None

    @staticmethod
    def _is_not_null(left: Any, right: Any) -> bool:
        return not OperatorRegistry._is_null(left, right)


# === Value Helpers ===


def values_equal(left: Any, right: Any) -> bool:
    """Structural equality that keeps booleans apart from numbers."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right

    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if set(left.keys()) != set(right.keys()):
            return False
        return all(values_equal(left[k], right[k]) for k in left)

    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(values_equal(a, b) for a, b in zip(left, right))

    return left == right


def to_number(value: Any) -> Optional[float]:
    """Coerce numbers and numeric strings; anything else is ``None``."""
    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(number):
        return None
    return number


def to_text(value: Any) -> str:
    """Text form used by the containment operators."""
    if isinstance(value, str):
        return value
    if value is None or value is ABSENT:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, default=str)


# Global operator registry
_operator_registry = OperatorRegistry()


def compare(left: Any, operator: Any, right: Any) -> bool:
    """
    Compare two values using an operator.

    Raises for unknown operators and malformed operands; callers that must
    fail closed use ``ConditionEvaluator``.
    """
    return _operator_registry.evaluate(operator, left, right)
