"""
Bizflow Condition Evaluator

Evaluates field/operator/value conditions against an event payload.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog

from bizflow.automation.conditions.operators import OperatorRegistry
from bizflow.automation.conditions.paths import resolve_field
from bizflow.automation.types import Condition

logger = structlog.get_logger(__name__)


class ConditionEvaluator:
    """
    Evaluates workflow conditions.

    A condition that cannot be evaluated (unknown operator, malformed
    operand, unexpected error) is false. Lists of conditions are ANDed and
    an empty list is true.
    """

    def __init__(self, operators: Optional[OperatorRegistry] = None):
        self._operator_registry = operators or OperatorRegistry()

    def evaluate(self, condition: Condition, payload: Mapping[str, Any]) -> bool:
        """Evaluate a single condition."""
        try:
            if not self._operator_registry.supports(condition.operator):
                logger.warning(
                    "condition_unknown_operator",
                    field=condition.field,
                    operator=str(condition.operator),
                )
                return False

            left = resolve_field(payload, condition.field)
            result = self._operator_registry.evaluate(condition.operator, left, condition.value)

            logger.debug(
                "condition_evaluated",
                field=condition.field,
                operator=str(condition.operator),
                result=result,
            )
            return bool(result)

        except Exception as e:
            logger.warning(
                "condition_error",
                field=getattr(condition, "field", None),
                operator=str(getattr(condition, "operator", None)),
                error=str(e),
            )
            return False

    def evaluate_all(self, conditions: Optional[Sequence[Condition]], payload: Mapping[str, Any]) -> bool:
        """AND of all conditions, short-circuiting on the first false one."""
        if not conditions:
            return True

        for condition in conditions:
            if not self.evaluate(condition, payload):
                return False
        return True

    def explain(self, conditions: Optional[Sequence[Condition]], payload: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """Evaluate every condition without short-circuit, for dry runs."""
        return [
            {
                "field": condition.field,
                "operator": str(getattr(condition.operator, "value", condition.operator)),
                "value": condition.value,
                "result": self.evaluate(condition, payload),
            }
            for condition in conditions or []
        ]


_default_evaluator = ConditionEvaluator()


def evaluate_condition(condition: Condition, payload: Mapping[str, Any]) -> bool:
    return _default_evaluator.evaluate(condition, payload)


def evaluate_conditions(conditions: Optional[Sequence[Condition]], payload: Mapping[str, Any]) -> bool:
    """Evaluate a list of conditions against ``payload``; empty means true."""
    return _default_evaluator.evaluate_all(conditions, payload)
