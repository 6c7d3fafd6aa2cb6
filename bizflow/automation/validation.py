"""
Bizflow Workflow Validator

Reports every problem with a workflow definition instead of stopping at the
first one, and dry-runs workflows against sample data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog

from bizflow.automation.actions.configs import parse_action_config
from bizflow.automation.conditions.evaluator import ConditionEvaluator
from bizflow.automation.conditions.operators import OperatorRegistry
from bizflow.automation.errors import ValidationError
from bizflow.automation.execution.context import ACTION_OUTPUTS_KEY
from bizflow.automation.triggers.schedule import validate_trigger
from bizflow.automation.types import (
    ActionType,
    Condition,
    TriggerType,
    WorkflowAction,
    WorkflowTrigger,
)
from bizflow.automation.workflow import Workflow, effective_delay
from bizflow.core.clock import Clock, IdFactory

logger = structlog.get_logger(__name__)

# Events frequent enough that an unconditional workflow is probably a mistake
_FREQUENT_TRIGGERS = {
    TriggerType.APPOINTMENT_CREATED,
    TriggerType.SALE_COMPLETED,
    TriggerType.REVIEW_RECEIVED,
}


@dataclass
class ValidationIssue:
    """A validation problem."""
    code: str
    message: str
    path: Optional[str] = None
    severity: str = "error"  # error, warning

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "path": self.path,
            "severity": self.severity,
        }


@dataclass
class ValidationReport:
    """Result of workflow validation."""
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


class WorkflowValidator:
    """
    Validates workflow definitions.

    Checks:
    - Name and trigger presence
    - Schedule validity for SCHEDULED triggers
    - Action types, unique orders and per-type configs
    - Unknown condition operators (warning)
    - Unconditional workflows on frequent events (warning)
    """

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or ConditionEvaluator()
        self._operators = OperatorRegistry()

    # === Validation ===

    def validate_workflow(self, workflow: Workflow) -> ValidationReport:
        return self.validate_definition(workflow.to_dict())

    def validate_definition(self, data: Mapping[str, Any]) -> ValidationReport:
        """
        Validate a workflow definition given as a plain mapping.

        Never raises; every problem found is reported.
        """
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append(ValidationIssue("MISSING_NAME", "Workflow must have a name", "name"))

        trigger = self._validate_trigger(data.get("trigger"), errors)
        actions = self._validate_actions(data.get("actions"), errors)

        conditions = self._parse_conditions(data.get("conditions"), "conditions", errors)
        warnings.extend(self._check_operators(conditions, "conditions"))

        if trigger is not None:
            warnings.extend(self._check_operators(trigger.conditions, "trigger.conditions"))
            if trigger.type in _FREQUENT_TRIGGERS and not trigger.conditions and not conditions:
                warnings.append(
                    ValidationIssue(
                        "NO_CONDITIONS",
                        f"Workflow runs on every {trigger.type.value} event",
                        "conditions",
                        severity="warning",
                    )
                )

        for i, action in enumerate(actions):
            warnings.extend(self._check_operators(action.conditions, f"actions[{i}].conditions"))

        if actions and all(a.type == ActionType.WAIT_DELAY for a in actions):
            warnings.append(
                ValidationIssue(
                    "DELAY_ONLY",
                    "Workflow only waits and never acts",
                    "actions",
                    severity="warning",
                )
            )

        return ValidationReport(is_valid=not errors, errors=errors, warnings=warnings)

    def _validate_trigger(self, data: Any, errors: List[ValidationIssue]) -> Optional[WorkflowTrigger]:
        if not isinstance(data, Mapping):
            errors.append(ValidationIssue("MISSING_TRIGGER", "Workflow must have a trigger", "trigger"))
            return None

        try:
            trigger = WorkflowTrigger.from_dict(dict(data))
        except (KeyError, ValueError, TypeError) as e:
            errors.append(ValidationIssue("INVALID_TRIGGER", f"Invalid trigger: {e}", "trigger"))
            return None

        for problem in validate_trigger(trigger):
            errors.append(ValidationIssue("INVALID_SCHEDULE", problem, "trigger.schedule"))
        return trigger

    def _validate_actions(self, data: Any, errors: List[ValidationIssue]) -> List[WorkflowAction]:
        if not data:
            errors.append(ValidationIssue("NO_ACTIONS", "Workflow must have at least one action", "actions"))
            return []

        actions: List[WorkflowAction] = []
        seen_orders: Dict[int, int] = {}

        for i, raw in enumerate(data):
            path = f"actions[{i}]"
            try:
                action = WorkflowAction.from_dict(dict(raw))
            except (KeyError, ValueError, TypeError) as e:
                errors.append(ValidationIssue("INVALID_ACTION", f"Invalid action: {e}", path))
                continue

            if action.order in seen_orders:
                errors.append(
                    ValidationIssue(
                        "DUPLICATE_ORDER",
                        f"Order {action.order} is also used by actions[{seen_orders[action.order]}]",
                        f"{path}.order",
                    )
                )
            else:
                seen_orders[action.order] = i

            if action.delay is not None and action.delay.value <= 0:
                errors.append(ValidationIssue("INVALID_DELAY", "Action delay must be positive", f"{path}.delay"))

            try:
                parse_action_config(action.type, action.config)
            except ValidationError as e:
                for problem in e.details.get("problems", [e.message]):
                    errors.append(ValidationIssue("INVALID_CONFIG", problem, f"{path}.config"))
            else:
                if action.type == ActionType.WAIT_DELAY and effective_delay(action) is None:
                    errors.append(ValidationIssue("INVALID_DELAY", "WAIT_DELAY action requires a delay", f"{path}.delay"))

            actions.append(action)

        return actions

    def _parse_conditions(self, data: Any, path: str, errors: List[ValidationIssue]) -> List[Condition]:
        conditions = []
        for i, raw in enumerate(data or []):
            if not isinstance(raw, Mapping) or not raw.get("field"):
                errors.append(ValidationIssue("INVALID_CONDITION", "Condition must name a field", f"{path}[{i}]"))
                continue
            conditions.append(Condition.from_dict(dict(raw)))
        return conditions

    def _check_operators(self, conditions: List[Condition], path: str) -> List[ValidationIssue]:
        return [
            ValidationIssue(
                "UNKNOWN_OPERATOR",
                f"Unknown operator '{c.operator}' always evaluates to false",
                f"{path}[{i}].operator",
                severity="warning",
            )
            for i, c in enumerate(conditions)
            if not self._operators.supports(c.operator)
        ]

    # === Dry Run ===

    def dry_run(self, workflow: Workflow, sample_data: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Predict what an event with ``sample_data`` would do.

        Conditions are evaluated for real; no action executor is called.
        Per-action conditions see the sample data with no prior action
        outputs.
        """
        payload = dict(sample_data)
        trigger_results = self.evaluator.explain(workflow.trigger.conditions, payload)
        workflow_results = self.evaluator.explain(workflow.conditions, payload)
        can_execute = workflow.can_be_triggered(payload, self.evaluator)

        action_payload = {**payload, ACTION_OUTPUTS_KEY: {}}
        predicted = []
        for action in workflow.actions:
            delay = effective_delay(action)
            would_execute = can_execute and self.evaluator.evaluate_all(action.conditions, action_payload)
            predicted.append(
                {
                    "action_id": action.id,
                    "type": action.type.value,
                    "order": action.order,
                    "would_execute": would_execute,
                    "delay": delay.to_dict() if delay else None,
                }
            )

        logger.debug("workflow_dry_run", workflow_id=workflow.id, can_execute=can_execute)

        return {
            "can_execute": can_execute,
            "is_active": workflow.is_active,
            "condition_results": {
                "trigger": trigger_results,
                "workflow": workflow_results,
            },
            "predicted_actions": predicted,
        }


def workflow_from_definition(
    data: Mapping[str, Any],
    tenant_id: Optional[str] = None,
    clock: Optional[Clock] = None,
    id_factory: Optional[IdFactory] = None,
) -> Tuple[Workflow, List[Any]]:
    """Build a workflow from a plain mapping through the normal creation checks."""
    try:
        trigger = WorkflowTrigger.from_dict(dict(data["trigger"]))
        actions = [WorkflowAction.from_dict(dict(a)) for a in data.get("actions") or []]
        conditions = [Condition.from_dict(dict(c)) for c in data.get("conditions") or []]
    except (KeyError, ValueError, TypeError) as e:
        raise ValidationError(f"Malformed workflow definition: {e}") from e

    return Workflow.create(
        name=data.get("name") or "",
        tenant_id=tenant_id or data.get("tenant_id") or "default",
        trigger=trigger,
        actions=actions,
        description=data.get("description"),
        conditions=conditions,
        is_active=data.get("is_active", True),
        clock=clock,
        id_factory=id_factory,
    )


_default_validator = WorkflowValidator()


def validate_workflow(definition: Any) -> ValidationReport:
    """Validate a ``Workflow`` or a definition mapping."""
    if isinstance(definition, Workflow):
        return _default_validator.validate_workflow(definition)
    return _default_validator.validate_definition(definition)


def dry_run_workflow(workflow: Workflow, sample_data: Mapping[str, Any]) -> Dict[str, Any]:
    return _default_validator.dry_run(workflow, sample_data)
