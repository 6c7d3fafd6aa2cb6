"""
Automation error taxonomy.

Definition-time errors (validation, conflict, not found, business rule) are
raised to the caller. Action execution errors are recovered by the engine and
recorded on the execution.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AutomationError(Exception):
    """Base class for automation errors."""

    code = "AUTOMATION_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }


class ValidationError(AutomationError):
    """Malformed workflow definition."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.field = field
        if field:
            self.details.setdefault("field", field)


class NotFoundError(AutomationError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource} with id {identifier} not found",
            {"resource": resource, "id": identifier},
        )
        self.resource = resource
        self.identifier = identifier


class ConflictError(AutomationError):
    code = "CONFLICT"
    status_code = 409


class BusinessRuleError(AutomationError):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422

    def __init__(self, message: str, rule: str):
        super().__init__(message, {"rule": rule})
        self.rule = rule


class ActionExecutionError(AutomationError):
    """An action executor call failed or timed out."""

    code = "ACTION_EXECUTION_FAILED"
    status_code = 502

    def __init__(self, action_id: str, action_type: str, message: str):
        super().__init__(
            f"Action {action_id} ({action_type}) failed: {message}",
            {"action_id": action_id, "action_type": action_type},
        )
        self.action_id = action_id
        self.action_type = action_type
