"""
Bizflow Workflow Automation Types

Core enums and dataclasses for workflow definitions, dispatch and execution.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


# === Enums ===


class TriggerType(str, Enum):
    """Business events a workflow can react to."""
    APPOINTMENT_CREATED = "APPOINTMENT_CREATED"
    APPOINTMENT_COMPLETED = "APPOINTMENT_COMPLETED"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
    CLIENT_CREATED = "CLIENT_CREATED"
    CLIENT_BIRTHDAY = "CLIENT_BIRTHDAY"
    SALE_COMPLETED = "SALE_COMPLETED"
    REVIEW_RECEIVED = "REVIEW_RECEIVED"
    STOCK_LOW = "STOCK_LOW"
    SCHEDULED = "SCHEDULED"
    WEBHOOK = "WEBHOOK"


class ActionType(str, Enum):
    """Typed effects a workflow can perform."""
    SEND_EMAIL = "SEND_EMAIL"
    SEND_SMS = "SEND_SMS"
    SEND_WHATSAPP = "SEND_WHATSAPP"
    CREATE_TASK = "CREATE_TASK"
    UPDATE_CLIENT = "UPDATE_CLIENT"
    CREATE_APPOINTMENT = "CREATE_APPOINTMENT"
    SEND_REVIEW_REQUEST = "SEND_REVIEW_REQUEST"
    ADD_CLIENT_TAG = "ADD_CLIENT_TAG"
    WEBHOOK_CALL = "WEBHOOK_CALL"
    WAIT_DELAY = "WAIT_DELAY"


class ConditionOperator(str, Enum):
    """Closed set of condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class ScheduleType(str, Enum):
    ONCE = "ONCE"
    RECURRING = "RECURRING"


class IntervalUnit(str, Enum):
    MINUTES = "MINUTES"
    HOURS = "HOURS"
    DAYS = "DAYS"
    WEEKS = "WEEKS"
    MONTHS = "MONTHS"


class DelayUnit(str, Enum):
    MINUTES = "MINUTES"
    HOURS = "HOURS"
    DAYS = "DAYS"


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    SKIPPED = "skipped"      # Conditions no longer hold
    QUEUED = "queued"        # Waiting behind an in-flight execution
    REJECTED = "rejected"    # Per-workflow queue is full
    RUNNING = "running"
    WAITING = "waiting"      # Parked on an action delay
    COMPLETED = "completed"
    FAILED = "failed"


class ActionOutcomeStatus(str, Enum):
    EXECUTED = "executed"
    FAILED = "failed"
    SKIPPED = "skipped"


class FactType(str, Enum):
    """Facts returned by workflow mutations for the caller to publish."""
    WORKFLOW_CREATED = "WorkflowCreated"
    WORKFLOW_UPDATED = "WorkflowUpdated"
    WORKFLOW_ACTIVATED = "WorkflowActivated"
    WORKFLOW_DEACTIVATED = "WorkflowDeactivated"
    WORKFLOW_EXECUTED = "WorkflowExecuted"
    WORKFLOW_FAILED = "WorkflowFailed"


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# === Definition Value Types ===


@dataclass
class Condition:
    """A single field/operator/value predicate."""
    field: str
    operator: str
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        operator = self.operator.value if isinstance(self.operator, Enum) else self.operator
        return {"field": self.field, "operator": operator, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            field=data.get("field", ""),
            operator=data.get("operator", ""),
            value=data.get("value"),
        )


@dataclass
class Schedule:
    """ONCE or RECURRING timing for SCHEDULED triggers."""
    type: ScheduleType
    date: Optional[datetime] = None
    interval: Optional[IntervalUnit] = None
    interval_value: Optional[int] = None
    cron_expression: Optional[str] = None
    timezone: str = "UTC"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "date": format_datetime(self.date),
            "interval": self.interval.value if self.interval else None,
            "interval_value": self.interval_value,
            "cron_expression": self.cron_expression,
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schedule":
        return cls(
            type=ScheduleType(data["type"]),
            date=parse_datetime(data.get("date")),
            interval=IntervalUnit(data["interval"]) if data.get("interval") else None,
            interval_value=data.get("interval_value"),
            cron_expression=data.get("cron_expression"),
            timezone=data.get("timezone") or "UTC",
        )


@dataclass
class WorkflowTrigger:
    """Entry condition for dispatch."""
    type: TriggerType
    conditions: List[Condition] = field(default_factory=list)
    schedule: Optional[Schedule] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "schedule": self.schedule.to_dict() if self.schedule else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowTrigger":
        return cls(
            type=TriggerType(data["type"]),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            schedule=Schedule.from_dict(data["schedule"]) if data.get("schedule") else None,
        )


@dataclass(frozen=True)
class ActionDelay:
    value: int
    unit: DelayUnit

    def to_timedelta(self) -> timedelta:
        if self.unit == DelayUnit.MINUTES:
            return timedelta(minutes=self.value)
        if self.unit == DelayUnit.HOURS:
            return timedelta(hours=self.value)
        return timedelta(days=self.value)

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "unit": self.unit.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionDelay":
        return cls(value=int(data["value"]), unit=DelayUnit(data["unit"]))


@dataclass(frozen=True)
class WorkflowAction:
    """
    One pipeline step.

    Instances are replaced, never mutated, by the owning workflow.
    """
    type: ActionType
    order: int
    config: Dict[str, Any] = field(default_factory=dict)
    conditions: List[Condition] = field(default_factory=list)
    delay: Optional[ActionDelay] = None
    id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "order": self.order,
            "config": dict(self.config),
            "conditions": [c.to_dict() for c in self.conditions],
            "delay": self.delay.to_dict() if self.delay else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowAction":
        return cls(
            id=data.get("id", ""),
            type=ActionType(data["type"]),
            order=int(data["order"]),
            config=dict(data.get("config") or {}),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            delay=ActionDelay.from_dict(data["delay"]) if data.get("delay") else None,
        )


# === Dispatch and Execution Types ===


@dataclass
class TriggerEvent:
    """An incoming business event or scheduler tick."""
    type: TriggerType
    tenant_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    target_workflow_id: Optional[str] = None  # Scheduler ticks address one workflow


@dataclass
class ActionResult:
    """Outcome reported by an action executor."""
    success: bool
    result: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, result: Any = None) -> "ActionResult":
        return cls(success=True, result=result)

    @classmethod
    def fail(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)

    @classmethod
    def from_value(cls, value: Any) -> "ActionResult":
        """Normalise what an executor returned.

        A mapping with a boolean ``success`` key is read as
        ``{success, result, error}``; any other value is a successful result.
        """
        if isinstance(value, ActionResult):
            return value
        if isinstance(value, Mapping) and isinstance(value.get("success"), bool):
            return cls(
                success=value["success"],
                result=value.get("result"),
                error=None if value["success"] else (value.get("error") or "unknown error"),
            )
        return cls.ok(value)


@dataclass
class ActionOutcome:
    """Per-action entry of an execution record."""
    action_id: str
    action_type: ActionType
    order: int
    status: ActionOutcomeStatus
    result: Any = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_id": self.action_id,
            "action_type": self.action_type.value,
            "order": self.order,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "started_at": format_datetime(self.started_at),
            "completed_at": format_datetime(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionOutcome":
        return cls(
            action_id=data["action_id"],
            action_type=ActionType(data["action_type"]),
            order=data["order"],
            status=ActionOutcomeStatus(data["status"]),
            result=data.get("result"),
            error=data.get("error"),
            started_at=parse_datetime(data.get("started_at")),
            completed_at=parse_datetime(data.get("completed_at")),
        )


@dataclass
class WorkflowExecution:
    """One run of a workflow pipeline against one triggering event."""
    id: str
    workflow_id: str
    tenant_id: str
    workflow_name: str = ""
    trigger_type: Optional[TriggerType] = None
    trigger_data: Dict[str, Any] = field(default_factory=dict)

    status: ExecutionStatus = ExecutionStatus.RUNNING
    outcomes: List[ActionOutcome] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    actions_executed: int = 0
    actions_failed: int = 0
    actions_skipped: int = 0

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return not self.errors

    def is_terminal(self) -> bool:
        return self.status in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.SKIPPED,
        )

    def finish(self, now: datetime) -> None:
        """Mark the pipeline as drained."""
        self.status = ExecutionStatus.COMPLETED if self.success else ExecutionStatus.FAILED
        self.completed_at = now
        if self.started_at:
            self.duration_ms = (now - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "tenant_id": self.tenant_id,
            "workflow_name": self.workflow_name,
            "trigger_type": self.trigger_type.value if self.trigger_type else None,
            "trigger_data": self.trigger_data,
            "status": self.status.value,
            "success": self.success,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "errors": list(self.errors),
            "actions_executed": self.actions_executed,
            "actions_failed": self.actions_failed,
            "actions_skipped": self.actions_skipped,
            "started_at": format_datetime(self.started_at),
            "completed_at": format_datetime(self.completed_at),
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowExecution":
        return cls(
            id=data["id"],
            workflow_id=data["workflow_id"],
            tenant_id=data["tenant_id"],
            workflow_name=data.get("workflow_name", ""),
            trigger_type=TriggerType(data["trigger_type"]) if data.get("trigger_type") else None,
            trigger_data=data.get("trigger_data") or {},
            status=ExecutionStatus(data.get("status", ExecutionStatus.COMPLETED.value)),
            outcomes=[ActionOutcome.from_dict(o) for o in data.get("outcomes") or []],
            errors=list(data.get("errors") or []),
            actions_executed=data.get("actions_executed", 0),
            actions_failed=data.get("actions_failed", 0),
            actions_skipped=data.get("actions_skipped", 0),
            started_at=parse_datetime(data.get("started_at")),
            completed_at=parse_datetime(data.get("completed_at")),
            duration_ms=data.get("duration_ms", 0.0),
        )


@dataclass
class ExecutionResult:
    """Summary returned from ``execute_workflow``."""
    workflow_id: str
    status: ExecutionStatus
    success: bool
    actions_executed: int = 0
    errors: List[str] = field(default_factory=list)
    execution_id: Optional[str] = None

    @classmethod
    def from_execution(cls, execution: WorkflowExecution) -> "ExecutionResult":
        return cls(
            workflow_id=execution.workflow_id,
            status=execution.status,
            success=execution.success,
            actions_executed=execution.actions_executed,
            errors=list(execution.errors),
            execution_id=execution.id,
        )


@dataclass
class WorkflowFact:
    """Outbox fact produced by a workflow mutation."""
    type: FactType
    workflow_id: str
    tenant_id: str
    occurred_at: datetime
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "workflow_id": self.workflow_id,
            "tenant_id": self.tenant_id,
            "occurred_at": format_datetime(self.occurred_at),
            "data": self.data,
        }
