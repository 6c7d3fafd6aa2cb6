"""
Bizflow Workflow Definition

The workflow aggregate: trigger, ordered action pipeline, workflow-level
conditions and the active flag. All mutations go through methods that
enforce the structural invariants and return the facts they produced for the
caller to publish.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from bizflow.automation.actions.configs import parse_action_config
from bizflow.automation.conditions.evaluator import ConditionEvaluator, evaluate_conditions
from bizflow.automation.errors import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from bizflow.automation.triggers.schedule import compute_next_run, validate_trigger
from bizflow.automation.types import (
    ActionDelay,
    ActionType,
    Condition,
    FactType,
    TriggerType,
    WorkflowAction,
    WorkflowExecution,
    WorkflowFact,
    WorkflowTrigger,
    format_datetime,
    parse_datetime,
)
from bizflow.core.clock import Clock, IdFactory, SystemClock, new_id

logger = structlog.get_logger(__name__)

_UPDATABLE_ACTION_FIELDS = {"type", "order", "config", "conditions", "delay"}


def effective_delay(action: WorkflowAction) -> Optional[ActionDelay]:
    """The delay an action waits before running.

    An explicit ``delay`` wins; a WAIT_DELAY action otherwise waits for the
    delay in its config.
    """
    if action.delay is not None:
        return action.delay
    if action.type == ActionType.WAIT_DELAY and isinstance(action.config.get("delay"), Mapping):
        return ActionDelay.from_dict(action.config["delay"])
    return None


def _validate_action(action: WorkflowAction) -> None:
    if isinstance(action.order, bool) or not isinstance(action.order, int):
        raise ValidationError("Action order must be an integer", field="order")
    if action.delay is not None and action.delay.value <= 0:
        raise ValidationError("Action delay must be positive", field="delay")
    parse_action_config(action.type, action.config)
    if action.type == ActionType.WAIT_DELAY and effective_delay(action) is None:
        raise ValidationError("WAIT_DELAY action requires a delay", field="delay")


def _check_unique_orders(actions: Sequence[WorkflowAction]) -> bool:
    orders = [a.order for a in actions]
    return len(orders) == len(set(orders))


class Workflow:
    """
    Tenant-owned automation definition.

    Invariants:
    - ``actions`` are kept sorted by ``order`` and orders are unique
    - a workflow without actions cannot be activated
    - a SCHEDULED trigger carries a valid schedule
    """

    def __init__(
        self,
        id: str,
        tenant_id: str,
        name: str,
        trigger: WorkflowTrigger,
        actions: Sequence[WorkflowAction],
        description: Optional[str] = None,
        conditions: Optional[Sequence[Condition]] = None,
        is_active: bool = True,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        last_run_at: Optional[datetime] = None,
        clock: Optional[Clock] = None,
        id_factory: Optional[IdFactory] = None,
    ):
        self._clock = clock or SystemClock()
        self._id_factory = id_factory or new_id

        now = self._clock.now()
        self.id = id
        self.tenant_id = tenant_id
        self.name = name
        self.description = description
        self.trigger = trigger
        self.conditions: List[Condition] = list(conditions or [])
        self.is_active = is_active
        self.created_at = created_at or now
        self.updated_at = updated_at or self.created_at
        self.last_run_at = last_run_at
        self._actions: List[WorkflowAction] = sorted(actions, key=lambda a: a.order)

    # === Factory ===

    @classmethod
    def create(
        cls,
        name: str,
        tenant_id: str,
        trigger: WorkflowTrigger,
        actions: Sequence[WorkflowAction],
        description: Optional[str] = None,
        conditions: Optional[Sequence[Condition]] = None,
        is_active: bool = True,
        clock: Optional[Clock] = None,
        id_factory: Optional[IdFactory] = None,
    ) -> Tuple["Workflow", List[WorkflowFact]]:
        """Validate and build a new workflow."""
        if not name or not name.strip():
            raise ValidationError("Workflow name is required", field="name")
        if not actions:
            raise ValidationError("Workflow must have at least one action", field="actions")
        if not _check_unique_orders(actions):
            raise ValidationError("Action orders must be unique", field="actions")

        trigger_errors = validate_trigger(trigger)
        if trigger_errors:
            raise ValidationError("; ".join(trigger_errors), field="trigger")

        for action in actions:
            _validate_action(action)

        id_factory = id_factory or new_id
        workflow = cls(
            id=id_factory(),
            tenant_id=tenant_id,
            name=name.strip(),
            description=description.strip() if description else None,
            trigger=trigger,
            actions=[dataclasses.replace(a, id=id_factory()) for a in actions],
            conditions=conditions,
            is_active=is_active,
            clock=clock,
            id_factory=id_factory,
        )

        logger.info(
            "workflow_created",
            workflow_id=workflow.id,
            tenant_id=tenant_id,
            trigger_type=trigger.type.value,
            action_count=workflow.action_count,
        )

        return workflow, [workflow._fact(FactType.WORKFLOW_CREATED, name=workflow.name)]

    # === Properties ===

    @property
    def actions(self) -> List[WorkflowAction]:
        return list(self._actions)

    @property
    def action_count(self) -> int:
        return len(self._actions)

    @property
    def has_schedule(self) -> bool:
        return self.trigger.schedule is not None

    @property
    def is_scheduled(self) -> bool:
        return self.trigger.type == TriggerType.SCHEDULED and self.trigger.schedule is not None

    def get_action(self, action_id: str) -> Optional[WorkflowAction]:
        for action in self._actions:
            if action.id == action_id:
                return action
        return None

    def get_actions_by_type(self, action_type: ActionType) -> List[WorkflowAction]:
        return [a for a in self._actions if a.type == action_type]

    def has_action_type(self, action_type: ActionType) -> bool:
        return any(a.type == action_type for a in self._actions)

    def next_scheduled_run(self) -> Optional[datetime]:
        if not self.is_scheduled:
            return None
        return compute_next_run(self.trigger.schedule, self.created_at, self.last_run_at)

    # === Details and Trigger ===

    def update_details(self, name: Optional[str] = None, description: Optional[str] = None) -> List[WorkflowFact]:
        if name is not None:
            if not name.strip():
                raise ValidationError("Workflow name cannot be empty", field="name")
            self.name = name.strip()
        if description is not None:
            self.description = description.strip() or None
        return self._touched("details_updated")

    def update_trigger(self, trigger: WorkflowTrigger) -> List[WorkflowFact]:
        errors = validate_trigger(trigger)
        if errors:
            raise ValidationError("; ".join(errors), field="trigger")
        self.trigger = trigger
        return self._touched("trigger_updated", trigger_type=trigger.type.value)

    def update_conditions(self, conditions: Sequence[Condition]) -> List[WorkflowFact]:
        self.conditions = list(conditions)
        return self._touched("conditions_updated", condition_count=len(self.conditions))

    # === Actions ===

    def add_action(self, action: WorkflowAction) -> List[WorkflowFact]:
        """Insert an action; its order must be unused."""
        if any(a.order == action.order for a in self._actions):
            raise ConflictError(
                f"Action order {action.order} already exists",
                {"order": action.order},
            )
        _validate_action(action)

        added = dataclasses.replace(action, id=self._id_factory())
        self._actions = sorted([*self._actions, added], key=lambda a: a.order)
        return self._touched("action_added", action_id=added.id, order=added.order)

    def update_action(self, action_id: str, updates: Mapping[str, Any]) -> List[WorkflowFact]:
        """Apply field updates to one action, re-sorting on order change."""
        current = self.get_action(action_id)
        if current is None:
            raise NotFoundError("WorkflowAction", action_id)

        unknown = set(updates) - _UPDATABLE_ACTION_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown action fields: {', '.join(sorted(unknown))}",
                field="updates",
            )

        changes = dict(updates)
        if "type" in changes:
            changes["type"] = ActionType(changes["type"])
        if "conditions" in changes:
            changes["conditions"] = [
                Condition.from_dict(c) if isinstance(c, Mapping) else c
                for c in changes["conditions"] or []
            ]
        if isinstance(changes.get("delay"), Mapping):
            changes["delay"] = ActionDelay.from_dict(changes["delay"])

        updated = dataclasses.replace(current, **changes)

        if updated.order != current.order and any(
            a.order == updated.order for a in self._actions if a.id != action_id
        ):
            raise ConflictError(
                f"Action order {updated.order} already exists",
                {"order": updated.order},
            )
        _validate_action(updated)

        self._actions = sorted(
            [updated if a.id == action_id else a for a in self._actions],
            key=lambda a: a.order,
        )
        return self._touched("action_updated", action_id=action_id)

    def remove_action(self, action_id: str) -> List[WorkflowFact]:
        if self.get_action(action_id) is None:
            raise NotFoundError("WorkflowAction", action_id)
        self._actions = [a for a in self._actions if a.id != action_id]
        return self._touched("action_removed", action_id=action_id)

    def reorder_actions(self, orders: Iterable[Mapping[str, Any]]) -> List[WorkflowFact]:
        """
        Assign new orders to actions in one step.

        Every referenced id must exist and the resulting orders must stay
        unique, otherwise nothing changes.
        """
        new_orders: Dict[str, int] = {}
        for entry in orders:
            action_id = entry["id"]
            if self.get_action(action_id) is None:
                raise NotFoundError("WorkflowAction", action_id)
            new_orders[action_id] = int(entry["order"])

        reordered = [
            dataclasses.replace(a, order=new_orders[a.id]) if a.id in new_orders else a
            for a in self._actions
        ]
        if not _check_unique_orders(reordered):
            raise ConflictError("Reordering would produce duplicate action orders")

        self._actions = sorted(reordered, key=lambda a: a.order)
        return self._touched("actions_reordered", orders=new_orders)

    # === Lifecycle ===

    def activate(self) -> List[WorkflowFact]:
        if not self._actions:
            raise BusinessRuleError(
                "Cannot activate workflow without actions",
                rule="workflow_requires_actions",
            )
        if self.is_active:
            return []
        self.is_active = True
        self.updated_at = self._clock.now()
        return [self._fact(FactType.WORKFLOW_ACTIVATED)]

    def deactivate(self) -> List[WorkflowFact]:
        if not self.is_active:
            return []
        self.is_active = False
        self.updated_at = self._clock.now()
        return [self._fact(FactType.WORKFLOW_DEACTIVATED)]

    # === Dispatch ===

    def can_be_triggered(
        self,
        payload: Mapping[str, Any],
        evaluator: Optional[ConditionEvaluator] = None,
    ) -> bool:
        """True when active and both trigger and workflow conditions hold."""
        if not self.is_active:
            return False

        if evaluator is not None:
            return evaluator.evaluate_all(self.trigger.conditions, payload) and evaluator.evaluate_all(
                self.conditions, payload
            )
        return evaluate_conditions(self.trigger.conditions, payload) and evaluate_conditions(
            self.conditions, payload
        )

    def record_execution(self, execution: WorkflowExecution) -> List[WorkflowFact]:
        """Produce the outcome fact of a drained execution."""
        fact_type = FactType.WORKFLOW_EXECUTED if execution.success else FactType.WORKFLOW_FAILED
        return [
            self._fact(
                fact_type,
                execution_id=execution.id,
                trigger_data=execution.trigger_data,
                actions_executed=execution.actions_executed,
                success=execution.success,
                errors=list(execution.errors),
            )
        ]

    def mark_scheduled_run(self, slot: datetime) -> List[WorkflowFact]:
        """Record that the schedule slot ``slot`` has fired."""
        self.last_run_at = slot
        return []

    # === Internals ===

    def _fact(self, fact_type: FactType, **data: Any) -> WorkflowFact:
        return WorkflowFact(
            type=fact_type,
            workflow_id=self.id,
            tenant_id=self.tenant_id,
            occurred_at=self._clock.now(),
            data=data,
        )

    def _touched(self, change: str, **data: Any) -> List[WorkflowFact]:
        self.updated_at = self._clock.now()
        logger.debug("workflow_updated", workflow_id=self.id, change=change)
        return [self._fact(FactType.WORKFLOW_UPDATED, change=change, **data)]

    # === Serialization ===

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "trigger": self.trigger.to_dict(),
            "actions": [a.to_dict() for a in self._actions],
            "conditions": [c.to_dict() for c in self.conditions],
            "is_active": self.is_active,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
            "last_run_at": format_datetime(self.last_run_at),
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        clock: Optional[Clock] = None,
        id_factory: Optional[IdFactory] = None,
    ) -> "Workflow":
        """Rehydrate a stored workflow without re-running creation checks."""
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            name=data["name"],
            description=data.get("description"),
            trigger=WorkflowTrigger.from_dict(data["trigger"]),
            actions=[WorkflowAction.from_dict(a) for a in data.get("actions") or []],
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            is_active=data.get("is_active", True),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            last_run_at=parse_datetime(data.get("last_run_at")),
            clock=clock,
            id_factory=id_factory,
        )

    def __repr__(self) -> str:
        return f"Workflow(id={self.id!r}, name={self.name!r}, trigger={self.trigger.type.value}, active={self.is_active})"
