"""
Bizflow Built-in Workflow Templates

Pre-built workflows for common salon and retail automations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from bizflow.automation.errors import ValidationError
from bizflow.automation.types import (
    ActionType,
    Condition,
    TriggerType,
    WorkflowAction,
    WorkflowFact,
    WorkflowTrigger,
)
from bizflow.automation.workflow import Workflow
from bizflow.core.clock import Clock, IdFactory

logger = structlog.get_logger(__name__)


class TemplateCategory(str, Enum):
    APPOINTMENT = "APPOINTMENT"
    MARKETING = "MARKETING"
    CLIENT_CARE = "CLIENT_CARE"
    SALES = "SALES"
    INVENTORY = "INVENTORY"


@dataclass
class TemplateDefinition:
    """The workflow a template produces for one set of parameters."""
    name: str
    description: str
    trigger: WorkflowTrigger
    actions: List[WorkflowAction]
    conditions: List[Condition] = field(default_factory=list)


@dataclass
class WorkflowTemplate:
    """A reusable workflow template."""
    id: str
    name: str
    description: str
    category: TemplateCategory
    trigger_type: TriggerType
    factory: Callable[..., TemplateDefinition]

    # Default values for the factory's parameters
    parameters: Dict[str, Any] = field(default_factory=dict)
    is_popular: bool = False
    tags: List[str] = field(default_factory=list)

    def build(self, **parameters: Any) -> TemplateDefinition:
        return self.factory(**{**self.parameters, **parameters})

    def instantiate(
        self,
        tenant_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        clock: Optional[Clock] = None,
        id_factory: Optional[IdFactory] = None,
    ) -> Tuple[Workflow, List[WorkflowFact]]:
        """Create a workflow for ``tenant_id`` from this template."""
        definition = self.build(**(parameters or {}))

        workflow, facts = Workflow.create(
            name=name or definition.name,
            tenant_id=tenant_id,
            trigger=definition.trigger,
            actions=definition.actions,
            description=description if description is not None else definition.description,
            conditions=definition.conditions,
            clock=clock,
            id_factory=id_factory,
        )

        logger.info(
            "template_instantiated",
            template_id=self.id,
            workflow_id=workflow.id,
            tenant_id=tenant_id,
        )
        return workflow, facts

    def to_dict(self) -> Dict[str, Any]:
        definition = self.build()
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "trigger_type": self.trigger_type.value,
            "actions": [a.to_dict() for a in definition.actions],
            "parameters": dict(self.parameters),
            "is_popular": self.is_popular,
            "tags": list(self.tags),
        }


# === Message Actions ===

_CHANNEL_ACTIONS = {
    "email": ActionType.SEND_EMAIL,
    "sms": ActionType.SEND_SMS,
    "whatsapp": ActionType.SEND_WHATSAPP,
}


def _message_action(
    channel: str,
    order: int,
    recipient: str,
    subject: str,
    message: str,
    **extra: Any,
) -> WorkflowAction:
    channel = channel.lower()
    if channel not in _CHANNEL_ACTIONS:
        raise ValidationError(f"Unsupported channel: {channel}", field="channel")

    if channel == "email":
        config = {"to": recipient, "subject": subject, "body": message}
    else:
        config = {"to": recipient, "message": message}
    config.update(extra)

    return WorkflowAction(type=_CHANNEL_ACTIONS[channel], order=order, config=config)


# === Template Factories ===


def appointment_reminder_template(
    hours_before: int = 24,
    message: str = "Hi {{ client.name }}, this is a reminder of your appointment on {{ start_time }}.",
    channel: str = "sms",
) -> TemplateDefinition:
    """Remind the client ahead of a newly booked appointment."""
    recipient = "{{ client.email }}" if channel.lower() == "email" else "{{ client.phone }}"
    return TemplateDefinition(
        name="Appointment Reminder",
        description=f"Reminds clients {hours_before} hours before their appointment",
        trigger=WorkflowTrigger(type=TriggerType.APPOINTMENT_CREATED),
        actions=[
            _message_action(
                channel,
                1,
                recipient,
                "Appointment reminder",
                message,
                send_before_hours=hours_before,
            ),
        ],
    )


def birthday_template(
    days_before: int = 0,
    message: str = "Happy birthday {{ name }}!",
    discount_percentage: Optional[float] = None,
) -> TemplateDefinition:
    """Birthday greeting, optionally with a discount."""
    trigger_conditions = []
    if days_before:
        trigger_conditions.append(Condition(field="days_until_birthday", operator="equals", value=days_before))

    extra: Dict[str, Any] = {}
    if discount_percentage:
        extra["discount_percentage"] = discount_percentage

    actions = [_message_action("email", 1, "{{ email }}", "Happy birthday!", message, **extra)]
    if discount_percentage:
        actions.append(
            WorkflowAction(
                type=ActionType.ADD_CLIENT_TAG,
                order=2,
                config={"tag": f"birthday-discount-{discount_percentage:g}", "client_id": "{{ id }}"},
            )
        )

    return TemplateDefinition(
        name="Birthday Greeting",
        description="Sends a birthday message to clients",
        trigger=WorkflowTrigger(type=TriggerType.CLIENT_BIRTHDAY, conditions=trigger_conditions),
        actions=actions,
    )


def follow_up_template(
    days_after: int = 1,
    message: str = "Thanks for visiting us, {{ client.name }}!",
    request_review: bool = True,
) -> TemplateDefinition:
    """Thank-you message some days after a completed appointment."""
    if days_after < 1:
        raise ValidationError("Follow-up must wait at least one day", field="days_after")

    actions = [
        WorkflowAction(
            type=ActionType.WAIT_DELAY,
            order=1,
            config={"delay": {"value": days_after, "unit": "DAYS"}},
        ),
        _message_action("sms", 2, "{{ client.phone }}", "Thank you", message),
    ]
    if request_review:
        actions.append(
            WorkflowAction(
                type=ActionType.SEND_REVIEW_REQUEST,
                order=3,
                config={"channel": "sms", "client_id": "{{ client.id }}"},
            )
        )

    return TemplateDefinition(
        name="Post-Appointment Follow-up",
        description=f"Follows up {days_after} day(s) after an appointment",
        trigger=WorkflowTrigger(type=TriggerType.APPOINTMENT_COMPLETED),
        actions=actions,
    )


def low_stock_alert_template(
    channel: str = "email",
    recipients: Sequence[str] = (),
) -> TemplateDefinition:
    """Alert staff when a product runs low."""
    if not recipients:
        raise ValidationError("At least one recipient is required", field="recipients")

    channel = channel.lower()
    if channel == "email":
        action = _message_action(
            "email",
            1,
            ", ".join(recipients),
            "Low stock: {{ name }}",
            "{{ name }} is down to {{ quantity }} units.",
        )
    elif channel == "notification":
        action = WorkflowAction(
            type=ActionType.CREATE_TASK,
            order=1,
            config={
                "title": "Restock {{ name }}",
                "assigned_to": recipients[0],
                "description": "{{ name }} is down to {{ quantity }} units.",
                "due_in_days": 1,
            },
        )
    else:
        raise ValidationError(f"Unsupported channel: {channel}", field="channel")

    return TemplateDefinition(
        name="Low Stock Alert",
        description="Notifies staff when stock runs low",
        trigger=WorkflowTrigger(type=TriggerType.STOCK_LOW),
        actions=[action],
    )


def welcome_template(
    message: str = "Welcome {{ name }}! We're glad to have you.",
    discount_offer: Optional[Dict[str, Any]] = None,
) -> TemplateDefinition:
    """Welcome message and tag for new clients."""
    extra: Dict[str, Any] = {}
    if discount_offer:
        extra["discount"] = {
            "percentage": discount_offer["percentage"],
            "valid_days": discount_offer.get("valid_days", 30),
        }

    return TemplateDefinition(
        name="New Client Welcome",
        description="Welcomes new clients",
        trigger=WorkflowTrigger(type=TriggerType.CLIENT_CREATED),
        actions=[
            _message_action("email", 1, "{{ email }}", "Welcome!", message, **extra),
            WorkflowAction(
                type=ActionType.ADD_CLIENT_TAG,
                order=2,
                config={"tag": "new-client", "client_id": "{{ id }}"},
            ),
        ],
    )


# === Catalog ===


def get_builtin_templates() -> List[WorkflowTemplate]:
    """Get all built-in workflow templates."""
    return [
        WorkflowTemplate(
            id="appointment-reminder",
            name="Appointment Reminder",
            description="Reminds clients of upcoming appointments",
            category=TemplateCategory.APPOINTMENT,
            trigger_type=TriggerType.APPOINTMENT_CREATED,
            factory=appointment_reminder_template,
            parameters={"hours_before": 24, "channel": "sms"},
            is_popular=True,
            tags=["appointment", "reminder"],
        ),
        WorkflowTemplate(
            id="birthday-greeting",
            name="Birthday Greeting",
            description="Sends birthday wishes, optionally with a discount",
            category=TemplateCategory.MARKETING,
            trigger_type=TriggerType.CLIENT_BIRTHDAY,
            factory=birthday_template,
            parameters={"days_before": 0},
            is_popular=True,
            tags=["birthday", "marketing"],
        ),
        WorkflowTemplate(
            id="appointment-follow-up",
            name="Post-Appointment Follow-up",
            description="Thanks the client and asks for a review",
            category=TemplateCategory.CLIENT_CARE,
            trigger_type=TriggerType.APPOINTMENT_COMPLETED,
            factory=follow_up_template,
            parameters={"days_after": 1, "request_review": True},
            tags=["follow-up", "review"],
        ),
        WorkflowTemplate(
            id="low-stock-alert",
            name="Low Stock Alert",
            description="Notifies staff when a product runs low",
            category=TemplateCategory.INVENTORY,
            trigger_type=TriggerType.STOCK_LOW,
            factory=low_stock_alert_template,
            parameters={"channel": "email", "recipients": ["manager@example.com"]},
            tags=["inventory", "alert"],
        ),
        WorkflowTemplate(
            id="new-client-welcome",
            name="New Client Welcome",
            description="Welcomes and tags new clients",
            category=TemplateCategory.CLIENT_CARE,
            trigger_type=TriggerType.CLIENT_CREATED,
            factory=welcome_template,
            is_popular=True,
            tags=["welcome", "client"],
        ),
    ]


def get_template(template_id: str) -> Optional[WorkflowTemplate]:
    for template in get_builtin_templates():
        if template.id == template_id:
            return template
    return None
