"""
Action Config Schemas

One pydantic model per ActionType. Configs are validated when an action is
added to or updated on a workflow, so a malformed config never reaches the
engine. Unknown keys are kept for the executor.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Type

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from bizflow.automation.errors import ValidationError
from bizflow.automation.types import ActionType, DelayUnit

NonEmptyStr = Annotated[str, Field(min_length=1)]


class ActionConfigModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class SendEmailConfig(ActionConfigModel):
    to: NonEmptyStr
    subject: NonEmptyStr
    body: NonEmptyStr
    template_id: Optional[str] = None


class SendSmsConfig(ActionConfigModel):
    to: NonEmptyStr
    message: NonEmptyStr


class SendWhatsappConfig(SendSmsConfig):
    pass


class CreateTaskConfig(ActionConfigModel):
    title: NonEmptyStr
    assigned_to: NonEmptyStr
    description: Optional[str] = None
    due_in_days: Optional[int] = Field(default=None, ge=0)


class UpdateClientConfig(ActionConfigModel):
    updates: Annotated[Dict[str, Any], Field(min_length=1)]
    client_id: Optional[str] = None


class CreateAppointmentConfig(ActionConfigModel):
    service_id: Optional[str] = None
    staff_id: Optional[str] = None
    days_from_now: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class SendReviewRequestConfig(ActionConfigModel):
    channel: Literal["email", "sms", "whatsapp"] = "email"
    message: Optional[str] = None


class AddClientTagConfig(ActionConfigModel):
    tag: NonEmptyStr
    client_id: Optional[str] = None


class WebhookCallConfig(ActionConfigModel):
    url: NonEmptyStr
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = None


class DelaySpec(BaseModel):
    value: int = Field(gt=0)
    unit: DelayUnit


class WaitDelayConfig(ActionConfigModel):
    # May instead come from the action's own delay
    delay: Optional[DelaySpec] = None


ACTION_CONFIG_MODELS: Dict[ActionType, Type[ActionConfigModel]] = {
    ActionType.SEND_EMAIL: SendEmailConfig,
    ActionType.SEND_SMS: SendSmsConfig,
    ActionType.SEND_WHATSAPP: SendWhatsappConfig,
    ActionType.CREATE_TASK: CreateTaskConfig,
    ActionType.UPDATE_CLIENT: UpdateClientConfig,
    ActionType.CREATE_APPOINTMENT: CreateAppointmentConfig,
    ActionType.SEND_REVIEW_REQUEST: SendReviewRequestConfig,
    ActionType.ADD_CLIENT_TAG: AddClientTagConfig,
    ActionType.WEBHOOK_CALL: WebhookCallConfig,
    ActionType.WAIT_DELAY: WaitDelayConfig,
}


def parse_action_config(action_type: ActionType, config: Dict[str, Any]) -> ActionConfigModel:
    """Validate ``config`` against the schema of ``action_type``."""
    model = ACTION_CONFIG_MODELS[ActionType(action_type)]
    try:
        return model.model_validate(config or {})
    except pydantic.ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ValidationError(
            f"Invalid config for {ActionType(action_type).value}: " + "; ".join(problems),
            field="config",
            details={"action_type": ActionType(action_type).value, "problems": problems},
        ) from e
