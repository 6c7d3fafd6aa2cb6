"""
Bizflow Action Executor

The engine reaches side-effecting actions only through the ``ActionExecutor``
contract. ``ActionHandlerRegistry`` is the standard implementation: it routes
each call to the handler registered for the action type.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol

import structlog

from bizflow.automation.types import ActionResult, ActionType

if TYPE_CHECKING:
    from bizflow.automation.execution.context import ExecutionContext

logger = structlog.get_logger(__name__)


class ActionExecutor(Protocol):
    """Performs one action; called at most once per action per execution."""

    async def execute(
        self,
        action_type: ActionType,
        config: Dict[str, Any],
        context: "ExecutionContext",
    ) -> ActionResult:
        ...


class BaseActionHandler:
    """Base class for action handlers."""

    async def execute(
        self,
        config: Dict[str, Any],
        context: "ExecutionContext",
    ) -> Any:
        """Execute the action.

        Return an ``ActionResult``, a ``{success, result, error}`` mapping,
        or any other value to report success with that value as the result.
        Raising reports failure.
        """
        raise NotImplementedError


class ActionHandlerRegistry:
    """
    Routes actions to handlers by type.

    Action types without a handler fail with a descriptive error instead of
    raising, so one unconfigured integration does not affect the others.
    """

    def __init__(self, handlers: Optional[Dict[ActionType, BaseActionHandler]] = None):
        self._handlers: Dict[ActionType, BaseActionHandler] = dict(handlers or {})

    def register_handler(self, action_type: ActionType, handler: BaseActionHandler) -> None:
        """Register a handler for an action type."""
        self._handlers[ActionType(action_type)] = handler
        logger.info("handler_registered", action_type=ActionType(action_type).value)

    def get_handler(self, action_type: ActionType) -> Optional[BaseActionHandler]:
        return self._handlers.get(action_type)

    async def execute(
        self,
        action_type: ActionType,
        config: Dict[str, Any],
        context: "ExecutionContext",
    ) -> ActionResult:
        handler = self._handlers.get(action_type)
        if not handler:
            logger.warning("action_handler_missing", action_type=action_type.value)
            return ActionResult.fail(f"No handler registered for {action_type.value}")

        try:
            outcome = await handler.execute(config, context)
        except Exception as e:
            logger.error(
                "action_error",
                action_type=action_type.value,
                error=str(e),
            )
            raise

        return ActionResult.from_value(outcome)
