"""
Bizflow Actions

Action executor contract, handler routing and per-type config schemas.
"""

from bizflow.automation.actions.configs import ACTION_CONFIG_MODELS, parse_action_config
from bizflow.automation.actions.executor import (
    ActionExecutor,
    ActionHandlerRegistry,
    BaseActionHandler,
)

__all__ = [
    "ACTION_CONFIG_MODELS",
    "ActionExecutor",
    "ActionHandlerRegistry",
    "BaseActionHandler",
    "parse_action_config",
]
