"""Bizflow core: configuration, logging and clock primitives."""

from bizflow.core.clock import Clock, FixedClock, SystemClock, new_id
from bizflow.core.config import BizflowConfig, get_config, reset_config, set_config
from bizflow.core.logging import setup_logging

__all__ = [
    "BizflowConfig",
    "Clock",
    "FixedClock",
    "SystemClock",
    "get_config",
    "new_id",
    "reset_config",
    "set_config",
    "setup_logging",
]
