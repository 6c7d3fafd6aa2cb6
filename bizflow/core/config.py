"""
Bizflow Configuration

Type-safe settings for the automation engine, loaded from the environment
with the ``BIZFLOW_`` prefix. Nested sections use ``__`` as delimiter, e.g.
``BIZFLOW_SCHEDULER__INTERVAL_SECONDS=30``.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SchedulerConfig(BaseModel):
    """Configuration for the schedule sweep."""
    enabled: bool = True
    interval_seconds: float = Field(default=60.0, gt=0)


class ExecutionConfig(BaseModel):
    """Configuration for the execution engine."""
    max_concurrent_executions: int = Field(default=50, ge=1)
    action_timeout_seconds: float = Field(default=30.0, gt=0)
    max_queued_per_workflow: int = Field(default=100, ge=0)


class HistoryConfig(BaseModel):
    """Configuration for the in-memory execution history."""
    max_records: int = Field(default=10_000, ge=1)
    retention_days: int = Field(default=90, ge=1)
    persistence_path: Optional[Path] = None


class StoreConfig(BaseModel):
    """Configuration for the in-memory workflow store."""
    persistence_path: Optional[Path] = None


class BizflowConfig(BaseSettings):
    """Root configuration for the automation engine."""

    log_level: LogLevel = LogLevel.INFO
    json_logs: bool = True

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    model_config = {
        "env_prefix": "BIZFLOW_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v


_config: Optional[BizflowConfig] = None


def get_config() -> BizflowConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = BizflowConfig()
    return _config


def set_config(config: BizflowConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset configuration to defaults."""
    global _config
    _config = None
