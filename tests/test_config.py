"""
Tests for configuration loading.
"""

from bizflow.core.config import BizflowConfig, LogLevel, get_config, reset_config, set_config


class TestBizflowConfig:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        config = BizflowConfig()

        assert config.scheduler.enabled
        assert config.scheduler.interval_seconds == 60.0
        assert config.execution.max_concurrent_executions == 50
        assert config.history.persistence_path is None

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BIZFLOW_LOG_LEVEL", "debug")
        monkeypatch.setenv("BIZFLOW_SCHEDULER__INTERVAL_SECONDS", "15")
        monkeypatch.setenv("BIZFLOW_EXECUTION__ACTION_TIMEOUT_SECONDS", "2.5")

        config = BizflowConfig()

        assert config.log_level == LogLevel.DEBUG
        assert config.scheduler.interval_seconds == 15.0
        assert config.execution.action_timeout_seconds == 2.5

    def test_global_instance(self):
        custom = BizflowConfig(json_logs=False)
        set_config(custom)
        try:
            assert get_config() is custom
        finally:
            reset_config()

        assert get_config() is not custom
        reset_config()
