"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from flowforge.config import (
    AppConfig, LogLevel, get_config, get_testing_config, reset_config, validate_config
)
from flowforge.core.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def fresh_config():
    reset_config()
    yield
    reset_config()


class TestAppConfig:
    """Test cases for loading and validating settings."""

    def test_defaults(self):
        config = AppConfig()
        assert config.worker_concurrency == 5
        assert config.job_attempts == 3
        assert config.job_backoff_delay == 2.0
        assert config.cooperative_cancellation is False
        assert config.finished_job_retention == 1000
        assert config.is_sqlite

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("FLOWFORGE_WORKER_CONCURRENCY", "8")
        monkeypatch.setenv("FLOWFORGE_COOPERATIVE_CANCELLATION", "true")
        monkeypatch.setenv("FLOWFORGE_LOG_LEVEL", "debug")
        monkeypatch.setenv("FLOWFORGE_CORS_ORIGINS", "http://a.test,http://b.test")

        config = AppConfig.from_env()
        assert config.worker_concurrency == 8
        assert config.cooperative_cancellation is True
        assert config.log_level == LogLevel.DEBUG
        assert config.cors_origins == ["http://a.test", "http://b.test"]

    def test_global_config_is_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("FLOWFORGE_JOB_ATTEMPTS", "4")
        first = get_config()
        assert first.job_attempts == 4
        assert get_config() is first

        reset_config()
        assert get_config() is not first

    @pytest.mark.parametrize("field, value", [
        ("database_url", "oracle://db"),
        ("redis_url", "http://localhost:6379"),
        ("port", 0),
        ("worker_concurrency", 0),
        ("script_timeout", 0),
        ("finished_job_retention", -1),
    ])
    def test_invalid_values_are_rejected(self, field, value):
        with pytest.raises(ValidationError):
            AppConfig(**{field: value})

    def test_validate_config_reports_limits(self):
        config = get_testing_config().model_copy(update={"worker_concurrency": 500})
        with pytest.raises(ConfigurationError, match="Worker concurrency"):
            validate_config(config)

    def test_testing_preset_is_valid(self):
        config = get_testing_config()
        validate_config(config)
        assert config.database_url == "sqlite:///:memory:"
        assert config.get_database_connect_args() == {"check_same_thread": False}
