"""Tests for ``knoa.core.settings`` and ``knoa.core.logging``."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest
import structlog

from knoa.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)
from knoa.core.settings import KnoaSettings, clear_settings_cache, get_settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "KNOA_ENV",
        "NODE_ENV",
        "KNOA_BASE_PATH",
        "KNOA_LOCK_TIMEOUT_MS",
        "KNOA_EVENT_KEEP_HISTORY",
        "EVENT_HISTORY",
        "DEBUG_GIT",
        "KNOA_DEBUG_GIT",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestKnoaSettings:
    def test_defaults(self, clean_env):
        settings = KnoaSettings(_env_file=None)
        assert settings.env == "development"
        assert settings.ai_context_dir == "ai-context"
        assert settings.project_id == "knoa"
        assert settings.lock_timeout_ms == 30000
        assert settings.lock_retry_interval_ms == 100
        assert settings.lock_max_retries == 50
        assert settings.event_keep_history is False
        assert settings.event_history_limit == 100
        assert settings.include_stack_traces is True

    def test_env_prefix(self, clean_env, tmp_path):
        clean_env.setenv("KNOA_BASE_PATH", str(tmp_path))
        clean_env.setenv("KNOA_LOCK_TIMEOUT_MS", "500")
        settings = KnoaSettings(_env_file=None)
        assert settings.base_path == tmp_path
        assert settings.lock_timeout_ms == 500
        assert settings.ai_context_path == tmp_path / "ai-context"

    def test_legacy_aliases(self, clean_env):
        clean_env.setenv("NODE_ENV", "production")
        clean_env.setenv("EVENT_HISTORY", "true")
        clean_env.setenv("DEBUG_GIT", "1")
        settings = KnoaSettings(_env_file=None)
        assert settings.env == "production"
        assert settings.include_stack_traces is False
        assert settings.event_keep_history is True
        assert settings.debug_git is True

    def test_invalid_values_rejected(self, clean_env):
        clean_env.setenv("KNOA_LOCK_TIMEOUT_MS", "-1")
        with pytest.raises(ValueError):
            KnoaSettings(_env_file=None)

    def test_get_settings_cached(self, clean_env):
        first = get_settings()
        assert get_settings() is first
        clear_settings_cache()
        assert get_settings() is not first

    def test_force_reload(self, clean_env, tmp_path):
        first = get_settings()
        clean_env.setenv("KNOA_BASE_PATH", str(tmp_path))
        reloaded = get_settings(_force_reload=True)
        assert reloaded is not first
        assert reloaded.base_path == Path(tmp_path)


class TestLogging:
    def teardown_method(self):
        clear_context()
        structlog.reset_defaults()

    def test_json_output_carries_service_and_context(self):
        stream = io.StringIO()
        configure_logging(level="DEBUG", json_format=True, stream=stream)
        bind_context(trace_id="trace-1")

        get_logger("knoa.test").info("task_created", task_id="T001")

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["event"] == "task_created"
        assert record["task_id"] == "T001"
        assert record["trace_id"] == "trace-1"
        assert record["service"] == "knoa"
        assert record["logger"] == "knoa.test"
        assert record["level"] == "info"

    def test_level_filtering(self):
        stream = io.StringIO()
        configure_logging(level="WARNING", json_format=True, stream=stream)
        get_logger().info("hidden")
        get_logger().warning("shown")
        assert "hidden" not in stream.getvalue()
        assert "shown" in stream.getvalue()

    @pytest.mark.asyncio
    async def test_log_context_is_scoped(self):
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=True, stream=stream)
        async with LogContext(request_id="req-1"):
            get_logger().info("inside")
        get_logger().info("outside")

        inside, outside = (json.loads(line) for line in stream.getvalue().strip().splitlines())
        assert inside["request_id"] == "req-1"
        assert "request_id" not in outside
