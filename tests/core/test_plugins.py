"""Tests for ``knoa.core.plugins``: plugin registration and invocation."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from knoa.core.errors import ConfigurationError
from knoa.core.plugins import REQUIRED_METHODS, PluginManager


@pytest.fixture
def plugins(bus) -> PluginManager:
    return PluginManager(logger=MagicMock(), event_bus=bus)


def plugin_events(bus) -> list[str]:
    return [h["event"] for h in bus.get_event_history() if h["event"].startswith("plugin:")]


class CiPlugin:
    def __init__(self):
        self.initialized = False
        self.cleaned = False

    def initialize(self):
        self.initialized = True

    def cleanup(self):
        self.cleaned = True

    def run_tests(self, task_id, command=None):
        return {"passed": 3, "failed": 0, "task": task_id}


class TestConstruction:
    def test_logger_required(self):
        with pytest.raises(ConfigurationError):
            PluginManager(logger=None)

    def test_required_methods_table(self):
        assert REQUIRED_METHODS["ci"] == ("runTests",)
        assert REQUIRED_METHODS["storage"] == ("save", "load")


class TestRegistration:
    def test_register_object_plugin(self, plugins, bus):
        plugin = CiPlugin()
        assert plugins.register_plugin("ci", plugin) is True
        assert plugin.initialized is True
        assert plugins.has_plugin("ci")
        assert plugins.get_plugin("ci") is plugin
        assert plugins.get_registered_plugins() == ["ci"]

        registered = next(
            h["data"] for h in bus.get_event_history() if h["event"] == "plugin:registered"
        )
        assert registered["hasInitialize"] is True
        assert registered["hasCleanup"] is True
        assert "traceId" in registered and "requestId" in registered

    def test_register_mapping_plugin(self, plugins):
        assert plugins.register_plugin("notification", {"sendNotification": lambda msg: msg})

    @pytest.mark.parametrize(
        "plugin_type,implementation",
        [
            ("", {"run": lambda: None}),
            (None, {"run": lambda: None}),
            ("custom", None),
            ("custom", ["not", "a", "plugin"]),
            ("custom", {}),
            ("ci", {"somethingElse": lambda: None}),
            ("storage", {"save": lambda: None}),
        ],
    )
    def test_invalid_plugins_rejected(self, plugins, bus, plugin_type, implementation):
        assert plugins.register_plugin(plugin_type, implementation) is False
        assert plugin_events(bus) == ["plugin:validation_failed"]
        assert plugins.get_registered_plugins() == []

    def test_failing_initialize_keeps_registration(self, plugins, bus):
        def initialize():
            raise RuntimeError("init failed")

        assert plugins.register_plugin("custom", {"initialize": initialize}) is True
        assert plugins.has_plugin("custom")
        assert plugin_events(bus) == ["plugin:registered", "plugin:initialization_error"]

    def test_async_initialize_without_loop(self, plugins):
        calls = []

        async def initialize():
            calls.append("init")

        plugins.register_plugin("custom", {"initialize": initialize})
        assert calls == ["init"]

    def test_unregister_runs_cleanup(self, plugins, bus):
        plugin = CiPlugin()
        plugins.register_plugin("ci", plugin)
        assert plugins.unregister_plugin("ci") is True
        assert plugin.cleaned is True
        assert not plugins.has_plugin("ci")
        assert plugin_events(bus)[-1] == "plugin:unregistered"

    def test_unregister_survives_cleanup_error(self, plugins, bus):
        def cleanup():
            raise RuntimeError("cleanup failed")

        plugins.register_plugin("custom", {"cleanup": cleanup})
        assert plugins.unregister_plugin("custom") is True
        assert plugin_events(bus)[-2:] == ["plugin:cleanup_error", "plugin:unregistered"]

    @pytest.mark.asyncio
    async def test_async_initialize_error_inside_loop(self, plugins, bus):
        async def initialize():
            raise RuntimeError("boom")

        assert plugins.register_plugin("custom", {"initialize": initialize}) is True
        await plugins.drain()

        assert plugins.has_plugin("custom")
        assert plugin_events(bus) == ["plugin:registered", "plugin:initialization_error"]
        failure = [h["data"] for h in bus.get_event_history() if h["event"] == "plugin:initialization_error"]
        assert failure[0]["pluginType"] == "custom"
        assert failure[0]["error"] == "boom"
        assert plugins.logger.error.call_args.args[0] == "plugin_initialization_error"

    @pytest.mark.asyncio
    async def test_async_cleanup_error_inside_loop(self, plugins, bus):
        async def cleanup():
            raise RuntimeError("cleanup failed")

        plugins.register_plugin("custom", {"cleanup": cleanup})
        assert plugins.unregister_plugin("custom") is True
        await plugins.drain()

        assert not plugins.has_plugin("custom")
        assert plugin_events(bus)[-2:] == ["plugin:unregistered", "plugin:cleanup_error"]
        assert plugins.logger.error.call_args.args[0] == "plugin_cleanup_error"

    def test_unregister_unknown(self, plugins):
        assert plugins.unregister_plugin("missing") is False


class TestInvocation:
    @pytest.mark.asyncio
    async def test_camel_case_name_resolves_snake_method(self, plugins, bus):
        plugins.register_plugin("ci", CiPlugin())
        result = await plugins.invoke_plugin("ci", "runTests", "T001", "pytest -q")
        assert result == {"passed": 3, "failed": 0, "task": "T001"}
        assert plugin_events(bus) == [
            "plugin:registered",
            "plugin:method_invoked",
            "plugin:method_completed",
        ]

    @pytest.mark.asyncio
    async def test_async_method(self, plugins):
        async def generate_report(report_type, data):
            return f"# {report_type}"

        plugins.register_plugin("report", {"generate_report": generate_report})
        assert await plugins.invoke_plugin("report", "generateReport", "x", {}) == "# x"

    @pytest.mark.asyncio
    async def test_missing_plugin_returns_none(self, plugins, bus):
        assert await plugins.invoke_plugin("ci", "runTests") is None
        assert plugin_events(bus) == ["plugin:method_not_found"]

    @pytest.mark.asyncio
    async def test_missing_method_returns_none(self, plugins):
        plugins.register_plugin("custom", {"ping": lambda: "pong"})
        assert await plugins.invoke_plugin("custom", "pong") is None

    @pytest.mark.asyncio
    async def test_method_error_reraised(self, plugins, bus):
        def explode():
            raise ValueError("plugin broke")

        plugins.register_plugin("custom", {"explode": explode})
        with pytest.raises(ValueError, match="plugin broke"):
            await plugins.invoke_plugin("custom", "explode")

        errored = [h["data"] for h in bus.get_event_history() if h["event"] == "plugin:method_error"]
        assert errored[0]["error"] == "plugin broke"
        assert errored[0]["methodName"] == "explode"
