"""
Plugin manager with per-type capability contracts.

A plugin is registered under a type (``ci``, ``notification``, ``report``,
``storage`` or any custom name) and is either a mapping of callables or an
object exposing methods. Well-known types must provide their required
methods; method names may be given in camelCase (``runTests``) or snake_case
(``run_tests``) and are resolved either way on invocation.

Events:
    plugin:validation_failed      registration rejected
    plugin:registered             stored (hasInitialize / hasCleanup)
    plugin:initialization_error   initialize() raised; registration kept
    plugin:method_not_found       invoke target missing or not callable
    plugin:method_invoked         before the call
    plugin:method_completed       after a successful call
    plugin:method_error           the call raised
    plugin:cleanup_error          cleanup() raised; removal continues
    plugin:unregistered           removed

Every payload carries ``pluginType``, ``timestamp``, ``traceId`` and
``requestId``; method events add ``methodName`` and failures add ``error``.
"""

from __future__ import annotations

import asyncio
import inspect
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from knoa.core.errors import ConfigurationError
from knoa.core.events.helpers import (
    generate_request_id,
    generate_trace_id,
    utc_timestamp,
)

if TYPE_CHECKING:
    from knoa.core.events.bus import EventBus

__all__ = ["PluginManager", "REQUIRED_METHODS"]

REQUIRED_METHODS: dict[str, tuple[str, ...]] = {
    "ci": ("runTests",),
    "notification": ("sendNotification",),
    "report": ("generateReport",),
    "storage": ("save", "load"),
}


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _lookup(impl: Any, name: str) -> Any:
    """Find ``name`` (or its snake/camel twin) on a mapping or object."""
    for candidate in dict.fromkeys((name, _snake(name), _camel(name))):
        if isinstance(impl, Mapping):
            if candidate in impl:
                return impl[candidate]
        elif hasattr(impl, candidate):
            return getattr(impl, candidate)
    return None


def _members(impl: Any) -> list[str]:
    if isinstance(impl, Mapping):
        return list(impl)
    return [n for n in dir(impl) if not n.startswith("_")]


class PluginManager:
    """Register, invoke and unregister plugins by type."""

    def __init__(self, *, logger: Any, event_bus: EventBus | None = None) -> None:
        if logger is None:
            raise ConfigurationError("PluginManager requires a logger")
        self.logger = logger
        self.event_bus = event_bus
        self._plugins: dict[str, Any] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    # ── Registration ─────────────────────────────────────────────────────

    def register_plugin(self, plugin_type: str, implementation: Any) -> bool:
        """Validate and store a plugin, then call its ``initialize``.

        Returns:
            False if validation failed, True otherwise (even if initialize raised)
        """
        if not self._validate(plugin_type, implementation):
            self.logger.error("plugin_validation_failed", plugin_type=plugin_type)
            self._emit(
                "validation_failed",
                {"pluginType": plugin_type if isinstance(plugin_type, str) else None},
            )
            return False

        self._plugins[plugin_type] = implementation

        initialize = _lookup(implementation, "initialize")
        cleanup = _lookup(implementation, "cleanup")
        self._emit(
            "registered",
            {
                "pluginType": plugin_type,
                "hasInitialize": callable(initialize),
                "hasCleanup": callable(cleanup),
            },
        )

        if callable(initialize):
            try:
                self._drive(initialize(), plugin_type, "initialization")
            except Exception as e:
                self._hook_failed(plugin_type, "initialization", e)

        self.logger.info("plugin_registered", plugin_type=plugin_type)
        return True

    def _validate(self, plugin_type: Any, implementation: Any) -> bool:
        if not isinstance(plugin_type, str) or not plugin_type:
            return False
        if implementation is None or isinstance(implementation, (list, tuple, str, bytes)):
            return False
        if not _members(implementation):
            return False

        for method in REQUIRED_METHODS.get(plugin_type, ()):
            if not callable(_lookup(implementation, method)):
                return False
        return True

    def unregister_plugin(self, plugin_type: str) -> bool:
        """Remove a plugin after running its ``cleanup`` (errors are logged)."""
        implementation = self._plugins.get(plugin_type)
        if implementation is None:
            return False

        cleanup = _lookup(implementation, "cleanup")
        if callable(cleanup):
            try:
                self._drive(cleanup(), plugin_type, "cleanup")
            except Exception as e:
                self._hook_failed(plugin_type, "cleanup", e)

        del self._plugins[plugin_type]
        self._emit("unregistered", {"pluginType": plugin_type})
        self.logger.info("plugin_unregistered", plugin_type=plugin_type)
        return True

    # ── Invocation ───────────────────────────────────────────────────────

    async def invoke_plugin(
        self,
        plugin_type: str,
        method_name: str,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Call ``method_name`` on the plugin registered for ``plugin_type``.

        Works for sync and async methods.

        Returns:
            The method's result, or None when the plugin or method is missing
        """
        ids = {"traceId": generate_trace_id(), "requestId": generate_request_id()}
        base = {"pluginType": plugin_type, "methodName": method_name, **ids}

        implementation = self._plugins.get(plugin_type)
        method = _lookup(implementation, method_name) if implementation is not None else None
        if not callable(method):
            self.logger.warning(
                "plugin_method_not_found",
                plugin_type=plugin_type,
                method_name=method_name,
            )
            self._emit("method_not_found", base)
            return None

        self._emit("method_invoked", base)
        try:
            result = method(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self.logger.error(
                "plugin_method_error",
                plugin_type=plugin_type,
                method_name=method_name,
                error=str(e),
            )
            self._emit("method_error", {**base, "error": str(e)})
            raise

        self._emit("method_completed", base)
        return result

    # ── Introspection ────────────────────────────────────────────────────

    def has_plugin(self, plugin_type: str) -> bool:
        return plugin_type in self._plugins

    def get_plugin(self, plugin_type: str) -> Any:
        return self._plugins.get(plugin_type)

    def get_registered_plugins(self) -> list[str]:
        return list(self._plugins)

    def _emit(self, action: str, data: dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        payload = {"timestamp": utc_timestamp(), **data}
        if "traceId" not in payload:
            payload["traceId"] = generate_trace_id()
            payload["requestId"] = generate_request_id()
        self.event_bus.emit_standardized("plugin", action, payload)

    def _hook_failed(self, plugin_type: str, hook: str, error: Exception) -> None:
        self.logger.error(f"plugin_{hook}_error", plugin_type=plugin_type, error=str(error))
        self._emit(f"{hook}_error", {"pluginType": plugin_type, "error": str(error)})

    def _drive(self, result: Any, plugin_type: str, hook: str) -> None:
        """Run an async lifecycle hook.

        Without a running loop errors surface to the caller; inside one the
        hook runs as a task and reports its own failure.
        """
        if not inspect.isawaitable(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(result)
            return

        async def guarded() -> None:
            try:
                await result
            except Exception as e:
                self._hook_failed(plugin_type, hook, e)

        task = loop.create_task(guarded())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for lifecycle hooks scheduled on the running loop."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
