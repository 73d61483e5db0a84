"""
In-process event bus with standardized payloads.

Manifesto:
    Managers, repositories and plugins notify each other through named
    events instead of importing each other. Delivery is immediate and
    in-memory: events are fire-and-forget and never persisted.

Listeners of one event name run in registration order. Exact-name listeners
receive ``(payload)``; wildcard listeners (``"task:*"``) receive
``(payload, event_name)``. A listener may be a plain function or a
coroutine function.

Tags:
    knoa, events, pub-sub, wildcards, asyncio, history

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import inspect
import re
import time
import traceback
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from knoa.core.errors import EventError, get_error_code
from knoa.core.events.catalog import EventCatalog, EventDefinition
from knoa.core.events.helpers import create_standardized_event_data, utc_timestamp
from knoa.core.logging import get_logger

__all__ = ["EventBus", "Listener", "Subscription", "EVENT_NAME_PATTERN"]

Listener = Callable[..., Any]

EVENT_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*:[a-z][a-z0-9_]*$")
_ALLOWED_SPECIAL_NAMES = frozenset({"event", "error"})


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    pattern: str
    listener: Listener
    once: bool = False
    regex: re.Pattern[str] | None = None

    @property
    def is_wildcard(self) -> bool:
        return self.regex is not None


def _compile_wildcard(pattern: str) -> re.Pattern[str]:
    return re.compile("^" + re.escape(pattern).replace(r"\*", ".*") + "$")


class EventBus:
    """Synchronous and asynchronous pub/sub with catalog and history.

    Example::

        bus = EventBus(keep_history=True)

        def on_task(payload, name):
            print(name, payload["id"])

        bus.on("task:*", on_task)
        bus.emit_standardized("task", "created", {"id": "T001"})
        # Output: task:created T001
    """

    def __init__(
        self,
        *,
        logger: Any = None,
        debug_mode: bool = False,
        keep_history: bool = False,
        history_limit: int = 100,
        catalog: EventCatalog | None = None,
        include_stack_traces: bool = False,
    ) -> None:
        self.logger = logger or get_logger(__name__)
        self.debug_mode = debug_mode
        self.history_limit = history_limit
        self.include_stack_traces = include_stack_traces
        self._catalog = catalog
        self._listeners: dict[str, list[Subscription]] = {}
        self._wildcards: list[Subscription] = []
        self._history: deque[dict[str, Any]] | None = (
            deque(maxlen=history_limit) if keep_history else None
        )
        self._pending: set[asyncio.Task[Any]] = set()

    # ── Subscription management ──────────────────────────────────────────

    def on(self, event: str, listener: Listener) -> Callable[[], bool]:
        """Register a listener; returns a disposer that unregisters it."""
        self._subscribe(event, listener, once=False)
        return lambda: self.off(event, listener)

    def once(self, event: str, listener: Listener) -> Callable[[], bool]:
        """Register a listener that is removed before its first call."""
        self._subscribe(event, listener, once=True)
        return lambda: self.off(event, listener)

    def off(self, event: str, listener: Listener) -> bool:
        """Remove the first registration of ``listener`` for ``event``."""
        if "*" in event:
            for sub in self._wildcards:
                if sub.pattern == event and sub.listener is listener:
                    self._wildcards.remove(sub)
                    return True
            return False

        subs = self._listeners.get(event, [])
        for sub in subs:
            if sub.listener is listener:
                subs.remove(sub)
                if not subs:
                    del self._listeners[event]
                return True
        return False

    def remove_all_listeners(self, event: str | None = None) -> None:
        """Drop every listener, or only those registered for ``event``."""
        if event is None:
            self._listeners.clear()
            self._wildcards.clear()
        elif "*" in event:
            self._wildcards = [s for s in self._wildcards if s.pattern != event]
        else:
            self._listeners.pop(event, None)

    def _subscribe(self, event: str, listener: Listener, *, once: bool) -> Subscription:
        if not callable(listener):
            raise TypeError(f"listener for {event!r} must be callable")
        sub = Subscription(
            id=f"sub_{uuid.uuid4().hex[:12]}",
            pattern=event,
            listener=listener,
            once=once,
            regex=_compile_wildcard(event) if "*" in event else None,
        )
        if sub.is_wildcard:
            self._wildcards.append(sub)
        else:
            self._listeners.setdefault(event, []).append(sub)
        if self.debug_mode:
            self.logger.debug("listener_registered", event_name=event, once=once)
        return sub

    def _matching(self, event: str) -> list[Subscription]:
        subs = list(self._listeners.get(event, []))
        subs.extend(s for s in self._wildcards if s.regex and s.regex.match(event))
        for sub in subs:
            if sub.once:
                self._discard(sub)
        return subs

    def _discard(self, sub: Subscription) -> None:
        if sub.is_wildcard:
            if sub in self._wildcards:
                self._wildcards.remove(sub)
            return
        subs = self._listeners.get(sub.pattern)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._listeners[sub.pattern]

    # ── Emission ─────────────────────────────────────────────────────────

    def emit(self, event: str, data: Any = None) -> bool:
        """Deliver ``data`` to every matching listener synchronously.

        Coroutine listeners are scheduled on the running loop, or run to
        completion when no loop is running.

        Returns:
            True if at least one listener ran
        """
        self._record(event, data)
        if self.debug_mode:
            self.logger.debug("event_emitted", event_name=event)

        subs = self._matching(event)
        for sub in subs:
            try:
                result = self._call(sub, event, data)
                if inspect.isawaitable(result):
                    self._schedule(result, event, data)
            except Exception as e:
                self._listener_failed(event, data, e)
        return bool(subs)

    async def emit_async(self, event: str, data: Any = None) -> bool:
        """Deliver ``data`` to every matching listener, awaiting each in turn.

        A failing listener is logged and does not stop its siblings.
        """
        self._record(event, data)
        if self.debug_mode:
            self.logger.debug("event_emitted_async", event_name=event)

        subs = self._matching(event)
        for sub in subs:
            try:
                result = self._call(sub, event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._listener_failed(event, data, e)
        return bool(subs)

    def emit_standardized(
        self,
        component: str,
        action: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Emit ``component:action`` with the standard envelope.

        The stamped payload is also delivered on the ``event`` channel with an
        added ``type`` field.

        Returns:
            The stamped payload
        """
        name, payload = self._standardize(component, action, data)
        self.emit(name, payload)
        self.emit("event", {"type": name, **payload})
        return payload

    async def emit_standardized_async(
        self,
        component: str,
        action: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Async counterpart of :meth:`emit_standardized`."""
        name, payload = self._standardize(component, action, data)
        await self.emit_async(name, payload)
        await self.emit_async("event", {"type": name, **payload})
        return payload

    def _standardize(
        self,
        component: str,
        action: str,
        data: dict[str, Any] | None,
    ) -> tuple[str, dict[str, Any]]:
        name = f"{component}:{action}"
        if not self.validate_event_name(name):
            self.logger.warning("invalid_event_name", event_name=name)
        return name, create_standardized_event_data(data, component, action)

    # ── Catalog ──────────────────────────────────────────────────────────

    @property
    def catalog(self) -> EventCatalog | None:
        return self._catalog

    def set_catalog(self, catalog: EventCatalog | None) -> None:
        self._catalog = catalog

    def get_event_definition(self, name: str) -> EventDefinition | None:
        if self._catalog is None:
            return None
        return self._catalog.get_event_definition(name)

    def _check_cataloged(self, name: str) -> tuple[str, str]:
        if self._catalog is None:
            raise EventError(
                "Event catalog is not set",
                code="ERR_EVENT_CATALOG_NOT_SET",
                context={"eventName": name},
            )
        if not self._catalog.has_event(name):
            raise EventError(
                f"Event not registered in catalog: {name}",
                code="ERR_EVENT_NOT_REGISTERED",
                context={"eventName": name},
            )
        component, action = name.split(":", 1)
        return component, action

    def emit_cataloged(self, name: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        """Emit a standardized event that must exist in the catalog."""
        component, action = self._check_cataloged(name)
        return self.emit_standardized(component, action, data)

    async def emit_cataloged_async(
        self, name: str, data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        component, action = self._check_cataloged(name)
        return await self.emit_standardized_async(component, action, data)

    # ── Error events ─────────────────────────────────────────────────────

    def emit_error(
        self,
        error: BaseException,
        component: str,
        operation: str,
        context: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Fan an error out to ``app:error``, ``<component>:error`` and ``error``."""
        ctx = dict(context or {})
        payload: dict[str, Any] = {
            "component": component,
            "operation": operation,
            "message": getattr(error, "message", None) or str(error),
            "code": get_error_code(error),
            "name": getattr(error, "name", None) or type(error).__name__,
            "timestamp": utc_timestamp(),
            "recoverable": bool(getattr(error, "recoverable", False)),
            "details": details or {},
        }
        for key in ("traceId", "trace_id", "requestId", "request_id"):
            if ctx.get(key):
                payload[key] = ctx[key]
        if self.include_stack_traces:
            payload["stack"] = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        stamped = self.emit_standardized("app", "error", payload)
        self.emit_standardized(_component_key(component), "error", stamped)
        self.emit("error", {"type": "app:error", **stamped})
        return stamped

    # ── Introspection ────────────────────────────────────────────────────

    @staticmethod
    def validate_event_name(name: str) -> bool:
        """``component:action`` in lowercase snake case, or ``event``/``error``."""
        if name in _ALLOWED_SPECIAL_NAMES:
            return True
        return bool(EVENT_NAME_PATTERN.match(name))

    def listener_count(self, event: str | None = None) -> int:
        """Listeners that would receive ``event`` (all listeners when None)."""
        if event is None:
            return self.subscription_count
        exact = len(self._listeners.get(event, []))
        if "*" in event:
            return sum(1 for s in self._wildcards if s.pattern == event)
        return exact + sum(1 for s in self._wildcards if s.regex and s.regex.match(event))

    def registered_events(self) -> list[str]:
        return list(self._listeners)

    def registered_wildcard_patterns(self) -> list[str]:
        return [s.pattern for s in self._wildcards]

    @property
    def subscription_count(self) -> int:
        """Number of active subscriptions."""
        return sum(len(s) for s in self._listeners.values()) + len(self._wildcards)

    def set_debug_mode(self, enabled: bool) -> None:
        self.debug_mode = enabled

    # ── History ──────────────────────────────────────────────────────────

    @property
    def keep_history(self) -> bool:
        return self._history is not None

    def get_event_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Most recent emissions, oldest first."""
        if self._history is None:
            return []
        entries = list(self._history)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def clear_history(self) -> None:
        if self._history is not None:
            self._history.clear()

    def _record(self, event: str, data: Any) -> None:
        if self._history is not None:
            self._history.append(
                {"event": event, "data": data, "timestampMs": int(time.time() * 1000)}
            )

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _call(sub: Subscription, event: str, data: Any) -> Any:
        if sub.is_wildcard:
            return sub.listener(data, event)
        return sub.listener(data)

    def _listener_failed(self, event: str, data: Any, error: Exception) -> None:
        self.logger.error(
            "event_listener_error",
            event_name=event,
            error=str(error),
            error_type=type(error).__name__,
        )
        if event != "error":
            self.emit(
                "error",
                EventError(
                    f"Event listener failed: {event}",
                    cause=error,
                    context={"event": event, "data": data},
                ),
            )

    def _schedule(self, awaitable: Awaitable[Any], event: str, data: Any) -> None:
        async def guarded() -> None:
            try:
                await awaitable
            except Exception as e:
                self._listener_failed(event, data, e)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(guarded())
            return
        task = loop.create_task(guarded())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for coroutine listeners scheduled by :meth:`emit`."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _component_key(component: str) -> str:
    key = re.sub(r"(?<!^)(?=[A-Z])", "_", component).lower()
    return re.sub(r"[^a-z0-9_]", "_", key)
