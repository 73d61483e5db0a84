"""Event system for cross-component communication.

Why This Package Exists
-----------------------
Managers, repositories, the error handler and plugins need to tell each
other when things happen -- task created, lock expired, recovery succeeded.
Without a shared bus they would import each other directly. The
:class:`EventBus` decouples producers from consumers.

Usage::

    from knoa.core.events import get_event_bus

    bus = get_event_bus()

    # Subscribe (supports wildcards: "task:*")
    bus.on("task:*", lambda payload, name: print(name, payload["traceId"]))

    # Publish with the standard envelope
    bus.emit_standardized("task", "created", {"id": "T001"})

Modules
-------
bus         EventBus -- sync/async emission, wildcards, history
catalog     EventCatalog -- documented canonical event names
helpers     trace/request IDs and standardized payload construction
"""

from __future__ import annotations

from knoa.core.events.bus import EVENT_NAME_PATTERN, EventBus, Listener, Subscription
from knoa.core.events.catalog import EventCatalog, EventDefinition, create_default_catalog
from knoa.core.events.helpers import (
    create_standardized_event_data,
    emit_error_event,
    emit_standardized_event,
    generate_request_id,
    generate_trace_id,
    utc_timestamp,
)

__all__ = [
    "EVENT_NAME_PATTERN",
    "EventBus",
    "Listener",
    "Subscription",
    "EventCatalog",
    "EventDefinition",
    "create_default_catalog",
    "create_standardized_event_data",
    "emit_error_event",
    "emit_standardized_event",
    "generate_request_id",
    "generate_trace_id",
    "utc_timestamp",
    "get_event_bus",
    "set_event_bus",
]


# ── Default Event Bus Singleton ──────────────────────────────────────────

_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance.

    Returns the configured event bus, creating one with the default catalog
    if none has been set.
    """
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus(catalog=create_default_catalog())
    return _event_bus


def set_event_bus(bus: EventBus | None) -> None:
    """Set (or with None, reset) the global event bus instance."""
    global _event_bus
    _event_bus = bus
