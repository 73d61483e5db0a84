"""
Helpers for standardized event payloads.

A standardized payload carries the envelope fields ``component``, ``action``,
``timestamp``, ``traceId`` and ``requestId``. IDs already on the payload are
preserved; snake_case variants are mirrored into camelCase.

Tags:
    knoa, events, tracing, helpers

Doc-Types:
    api-reference
"""

from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from knoa.core.logging import get_logger

if TYPE_CHECKING:
    from knoa.core.events.bus import EventBus

__all__ = [
    "utc_timestamp",
    "generate_trace_id",
    "generate_request_id",
    "create_standardized_event_data",
    "emit_standardized_event",
    "emit_error_event",
]

logger = get_logger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and ``Z`` suffix."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def _random_suffix(length: int = 9) -> str:
    return "".join(random.choices(_ID_ALPHABET, k=length))


def generate_trace_id() -> str:
    """``trace-<epoch ms>-<9 chars>``"""
    return f"trace-{int(time.time() * 1000)}-{_random_suffix()}"


def generate_request_id() -> str:
    """``req-<epoch ms>-<9 chars>``"""
    return f"req-{int(time.time() * 1000)}-{_random_suffix()}"


def create_standardized_event_data(
    data: dict[str, Any] | None = None,
    component: str | None = None,
    action: str | None = None,
) -> dict[str, Any]:
    """Return a copy of ``data`` stamped with the standard envelope fields."""
    payload: dict[str, Any] = dict(data or {})

    trace_id = payload.get("traceId") or payload.get("trace_id") or generate_trace_id()
    request_id = (
        payload.get("requestId") or payload.get("request_id") or generate_request_id()
    )
    payload["traceId"] = trace_id
    payload["requestId"] = request_id
    payload.setdefault("timestamp", utc_timestamp())
    if component is not None:
        payload.setdefault("component", component)
    if action is not None:
        payload.setdefault("action", action)
    return payload


def emit_standardized_event(
    bus: EventBus | None,
    component: str,
    action: str,
    data: dict[str, Any] | None = None,
) -> bool:
    """Emit through ``bus`` if there is one; never raises.

    Returns:
        True when the event was handed to the bus
    """
    if bus is None:
        return False
    try:
        bus.emit_standardized(component, action, data or {})
        return True
    except Exception as e:
        logger.warning(
            "standardized_event_failed",
            component=component,
            action=action,
            error=str(e),
        )
        return False


def emit_error_event(
    bus: EventBus | None,
    error: BaseException,
    component: str,
    operation: str,
    context: dict[str, Any] | None = None,
    details: dict[str, Any] | None = None,
) -> bool:
    """Shared error-event helper used by adapters and managers.

    Delegates to :meth:`EventBus.emit_error` which fans out to ``app:error``,
    ``<component>:error`` and ``error``.
    """
    if bus is None:
        return False
    try:
        bus.emit_error(error, component, operation, context or {}, details)
        return True
    except Exception as e:
        logger.warning(
            "error_event_failed",
            component=component,
            operation=operation,
            error=str(e),
        )
        return False
