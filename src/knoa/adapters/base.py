"""
Adapter glue between the CLI and the managers.

A :class:`ManagerAdapter` exposes every public method of the manager it
wraps. Each call gets one trace/request ID pair that is stamped on the
``<component>:<op>_before`` and ``<component>:<op>_after`` events and on
any error event.

Error flow::

    manager method raises
        │
        ├─ ValidationError / CliError ─────────────┐
        └─ anything else → CliError(ERR_CLI_<CLASS>_<OP>, cause=original)
                                                   │
                                      emit app:error (emit_error_event)
                                                   │
                     error_handler? ── no ──► raise
                          │ yes
                          ▼
               await handle(err, "<Class>Adapter", op, ids)
               exception → raise, anything else → returned
"""

from __future__ import annotations

import functools
import inspect
from typing import TYPE_CHECKING, Any

from knoa.core.errors import CliError, ValidationError
from knoa.core.events.helpers import (
    emit_error_event,
    emit_standardized_event,
    generate_request_id,
    generate_trace_id,
)
from knoa.core.logging import LogContext, get_logger

if TYPE_CHECKING:
    from knoa.core.error_handler import ErrorHandler
    from knoa.core.events.bus import EventBus

__all__ = ["ManagerAdapter", "summarize_result"]

_KEPT_ERRORS = (ValidationError, CliError)


def summarize_result(result: Any) -> Any:
    """Small, event-friendly description of a manager result."""
    if isinstance(result, dict):
        summary: dict[str, Any] = {"type": "dict", "keys": sorted(result)[:10]}
        for key in ("id", "feedback_id", "session_id"):
            if key in result:
                summary[key] = result[key]
        if "session_handover" in result:
            summary["session_id"] = result["session_handover"].get("session_id")
        return summary
    if isinstance(result, (list, tuple)):
        return {"type": "list", "count": len(result)}
    if isinstance(result, str) and len(result) > 200:
        return {"type": "str", "length": len(result)}
    return result


class ManagerAdapter:
    """Event-emitting, error-normalizing proxy for a manager.

    Example::

        tasks = ManagerAdapter(task_manager, "task", event_bus=bus)
        await tasks.create_task("Write docs", "Usage guide")
        # task:create_task_before, task:created, task:create_task_after
    """

    def __init__(
        self,
        manager: Any,
        component: str,
        *,
        event_bus: EventBus | None,
        error_handler: ErrorHandler | None = None,
        logger: Any = None,
    ) -> None:
        if manager is None:
            raise ValueError("ManagerAdapter requires a manager")
        self.manager = manager
        self.component = component
        self.event_bus = event_bus
        self.error_handler = error_handler
        self.logger = logger or get_logger(__name__)

    @property
    def adapter_name(self) -> str:
        return f"{type(self.manager).__name__}Adapter"

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        attr = getattr(self.manager, name)
        if not callable(attr):
            return attr

        @functools.wraps(attr)
        async def call(*args: Any, **kwargs: Any) -> Any:
            return await self._invoke(name, attr, args, kwargs)

        return call

    async def _invoke(
        self, operation: str, method: Any, args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> Any:
        ids = {"traceId": generate_trace_id(), "requestId": generate_request_id()}
        emit_standardized_event(
            self.event_bus,
            self.component,
            f"{operation}_before",
            {"args": list(args), "kwargs": kwargs, **ids},
        )

        try:
            async with LogContext(trace_id=ids["traceId"], request_id=ids["requestId"]):
                result = method(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
        except Exception as e:
            return await self._handle_error(e, operation, args, kwargs, ids)

        emit_standardized_event(
            self.event_bus,
            self.component,
            f"{operation}_after",
            {"result": summarize_result(result), **ids},
        )
        return result

    async def _handle_error(
        self,
        error: Exception,
        operation: str,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        ids: dict[str, str],
    ) -> Any:
        if isinstance(error, _KEPT_ERRORS):
            err: Exception = error
        else:
            class_key = type(self.manager).__name__.upper()
            err = CliError(
                f"{operation} failed: {getattr(error, 'message', None) or error}",
                code=f"ERR_CLI_{class_key}_{operation.upper()}",
                cause=error,
                context={"component": self.component, "operation": operation, **ids},
            )

        emit_error_event(
            self.event_bus,
            err,
            self.component,
            operation,
            ids,
            {"args": list(args), "kwargs": kwargs},
        )

        if self.error_handler is None:
            if err is error:
                raise err
            raise err from error

        result = await self.error_handler.handle(
            err,
            self.adapter_name,
            operation,
            {**ids, "additionalContext": {"args": list(args), "kwargs": kwargs}},
        )
        if isinstance(result, BaseException):
            raise result
        return result

    @staticmethod
    def _validate_params(params: dict[str, Any], required: list[str]) -> None:
        """Raise ValidationError naming every missing or empty required param."""
        missing = [name for name in required if params.get(name) in (None, "")]
        if missing:
            raise ValidationError(
                f"Missing required parameters: {', '.join(missing)}",
                errors=[f"{name} is required" for name in missing],
            )
