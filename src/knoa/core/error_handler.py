"""
Central error reception with pattern detection, alerting and recovery.

Every component routes failures through :meth:`ErrorHandler.handle`, which
normalizes the error into an :class:`ApplicationError`, records statistics,
tells the rest of the system through ``error:*`` events and, for recoverable
errors with a registered strategy, attempts recovery.

Pipeline::

    handle(error, component, operation, options)
      ├─ 1. wrap / merge context (component, operation, traceId, requestId)
      ├─ 2. patterns      detector(error, component, operation) → action
      ├─ 3. counters      type:<T> component:<C> code:<X> total
      ├─ 4. alerts        condition(error, component, operation) → warn + event
      ├─ 5. log           CRITICAL / MAJOR / default prefix
      ├─ 6. emit          error:occurred
      └─ 7. recovery      strategy by code, then by type name
              ├─ success → result
              └─ failure → re-raise strategy error
         otherwise → the (wrapped) error object is returned

Tags:
    knoa, errors, recovery, alerting, statistics

Doc-Types:
    api-reference
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from knoa.core.errors import (
    ApplicationError,
    ConfigurationError,
    DataConsistencyError,
    DependencyError,
    StateError,
    TimeoutError,
    wrap_error,
)
from knoa.core.events.helpers import (
    generate_request_id,
    generate_trace_id,
    utc_timestamp,
)
from knoa.core.logging import get_logger

if TYPE_CHECKING:
    from knoa.core.events.bus import EventBus

__all__ = [
    "AlertSeverity",
    "AlertThreshold",
    "ErrorHandler",
    "ErrorPattern",
    "RecoveryStrategy",
]

Detector = Callable[[ApplicationError, str, str], bool]
PatternAction = Callable[[ApplicationError, str, str], Any]
Strategy = Callable[[ApplicationError, str, str, dict[str, Any]], Any]


class AlertSeverity(str, Enum):
    """Severity attached to an alert threshold."""

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


@dataclass
class RecoveryStrategy:
    key: str
    handler: Strategy
    description: str | None = None
    priority: int | None = None


@dataclass
class ErrorPattern:
    name: str
    detector: Detector
    action: PatternAction | None = None


@dataclass
class AlertThreshold:
    name: str
    condition: Detector
    severity: str = AlertSeverity.MINOR.value
    description: str | None = None


_CRITICAL_TYPES = (StateError, DataConsistencyError)
_MAJOR_TYPES = (ConfigurationError, DependencyError)


def _option(options: dict[str, Any], camel: str, snake: str) -> Any:
    return options.get(camel) or options.get(snake)


class ErrorHandler:
    """Receives, classifies, counts and optionally recovers errors.

    Example::

        handler = ErrorHandler(event_bus=bus)
        handler.register_recovery_strategy(
            "ERR_NETWORK", lambda err, comp, op, ctx: {"retried": True}
        )
        result = await handler.handle(NetworkError("offline"), "Sync", "pull")
    """

    def __init__(
        self,
        *,
        logger: Any = None,
        event_bus: EventBus | None = None,
        register_defaults: bool = True,
    ) -> None:
        self.logger = logger or get_logger(__name__)
        self.event_bus = event_bus
        self._strategies: dict[str, RecoveryStrategy] = {}
        self._patterns: dict[str, ErrorPattern] = {}
        self._thresholds: dict[str, AlertThreshold] = {}
        self._counts: dict[str, int] = {}
        if register_defaults:
            self._register_defaults()

    # ── Defaults ─────────────────────────────────────────────────────────

    def _register_defaults(self) -> None:
        self.register_recovery_strategy(
            "ERR_TIMEOUT",
            lambda error, component, operation, ctx: {"retried": True, "result": None},
            description="Retry once after a timeout",
        )
        self.register_recovery_strategy(
            "ERR_STORAGE",
            lambda error, component, operation, ctx: {"recovered": True, "result": None},
            description="Recover from a transient storage failure",
        )

        self.register_error_pattern(
            "consecutive_timeouts",
            lambda error, component, operation: isinstance(error, TimeoutError),
            lambda error, component, operation: self.logger.warning(
                "timeout_pattern_detected", component=component, operation=operation
            ),
        )
        self.register_error_pattern(
            "data_consistency_errors",
            lambda error, component, operation: isinstance(error, DataConsistencyError),
        )

        self.register_alert_threshold(
            "critical_error",
            lambda error, component, operation: isinstance(error, _CRITICAL_TYPES),
            severity=AlertSeverity.CRITICAL.value,
            description="State or data consistency failure",
        )
        self.register_alert_threshold(
            "configuration_error",
            lambda error, component, operation: isinstance(error, ConfigurationError),
            severity=AlertSeverity.MAJOR.value,
            description="Invalid configuration",
        )

    # ── Registries ───────────────────────────────────────────────────────

    def register_recovery_strategy(
        self,
        key: str,
        handler: Strategy,
        *,
        description: str | None = None,
        priority: int | None = None,
    ) -> ErrorHandler:
        """Register a strategy keyed by error code or error type name."""
        self._strategies[key] = RecoveryStrategy(key, handler, description, priority)
        self._emit(
            "recovery_strategy_registered",
            {"key": key, "description": description, "priority": priority},
        )
        return self

    def remove_recovery_strategy(self, key: str) -> bool:
        removed = self._strategies.pop(key, None) is not None
        if removed:
            self._emit("recovery_strategy_removed", {"key": key})
        return removed

    def register_error_pattern(
        self,
        name: str,
        detector: Detector,
        action: PatternAction | None = None,
    ) -> ErrorHandler:
        self._patterns[name] = ErrorPattern(name, detector, action)
        return self

    def remove_error_pattern(self, name: str) -> bool:
        return self._patterns.pop(name, None) is not None

    def register_alert_threshold(
        self,
        name: str,
        condition: Detector,
        *,
        severity: str = AlertSeverity.MINOR.value,
        description: str | None = None,
    ) -> ErrorHandler:
        self._thresholds[name] = AlertThreshold(name, condition, severity, description)
        return self

    def remove_alert_threshold(self, name: str) -> bool:
        return self._thresholds.pop(name, None) is not None

    # ── Handling ─────────────────────────────────────────────────────────

    async def handle(
        self,
        error: BaseException,
        component: str,
        operation: str,
        options: dict[str, Any] | None = None,
    ) -> Any:
        """Run the full handling pipeline for one error.

        Args:
            error: Any exception
            component: Reporting component (``"Repository"``, ``"TaskManager"``)
            operation: Operation that failed (``"create"``)
            options: ``traceId``, ``requestId`` and ``additionalContext``

        Returns:
            The recovery result when a strategy succeeded, otherwise the
            wrapped :class:`ApplicationError`

        Raises:
            Exception: whatever the recovery strategy raised
        """
        options = options or {}
        existing = getattr(error, "context", None) or {}
        trace_id = (
            _option(options, "traceId", "trace_id")
            or existing.get("traceId")
            or generate_trace_id()
        )
        request_id = (
            _option(options, "requestId", "request_id")
            or existing.get("requestId")
            or generate_request_id()
        )
        extra = _option(options, "additionalContext", "additional_context") or {}

        app_error = wrap_error(
            error,
            context={
                "component": component,
                "operation": operation,
                "traceId": trace_id,
                "requestId": request_id,
                **extra,
            },
        )

        self._detect_patterns(app_error, component, operation)
        self._count(app_error, component)
        self._check_alerts(app_error, component, operation)
        self._log(app_error, component, operation)

        self._emit(
            "occurred",
            {
                "error": app_error.to_dict(),
                "component": component,
                "operation": operation,
                "traceId": trace_id,
                "requestId": request_id,
                "errorCode": app_error.code,
                "recoverable": app_error.recoverable,
                "timestamp": utc_timestamp(),
            },
        )

        if app_error.recoverable:
            strategy = self._find_strategy(app_error)
            if strategy is not None:
                return await self._recover(
                    strategy, app_error, component, operation, trace_id, request_id
                )

        return app_error

    def _detect_patterns(self, error: ApplicationError, component: str, operation: str) -> None:
        for pattern in list(self._patterns.values()):
            try:
                matched = pattern.detector(error, component, operation)
            except Exception as e:
                self.logger.error("error_pattern_detector_failed", pattern=pattern.name, error=str(e))
                continue
            if not matched:
                continue

            self.logger.warning(
                "error_pattern_detected",
                pattern=pattern.name,
                component=component,
                operation=operation,
            )
            self._emit(
                "pattern_detected",
                {
                    "pattern": pattern.name,
                    "component": component,
                    "operation": operation,
                    "errorCode": error.code,
                },
            )
            self._increment(f"pattern:{pattern.name}")

            if pattern.action is not None:
                try:
                    pattern.action(error, component, operation)
                except Exception as e:
                    self.logger.error(
                        "error_pattern_action_failed", pattern=pattern.name, error=str(e)
                    )

    def _count(self, error: ApplicationError, component: str) -> None:
        self._increment(f"type:{error.name}")
        self._increment(f"component:{component}")
        self._increment(f"code:{error.code}")
        self._increment("total")

    def _check_alerts(self, error: ApplicationError, component: str, operation: str) -> None:
        for threshold in list(self._thresholds.values()):
            try:
                triggered = threshold.condition(error, component, operation)
            except Exception as e:
                self.logger.error(
                    "alert_condition_failed", threshold=threshold.name, error=str(e)
                )
                continue
            if not triggered:
                continue

            self.logger.warning(
                "alert_triggered",
                threshold=threshold.name,
                severity=threshold.severity,
                component=component,
                operation=operation,
            )
            self._emit(
                "alert_triggered",
                {
                    "threshold": threshold.name,
                    "severity": threshold.severity,
                    "description": threshold.description,
                    "component": component,
                    "operation": operation,
                    "errorCode": error.code,
                    "message": error.message,
                },
            )
            self._increment(f"alert:{threshold.name}")

    def _log(self, error: ApplicationError, component: str, operation: str) -> None:
        if isinstance(error, _CRITICAL_TYPES):
            prefix = f"[{component}] {operation} failed - CRITICAL:"
        elif isinstance(error, _MAJOR_TYPES):
            prefix = f"[{component}] {operation} failed - MAJOR:"
        else:
            prefix = f"[{component}] {operation} failed:"

        self.logger.error(
            f"{prefix} {error.message}",
            error_code=error.code,
            error_type=error.name,
            recoverable=error.recoverable,
            trace_id=error.context.get("traceId"),
            request_id=error.context.get("requestId"),
        )

    # ── Recovery ─────────────────────────────────────────────────────────

    def _find_strategy(self, error: ApplicationError) -> RecoveryStrategy | None:
        return self._strategies.get(error.code) or self._strategies.get(error.name)

    async def _recover(
        self,
        strategy: RecoveryStrategy,
        error: ApplicationError,
        component: str,
        operation: str,
        trace_id: str,
        request_id: str,
    ) -> Any:
        ids = {"traceId": trace_id, "requestId": request_id}
        base = {
            "strategy": strategy.key,
            "errorCode": error.code,
            "component": component,
            "operation": operation,
            **ids,
        }

        self._increment(f"recovery_attempt:{strategy.key}")
        self._increment("recovery_attempt:total")
        self._emit("recovery_started", base)

        try:
            result = strategy.handler(error, component, operation, dict(ids))
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self.logger.error(
                "recovery_failed",
                strategy=strategy.key,
                component=component,
                operation=operation,
                error=str(e),
            )
            self._increment(f"recovery_failure:{strategy.key}")
            self._increment("recovery_failure:total")
            self._emit("recovery_failed", {**base, "recoveryError": str(e)})
            raise

        self.logger.info(
            "recovery_succeeded",
            strategy=strategy.key,
            component=component,
            operation=operation,
        )
        self._increment(f"recovery_success:{strategy.key}")
        self._increment("recovery_success:total")
        self._emit("recovery_succeeded", {**base, "result": result})
        return result

    # ── Statistics ───────────────────────────────────────────────────────

    def _increment(self, key: str) -> None:
        self._counts[key] = self._counts.get(key, 0) + 1

    def _prefixed(self, prefix: str) -> dict[str, int]:
        return {
            key[len(prefix):]: value
            for key, value in self._counts.items()
            if key.startswith(prefix)
        }

    def get_error_statistics(self) -> dict[str, Any]:
        """Counters collected since construction or the last reset."""
        attempts = self._counts.get("recovery_attempt:total", 0)
        successes = self._counts.get("recovery_success:total", 0)
        return {
            "total_errors": self._counts.get("total", 0),
            "errors_by_type": self._prefixed("type:"),
            "errors_by_component": self._prefixed("component:"),
            "pattern_counts": self._prefixed("pattern:"),
            "alert_counts": self._prefixed("alert:"),
            "recovery_attempts": attempts,
            "recovery_success": successes,
            "recovery_failure": self._counts.get("recovery_failure:total", 0),
            "recovery_success_rate": (successes / attempts) if attempts else 0.0,
        }

    def get_dashboard_data(self) -> dict[str, Any]:
        """Statistics plus the registered patterns, strategies and thresholds."""
        return {
            **self.get_error_statistics(),
            "errors_by_code": self._prefixed("code:"),
            "patterns": list(self._patterns),
            "strategies": list(self._strategies),
            "thresholds": [
                {"name": t.name, "severity": t.severity, "description": t.description}
                for t in self._thresholds.values()
            ],
            "timestamp": utc_timestamp(),
        }

    def reset_statistics(self) -> None:
        self._counts.clear()

    def _emit(self, action: str, data: dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.emit_standardized("error", action, data)
        except Exception as e:
            self.logger.warning("error_event_failed", action=action, error=str(e))
