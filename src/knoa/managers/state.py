"""
Workflow state machine.

The state tracks where the current working session is, independent of any
single task::

    UNINITIALIZED → INITIALIZED | ERROR
    INITIALIZED   → SESSION_STARTED | INITIALIZED | ERROR
    SESSION_STARTED    → TASK_IN_PROGRESS | SESSION_ENDED | ERROR
    TASK_IN_PROGRESS   → FEEDBACK_COLLECTED | SESSION_ENDED | ERROR
    FEEDBACK_COLLECTED → TASK_IN_PROGRESS | SESSION_ENDED | ERROR
    SESSION_ENDED → INITIALIZED | ERROR
    ERROR         → INITIALIZED | UNINITIALIZED

``transition_to`` enforces the graph; ``set_state`` only checks that the
target is a known state. Every change is recorded in the history, handed to
the registered listeners and emitted as ``state:changed``.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from knoa.core.errors import StateError
from knoa.core.events.helpers import emit_standardized_event, utc_timestamp
from knoa.core.logging import get_logger

if TYPE_CHECKING:
    from knoa.core.events.bus import EventBus

__all__ = ["StateManager", "WorkflowState", "STATE_TRANSITIONS"]

StateListener = Callable[[str, str, dict[str, Any]], Any]


class WorkflowState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    SESSION_STARTED = "session_started"
    TASK_IN_PROGRESS = "task_in_progress"
    FEEDBACK_COLLECTED = "feedback_collected"
    SESSION_ENDED = "session_ended"
    ERROR = "error"


_S = WorkflowState

STATE_TRANSITIONS: dict[WorkflowState, frozenset[WorkflowState]] = {
    _S.UNINITIALIZED: frozenset({_S.INITIALIZED, _S.ERROR}),
    _S.INITIALIZED: frozenset({_S.SESSION_STARTED, _S.INITIALIZED, _S.ERROR}),
    _S.SESSION_STARTED: frozenset({_S.TASK_IN_PROGRESS, _S.SESSION_ENDED, _S.ERROR}),
    _S.TASK_IN_PROGRESS: frozenset({_S.FEEDBACK_COLLECTED, _S.SESSION_ENDED, _S.ERROR}),
    _S.FEEDBACK_COLLECTED: frozenset({_S.TASK_IN_PROGRESS, _S.SESSION_ENDED, _S.ERROR}),
    _S.SESSION_ENDED: frozenset({_S.INITIALIZED, _S.ERROR}),
    _S.ERROR: frozenset({_S.INITIALIZED, _S.UNINITIALIZED}),
}


def _coerce(state: str | WorkflowState) -> WorkflowState:
    try:
        return WorkflowState(state)
    except ValueError:
        raise StateError(
            f"Unknown workflow state: {state}",
            context={"state": str(state), "known": [s.value for s in WorkflowState]},
        ) from None


class StateManager:
    """In-memory workflow state with a validated transition graph.

    Example::

        states = StateManager(event_bus=bus)
        states.transition_to("initialized")
        states.can_transition_to("session_ended")   # False
    """

    def __init__(
        self,
        *,
        event_bus: EventBus | None = None,
        logger: Any = None,
        initial_state: str | WorkflowState = WorkflowState.UNINITIALIZED,
    ) -> None:
        self.event_bus = event_bus
        self.logger = logger or get_logger(__name__)
        self._current = _coerce(initial_state)
        self._history: list[dict[str, Any]] = [
            {"state": self._current.value, "timestamp": utc_timestamp()}
        ]
        self._listeners: list[StateListener] = []

        emit_standardized_event(
            self.event_bus, "state", "manager_initialized", {"initialState": self._current.value}
        )

    def get_current_state(self) -> str:
        return self._current.value

    def can_transition_to(self, target: str | WorkflowState) -> bool:
        try:
            state = WorkflowState(target)
        except ValueError:
            return False
        return state in STATE_TRANSITIONS[self._current]

    def set_state(
        self, state: str | WorkflowState, metadata: dict[str, Any] | None = None
    ) -> str:
        """Move to ``state`` without checking the transition graph.

        Raises:
            StateError: ``state`` is not a workflow state
        """
        new_state = _coerce(state)
        previous = self._current
        metadata = dict(metadata or {})
        timestamp = utc_timestamp()

        self._current = new_state
        self._history.append(
            {
                "state": new_state.value,
                "previous_state": previous.value,
                "timestamp": timestamp,
                "metadata": metadata,
            }
        )

        for listener in list(self._listeners):
            try:
                listener(previous.value, new_state.value, metadata)
            except Exception as e:
                self.logger.error(
                    "state_listener_error",
                    previous_state=previous.value,
                    new_state=new_state.value,
                    error=str(e),
                )

        emit_standardized_event(
            self.event_bus,
            "state",
            "changed",
            {
                "prevState": previous.value,
                "newState": new_state.value,
                "metadata": metadata,
                "timestamp": timestamp,
            },
        )
        self.logger.debug("state_changed", previous_state=previous.value, new_state=new_state.value)
        return new_state.value

    def transition_to(
        self, state: str | WorkflowState, metadata: dict[str, Any] | None = None
    ) -> str:
        """Move to ``state`` if the graph allows it.

        Raises:
            StateError: unknown state, or not reachable from the current one
        """
        target = _coerce(state)
        if target not in STATE_TRANSITIONS[self._current]:
            raise StateError(
                f"Cannot transition from {self._current.value} to {target.value}",
                context={"from": self._current.value, "to": target.value},
            )
        return self.set_state(target, metadata)

    def advance(
        self, state: str | WorkflowState, metadata: dict[str, Any] | None = None
    ) -> bool:
        """Follow workflow progress without raising.

        A new session after an ended one passes through INITIALIZED. Any
        other move the graph forbids leaves the state as it is.

        Returns:
            True when the state changed
        """
        target = _coerce(state)
        if self.can_transition_to(target):
            self.transition_to(target, metadata)
            return True
        if target is WorkflowState.SESSION_STARTED and self.can_transition_to(
            WorkflowState.INITIALIZED
        ):
            self.transition_to(WorkflowState.INITIALIZED, metadata)
            self.transition_to(target, metadata)
            return True
        self.logger.debug("workflow_state_kept", state=self._current.value, target=target.value)
        return False

    def register_state_change_listener(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener(previous, new, metadata)`` on every change.

        Returns:
            A function that unregisters the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_state_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        if limit is None or limit <= 0:
            return list(self._history)
        return self._history[-limit:]

    def get_previous_state(self) -> str | None:
        if len(self._history) < 2:
            return None
        return self._history[-2]["state"]

    def reset_error_state(self, metadata: dict[str, Any] | None = None) -> bool:
        """Leave ERROR for the last state before it (INITIALIZED if none).

        Returns:
            False when the current state is not ERROR
        """
        if self._current is not WorkflowState.ERROR:
            return False

        target = WorkflowState.INITIALIZED.value
        for entry in reversed(self._history):
            if entry["state"] != WorkflowState.ERROR.value:
                target = entry["state"]
                break

        self.set_state(target, {**(metadata or {}), "resetReason": "error_recovery"})
        return True
