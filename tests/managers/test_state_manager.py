"""Tests for ``knoa.managers.state``: the workflow state machine."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from knoa.core.errors import StateError
from knoa.managers.state import STATE_TRANSITIONS, StateManager, WorkflowState


@pytest.fixture
def states(bus) -> StateManager:
    return StateManager(event_bus=bus, logger=MagicMock())


def changed_events(bus):
    return [h["data"] for h in bus.get_event_history() if h["event"] == "state:changed"]


class TestInitialState:
    def test_starts_uninitialized(self, states, bus):
        assert states.get_current_state() == "uninitialized"
        assert states.get_previous_state() is None
        assert [h["state"] for h in states.get_state_history()] == ["uninitialized"]
        init = next(
            h["data"] for h in bus.get_event_history() if h["event"] == "state:manager_initialized"
        )
        assert init["initialState"] == "uninitialized"

    def test_custom_initial_state(self):
        assert StateManager(initial_state="error").get_current_state() == "error"

    def test_every_state_has_transitions(self):
        assert set(STATE_TRANSITIONS) == set(WorkflowState)


class TestTransitions:
    def test_happy_path(self, states):
        for target in (
            "initialized",
            "session_started",
            "task_in_progress",
            "feedback_collected",
            "task_in_progress",
            "session_ended",
            "initialized",
        ):
            states.transition_to(target)
        assert states.get_current_state() == "initialized"
        assert states.get_previous_state() == "session_ended"

    def test_forbidden_transition(self, states):
        with pytest.raises(StateError, match="Cannot transition from uninitialized to session_ended"):
            states.transition_to("session_ended")
        assert states.get_current_state() == "uninitialized"

    def test_can_transition_to(self, states):
        assert states.can_transition_to("initialized")
        assert states.can_transition_to(WorkflowState.ERROR)
        assert not states.can_transition_to("task_in_progress")
        assert not states.can_transition_to("nonsense")

    def test_set_state_skips_graph(self, states):
        states.set_state("task_in_progress", {"why": "restore"})
        assert states.get_current_state() == "task_in_progress"

    def test_unknown_state_rejected(self, states):
        with pytest.raises(StateError, match="Unknown workflow state: nonsense"):
            states.set_state("nonsense")

    def test_changed_event_and_history(self, states, bus):
        states.transition_to("initialized", {"component": "cli"})
        event = changed_events(bus)[-1]
        assert event["prevState"] == "uninitialized"
        assert event["newState"] == "initialized"
        assert event["metadata"] == {"component": "cli"}

        entry = states.get_state_history()[-1]
        assert entry["state"] == "initialized"
        assert entry["previous_state"] == "uninitialized"
        assert entry["metadata"] == {"component": "cli"}

    def test_history_limit(self, states):
        states.transition_to("initialized")
        states.transition_to("session_started")
        assert [h["state"] for h in states.get_state_history(2)] == [
            "initialized",
            "session_started",
        ]
        assert len(states.get_state_history()) == 3


class TestAdvance:
    def test_allowed_move(self, states):
        states.transition_to("initialized")
        assert states.advance("session_started") is True
        assert states.get_current_state() == "session_started"

    def test_new_session_after_ended_one(self, states):
        states.set_state("session_ended")
        assert states.advance("session_started", {"sessionId": "abc"}) is True
        assert [h["state"] for h in states.get_state_history(2)] == [
            "initialized",
            "session_started",
        ]

    def test_new_session_from_uninitialized(self, states):
        assert states.advance("session_started") is True
        assert states.get_current_state() == "session_started"

    def test_forbidden_move_kept(self, states):
        assert states.advance("feedback_collected") is False
        assert states.get_current_state() == "uninitialized"
        assert changed_events(states.event_bus) == []


class TestListeners:
    def test_listener_called_until_unsubscribed(self, states):
        seen = []
        unsubscribe = states.register_state_change_listener(
            lambda prev, new, meta: seen.append((prev, new, meta))
        )
        states.transition_to("initialized", {"a": 1})
        unsubscribe()
        states.transition_to("session_started")
        assert seen == [("uninitialized", "initialized", {"a": 1})]

    def test_failing_listener_logged(self, states):
        def broken(prev, new, meta):
            raise RuntimeError("listener broke")

        states.register_state_change_listener(broken)
        states.transition_to("initialized")
        assert states.get_current_state() == "initialized"
        states.logger.error.assert_called_once()
        assert states.logger.error.call_args.args[0] == "state_listener_error"


class TestResetErrorState:
    def test_noop_outside_error(self, states):
        assert states.reset_error_state() is False

    def test_returns_to_last_good_state(self, states):
        states.transition_to("initialized")
        states.transition_to("session_started")
        states.transition_to("error")
        assert states.reset_error_state({"by": "operator"}) is True
        assert states.get_current_state() == "session_started"
        assert states.get_state_history()[-1]["metadata"] == {
            "by": "operator",
            "resetReason": "error_recovery",
        }

    def test_defaults_to_initialized(self):
        states = StateManager(initial_state="error")
        assert states.reset_error_state() is True
        assert states.get_current_state() == "initialized"
