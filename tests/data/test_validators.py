"""Tests for ``knoa.data.validators``: task, session and feedback schemas."""

from __future__ import annotations

import pytest

from knoa.data.validators import (
    FeedbackValidator,
    SessionValidator,
    TaskValidator,
    ValidationResult,
    Validator,
)
from tests._support.factories import make_feedback, make_session, make_task


class TestValidationResult:
    def test_truthiness(self):
        assert ValidationResult.ok()
        assert not ValidationResult.fail("bad")
        assert ValidationResult.from_errors([]).is_valid
        assert ValidationResult.from_errors(["x"], ["w"]).warnings == ["w"]

    def test_protocol(self):
        assert isinstance(TaskValidator(), Validator)
        assert isinstance(SessionValidator(), Validator)
        assert isinstance(FeedbackValidator(), Validator)


class TestTaskValidator:
    def test_valid_task(self):
        assert TaskValidator().validate(make_task()).is_valid

    def test_extra_keys_allowed(self):
        assert TaskValidator().validate(make_task(git_commits=["abc"], assignee="ada")).is_valid

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"id": "task-1"}, "id"),
            ({"title": ""}, "title"),
            ({"title": "x" * 201}, "title"),
            ({"priority": 6}, "priority"),
            ({"priority": "3"}, "priority"),
            ({"status": "done"}, "status"),
            ({"progress_state": "flying"}, "progress_state"),
            ({"progress_percentage": 120}, "progress_percentage"),
            ({"estimated_hours": -1}, "estimated_hours"),
            ({"dependencies": [{"task_id": "bad"}]}, "dependencies"),
            ({"dependencies": [{"task_id": "T002", "type": "optional"}]}, "dependencies"),
        ],
    )
    def test_invalid_fields(self, overrides, field):
        result = TaskValidator().validate(make_task(**overrides))
        assert not result.is_valid
        assert any(e.startswith(field) for e in result.errors)

    def test_missing_required(self):
        result = TaskValidator().validate({"id": "T001"})
        fields = {e.split(":")[0] for e in result.errors}
        assert {"title", "description", "priority", "status"} <= fields

    def test_non_dict(self):
        assert TaskValidator().validate(["T001"]).errors == ["data must be an object"]

    def test_hierarchy(self):
        validator = TaskValidator()
        assert validator.validate_hierarchy({"epics": [], "stories": []}).is_valid
        assert not validator.validate_hierarchy(None).is_valid
        assert not validator.validate_hierarchy({"stories": "x"}).is_valid


class TestSessionValidator:
    def test_valid_session(self):
        assert SessionValidator().validate(make_session()).is_valid

    def test_missing_handover(self):
        result = SessionValidator().validate({})
        assert not result.is_valid
        assert result.errors[0].startswith("session_handover")

    def test_bad_task_id_in_summary(self):
        session = make_session(
            project_state_summary={"completed_tasks": ["nope"], "current_tasks": []}
        )
        assert not SessionValidator().validate(session).is_valid

    def test_artifact_requires_description(self):
        session = make_session(key_artifacts=[{"path": "src/a.py"}])
        assert not SessionValidator().validate(session).is_valid

    def test_state_changes_continuity(self):
        previous = make_session("aaa", session_timestamp="2026-01-10T09:00:00Z")
        current = make_session(
            "bbb", previous_session_id="aaa", session_timestamp="2026-01-11T09:00:00Z"
        )
        assert SessionValidator().validate_state_changes(previous, current).is_valid

    def test_state_changes_broken_chain_and_time(self):
        previous = make_session("aaa", session_timestamp="2026-01-11T09:00:00Z")
        current = make_session(
            "bbb", previous_session_id="zzz", session_timestamp="2026-01-10T09:00:00Z"
        )
        result = SessionValidator().validate_state_changes(previous, current)
        assert len(result.errors) == 2
        assert "continuity" in result.errors[0]
        assert "backwards" in result.errors[1]

    def test_state_changes_warn_on_regressions(self):
        previous = make_session(
            "aaa",
            project_state_summary={"completed_tasks": ["T001"], "pending_tasks": ["T002"]},
        )
        current = make_session(
            "bbb",
            previous_session_id="aaa",
            project_state_summary={"current_tasks": ["T001"]},
        )
        result = SessionValidator().validate_state_changes(previous, current)
        assert result.is_valid
        assert "task T001 is no longer completed" in result.warnings
        assert "task T002 no longer exists" in result.warnings

    def test_state_changes_invalid_input(self):
        result = SessionValidator().validate_state_changes(None, make_session())
        assert result.errors == ["previous session is invalid"]


class TestFeedbackValidator:
    def test_valid_feedback(self):
        assert FeedbackValidator().validate(make_feedback()).is_valid

    @pytest.mark.parametrize(
        "overrides",
        [
            {"task_id": "x"},
            {"status": "closed"},
            {"feedback_type": "vibes"},
            {"verification_results": {"status": "maybe", "timestamp": "t"}},
            {"test_execution": {"command": "", "timestamp": "t", "environment": "dev"}},
            {"feedback_items": [{"description": ""}]},
            {"feedback_items": [{"description": "x", "priority": "urgent"}]},
        ],
    )
    def test_invalid_loops(self, overrides):
        assert not FeedbackValidator().validate(make_feedback(**overrides)).is_valid

    def test_missing_feedback_id(self):
        feedback = make_feedback()
        del feedback["feedback_id"]
        assert not FeedbackValidator().validate(feedback).is_valid

    @pytest.mark.parametrize(
        "current,new,valid",
        [
            ("open", "in_progress", True),
            ("open", "resolved", True),
            ("in_progress", "open", True),
            ("resolved", "open", True),
            ("resolved", "in_progress", False),
            ("wontfix", "resolved", False),
            ("open", "open", True),
        ],
    )
    def test_status_transitions(self, current, new, valid):
        assert FeedbackValidator().validate_status_transition(current, new).is_valid is valid

    def test_unknown_statuses(self):
        validator = FeedbackValidator()
        assert validator.validate_status_transition("closed", "open").errors == [
            "invalid current status: closed"
        ]
        assert validator.validate_status_transition("open", "closed").errors == [
            "invalid new status: closed"
        ]


class TestPriority:
    def test_empty_feedback_scores_one(self):
        assert FeedbackValidator().calculate_priority({}) == 1

    def test_type_weight_only(self):
        feedback = make_feedback(feedback_type="code_quality")
        assert FeedbackValidator().calculate_priority(feedback) == 2

    def test_failed_tests_and_items(self):
        feedback = make_feedback(
            feedback_type="ux",
            test_results={"failed_tests": ["a"], "success_rate": 95},
            feedback_items=[{"description": "x", "priority": "low"}],
        )
        # 3 + 2 + 0.5 + 1 = 6.5 -> rounds half up
        assert FeedbackValidator().calculate_priority(feedback) == 7

    def test_capped_at_ten(self):
        feedback = make_feedback(
            test_results={"failed_tests": ["a", "b", "c"], "success_rate": 0},
            feedback_items=[{"description": "x", "priority": "high"}] * 3,
        )
        assert FeedbackValidator().calculate_priority(feedback) == 10

    def test_custom_weights(self):
        validator = FeedbackValidator(type_weights={"functional": 1})
        assert validator.calculate_priority(make_feedback()) == 1
