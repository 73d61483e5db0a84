"""Session handover schema and validator."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from knoa.core.logging import get_logger
from knoa.data.constants import TASK_ID_REGEX
from knoa.data.validators.base import ValidationResult, validate_model

__all__ = ["SessionHandover", "SessionModel", "SessionValidator"]

TaskIdStr = Annotated[str, Field(pattern=TASK_ID_REGEX)]


class ProjectStateSummary(BaseModel):
    model_config = ConfigDict(extra="allow")

    completed_tasks: list[TaskIdStr] = Field(default_factory=list)
    current_tasks: list[TaskIdStr] = Field(default_factory=list)
    pending_tasks: list[TaskIdStr] = Field(default_factory=list)
    blocked_tasks: list[TaskIdStr] = Field(default_factory=list)


class KeyArtifact(BaseModel):
    model_config = ConfigDict(extra="allow")

    path: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


class CommitRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    hash: str = Field(..., min_length=1)
    message: str
    timestamp: str = Field(..., min_length=1)


class GitChanges(BaseModel):
    model_config = ConfigDict(extra="allow")

    commits: list[CommitRecord] = Field(default_factory=list)


class DescribedItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    description: str = Field(..., min_length=1)


class SessionHandover(BaseModel):
    model_config = ConfigDict(extra="allow")

    project_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    previous_session_id: str | None = None
    session_timestamp: str = Field(..., min_length=1)
    project_state_summary: ProjectStateSummary
    next_session_focus: str | None = ""
    key_artifacts: list[KeyArtifact] = Field(default_factory=list)
    git_changes: GitChanges | None = None
    current_challenges: list[DescribedItem] = Field(default_factory=list)
    action_items: list[DescribedItem] = Field(default_factory=list)


class SessionModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    session_handover: SessionHandover


def _parse_ts(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class SessionValidator:
    """Validates session documents and the continuity between two sessions."""

    def __init__(self, logger: Any = None) -> None:
        self.logger = logger or get_logger(__name__)

    def validate(self, data: Any) -> ValidationResult:
        return ValidationResult.from_errors(validate_model(SessionModel, data))

    def validate_state_changes(self, previous: Any, current: Any) -> ValidationResult:
        """Check session id and timestamp continuity; warn on tasks that went missing."""
        for label, session in (("previous", previous), ("current", current)):
            if not isinstance(session, dict) or "session_handover" not in session:
                return ValidationResult.fail(f"{label} session is invalid")

        prev = previous["session_handover"]
        curr = current["session_handover"]
        errors: list[str] = []
        warnings: list[str] = []

        if curr.get("previous_session_id") != prev.get("session_id"):
            errors.append(
                f"session id continuity broken: {prev.get('session_id')} -> "
                f"{curr.get('previous_session_id')}"
            )

        prev_ts = _parse_ts(prev.get("session_timestamp", ""))
        curr_ts = _parse_ts(curr.get("session_timestamp", ""))
        if prev_ts and curr_ts and curr_ts < prev_ts:
            errors.append(
                f"session timestamp goes backwards: {prev['session_timestamp']} -> "
                f"{curr['session_timestamp']}"
            )

        prev_summary = prev.get("project_state_summary") or {}
        curr_summary = curr.get("project_state_summary") or {}
        if prev_summary and curr_summary:
            curr_completed = set(curr_summary.get("completed_tasks") or [])
            for task_id in prev_summary.get("completed_tasks") or []:
                if task_id not in curr_completed:
                    warnings.append(f"task {task_id} is no longer completed")

            keys = ("completed_tasks", "current_tasks", "pending_tasks", "blocked_tasks")
            curr_all = {t for k in keys for t in curr_summary.get(k) or []}
            for task_id in (t for k in keys for t in prev_summary.get(k) or []):
                if task_id not in curr_all:
                    warnings.append(f"task {task_id} no longer exists")

        return ValidationResult.from_errors(errors, warnings)
