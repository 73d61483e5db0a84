"""Task schema and validator."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

from knoa.core.logging import get_logger
from knoa.data.constants import PROGRESS_STATES, TASK_ID_REGEX
from knoa.data.validators.base import ValidationResult, validate_model

__all__ = ["TaskDependency", "TaskHierarchy", "TaskModel", "TaskValidator"]


class TaskDependency(BaseModel):
    model_config = ConfigDict(extra="allow")

    task_id: str = Field(..., pattern=TASK_ID_REGEX)
    type: Literal["strong", "weak"] | None = None


class TaskModel(BaseModel):
    """A persisted task. Unknown keys (``git_commits``, ``assignee`` ...) are kept."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., pattern=TASK_ID_REGEX)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    priority: StrictInt = Field(..., ge=1, le=5)
    status: Literal["not_started", "in_progress", "completed", "pending", "blocked"]
    progress_state: str | None = None
    progress_percentage: float | None = Field(default=None, ge=0, le=100)
    dependencies: list[TaskDependency] = Field(default_factory=list)
    estimated_hours: float | None = Field(default=None, ge=0)

    @field_validator("progress_state")
    @classmethod
    def _known_progress_state(cls, v: str | None) -> str | None:
        if v is not None and v not in PROGRESS_STATES:
            raise ValueError(f"unknown progress state: {v}")
        return v


class TaskHierarchy(BaseModel):
    model_config = ConfigDict(extra="allow")

    epics: list[Any] = Field(default_factory=list)
    stories: list[Any] = Field(default_factory=list)


class TaskValidator:
    """Validates task records and the task hierarchy."""

    def __init__(self, logger: Any = None) -> None:
        self.logger = logger or get_logger(__name__)

    def validate(self, data: Any) -> ValidationResult:
        errors = validate_model(TaskModel, data)
        if errors:
            self.logger.debug("task_validation_failed", errors=errors)
        return ValidationResult.from_errors(errors)

    def validate_hierarchy(self, hierarchy: Any) -> ValidationResult:
        if hierarchy is None:
            return ValidationResult.fail("hierarchy is required")
        return ValidationResult.from_errors(validate_model(TaskHierarchy, hierarchy))
