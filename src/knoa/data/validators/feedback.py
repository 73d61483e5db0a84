"""Feedback loop schema, status transitions and priority scoring."""

from __future__ import annotations

import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from knoa.core.logging import get_logger
from knoa.data.constants import (
    FEEDBACK_STATE_TRANSITIONS,
    FEEDBACK_TYPE_WEIGHTS,
    TASK_ID_REGEX,
)
from knoa.data.validators.base import ValidationResult, validate_model

__all__ = ["FeedbackLoop", "FeedbackModel", "FeedbackValidator"]


class ExecutionRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    command: str = Field(..., min_length=1)
    timestamp: str = Field(..., min_length=1)
    environment: str = Field(..., min_length=1)


class VerificationResults(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: Literal["passed", "failed", "partial"]
    timestamp: str = Field(..., min_length=1)


class ItemLocation(BaseModel):
    model_config = ConfigDict(extra="allow")

    file: str = Field(..., min_length=1)


class FeedbackItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    description: str = Field(..., min_length=1)
    type: Literal["bug", "improvement", "suggestion", "question"] | None = None
    priority: Literal["high", "medium", "low"] | None = None
    location: ItemLocation | None = None


class FeedbackLoop(BaseModel):
    model_config = ConfigDict(extra="allow")

    task_id: str = Field(..., pattern=TASK_ID_REGEX)
    test_execution: ExecutionRecord
    verification_results: VerificationResults
    feedback_items: list[FeedbackItem]
    status: Literal["open", "in_progress", "resolved", "wontfix"]
    feedback_type: Literal["security", "functional", "performance", "ux", "code_quality"] | None = None
    test_results: dict[str, Any] | None = None
    resolution_steps: list[Any] | None = None


class FeedbackModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    feedback_id: str = Field(..., min_length=1)
    feedback_loop: FeedbackLoop


class FeedbackValidator:
    """Validates feedback records and their status transitions."""

    def __init__(
        self,
        logger: Any = None,
        *,
        transitions: dict[str, tuple[str, ...]] | None = None,
        type_weights: dict[str, int] | None = None,
    ) -> None:
        self.logger = logger or get_logger(__name__)
        self.transitions = transitions or FEEDBACK_STATE_TRANSITIONS
        self.type_weights = type_weights or FEEDBACK_TYPE_WEIGHTS

    def validate(self, data: Any) -> ValidationResult:
        return ValidationResult.from_errors(validate_model(FeedbackModel, data))

    def validate_status_transition(self, current: str, new: str) -> ValidationResult:
        """Same-status moves are allowed; others must be listed in the transition table."""
        if current not in self.transitions:
            return ValidationResult.fail(f"invalid current status: {current}")
        if new not in self.transitions:
            return ValidationResult.fail(f"invalid new status: {new}")
        if current != new and new not in self.transitions[current]:
            return ValidationResult.fail(f"Transition from {current} to {new} is not allowed")
        return ValidationResult.ok()

    def calculate_priority(self, feedback: Any) -> int:
        """Score 1-10 from feedback type, failed tests, success rate and items."""
        loop = feedback.get("feedback_loop") if isinstance(feedback, dict) else None
        if not loop:
            return 1

        score = float(self.type_weights.get(loop.get("feedback_type") or "", 0))

        test_results = loop.get("test_results")
        if test_results:
            score += len(test_results.get("failed_tests") or []) * 2
            score += (100 - (test_results.get("success_rate") or 0)) / 10

        items = loop.get("feedback_items") or []
        score += len(items)
        score += sum(2 for item in items if item.get("priority") == "high")

        return min(10, max(1, math.floor(score + 0.5)))
