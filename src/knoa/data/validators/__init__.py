"""
Validation contract consumed by repositories.

A validator exposes ``validate(data) -> ValidationResult``. Domain validators
may also provide ``validate_status_transition``, ``validate_hierarchy`` or
``validate_state_changes``; repositories look those up with ``getattr``.
"""

from knoa.data.validators.base import (
    ValidationResult,
    Validator,
    format_pydantic_errors,
    validate_model,
)
from knoa.data.validators.feedback import FeedbackValidator
from knoa.data.validators.session import SessionValidator
from knoa.data.validators.task import TaskValidator

__all__ = [
    "ValidationResult",
    "Validator",
    "format_pydantic_errors",
    "validate_model",
    "FeedbackValidator",
    "SessionValidator",
    "TaskValidator",
]
