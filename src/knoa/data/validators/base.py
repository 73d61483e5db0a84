"""
ValidationResult, the Validator protocol and pydantic error formatting.

Schemas are pydantic models; :func:`format_pydantic_errors` flattens a
``pydantic.ValidationError`` into ``"<field>: <message>"`` strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import pydantic

__all__ = [
    "ValidationResult",
    "Validator",
    "format_pydantic_errors",
    "validate_model",
]


@dataclass
class ValidationResult:
    """Outcome of a validation; truthy when valid."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.is_valid

    @classmethod
    def ok(cls, warnings: list[str] | None = None) -> ValidationResult:
        return cls(is_valid=True, warnings=list(warnings or []))

    @classmethod
    def fail(cls, *errors: str, warnings: list[str] | None = None) -> ValidationResult:
        return cls(is_valid=False, errors=list(errors), warnings=list(warnings or []))

    @classmethod
    def from_errors(
        cls, errors: list[str], warnings: list[str] | None = None
    ) -> ValidationResult:
        return cls(is_valid=not errors, errors=list(errors), warnings=list(warnings or []))


@runtime_checkable
class Validator(Protocol):
    """Anything that can check an entity before it is persisted."""

    def validate(self, data: Any) -> ValidationResult: ...


def format_pydantic_errors(exc: pydantic.ValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return messages


def validate_model(model: type[pydantic.BaseModel], data: Any) -> list[str]:
    """Validate ``data`` against ``model``; returns error strings (empty when valid)."""
    if not isinstance(data, dict):
        return ["data must be an object"]
    try:
        model.model_validate(data)
    except pydantic.ValidationError as e:
        return format_pydantic_errors(e)
    return []


