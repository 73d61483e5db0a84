"""Domain constants shared by validators, repositories and managers."""

from __future__ import annotations

TASK_ID_REGEX = r"^T[0-9]{3}$"

TASK_STATUSES = ("not_started", "in_progress", "completed", "pending", "blocked")

DEPENDENCY_TYPES = ("strong", "weak")

# progress_state -> default completion percentage
PROGRESS_STATES: dict[str, dict[str, object]] = {
    "not_started": {"description": "Task not started yet", "default_percentage": 0},
    "planning": {"description": "Planning the implementation", "default_percentage": 10},
    "in_development": {"description": "Implementation in progress", "default_percentage": 30},
    "implementation_complete": {
        "description": "Implementation finished, awaiting review",
        "default_percentage": 60,
    },
    "in_review": {"description": "Under code review", "default_percentage": 70},
    "review_complete": {"description": "Review finished", "default_percentage": 80},
    "in_testing": {"description": "Under test", "default_percentage": 90},
    "completed": {"description": "Done", "default_percentage": 100},
}

STATE_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "not_started": ("planning", "in_development"),
    "planning": ("in_development",),
    "in_development": ("implementation_complete", "in_review"),
    "implementation_complete": ("in_review",),
    "in_review": ("review_complete", "in_development"),
    "review_complete": ("in_testing",),
    "in_testing": ("completed", "in_development"),
    "completed": (),
}

FEEDBACK_STATE_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "open": ("in_progress", "resolved", "wontfix"),
    "in_progress": ("resolved", "wontfix", "open"),
    "resolved": ("open",),
    "wontfix": ("open",),
}

FEEDBACK_TYPE_WEIGHTS: dict[str, int] = {
    "security": 5,
    "functional": 5,
    "performance": 4,
    "ux": 3,
    "code_quality": 2,
}

FEEDBACK_ITEM_TYPES = ("bug", "improvement", "suggestion", "question")
FEEDBACK_ITEM_PRIORITIES = ("high", "medium", "low")
VERIFICATION_STATUSES = ("passed", "failed", "partial")


def default_percentage(state: str) -> int:
    return int(PROGRESS_STATES[state]["default_percentage"])  # type: ignore[arg-type]
