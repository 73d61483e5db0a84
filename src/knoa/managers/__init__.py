"""Workflow managers: the operations the CLI and adapters expose."""

from knoa.managers.feedback import FeedbackManager
from knoa.managers.integration import REPORT_TYPES, IntegrationManager
from knoa.managers.session import SessionManager
from knoa.managers.state import STATE_TRANSITIONS, StateManager, WorkflowState
from knoa.managers.task import TaskManager

__all__ = [
    "FeedbackManager",
    "IntegrationManager",
    "REPORT_TYPES",
    "SessionManager",
    "STATE_TRANSITIONS",
    "StateManager",
    "TaskManager",
    "WorkflowState",
]
