"""Persistence layer: JSON storage, Git access, validators and repositories.

Modules
-------
storage              StorageService -- JSON/text files under the project root
git                  GitService -- read-only git queries via subprocess
constants            Progress states, transitions and feedback tables
repository           Repository -- generic JSON-collection CRUD
task_repository      TaskRepository
session_repository   SessionRepository
feedback_repository  FeedbackRepository
validators           Validator protocol and pydantic-backed validators
"""

from knoa.data.feedback_repository import FeedbackRepository
from knoa.data.git import GitService
from knoa.data.repository import UNSAFE_KEYS, Repository
from knoa.data.session_repository import SessionRepository
from knoa.data.storage import StorageService
from knoa.data.task_repository import TaskRepository

__all__ = [
    "FeedbackRepository",
    "GitService",
    "Repository",
    "SessionRepository",
    "StorageService",
    "TaskRepository",
    "UNSAFE_KEYS",
]
