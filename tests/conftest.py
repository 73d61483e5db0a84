"""
Shared pytest fixtures and configuration for knoa tests.

This module provides:
- Automatic unit / integration markers by test location
- Isolation of the process-wide settings, event bus and container
- A storage service rooted in ``tmp_path`` and a history-keeping bus
- Sample task / session / feedback documents
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from knoa.core.events import EventBus, set_event_bus
from knoa.core.locks import LockManager
from knoa.core.services import reset_container
from knoa.core.settings import clear_settings_cache
from knoa.data.feedback_repository import FeedbackRepository
from knoa.data.session_repository import SessionRepository
from knoa.data.storage import StorageService
from knoa.data.task_repository import TaskRepository
from knoa.data.validators import FeedbackValidator, SessionValidator, TaskValidator
from tests._support.factories import make_feedback, make_session, make_task

# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Global State Cleanup
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset cached settings, the default bus and the container around each test."""
    clear_settings_cache()
    set_event_bus(None)
    reset_container()
    yield
    clear_settings_cache()
    set_event_bus(None)
    reset_container()


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def bus() -> EventBus:
    return EventBus(keep_history=True)


@pytest.fixture
def storage(tmp_path: Path, bus: EventBus) -> StorageService:
    return StorageService(tmp_path, event_bus=bus)


@pytest.fixture
def git_service() -> MagicMock:
    """GitService stand-in with a fixed HEAD and no commits."""
    git = MagicMock()
    git.get_current_commit_hash.return_value = "abc1234def5678"
    git.get_commits_between.return_value = []
    git.get_changed_files_in_commit.return_value = []
    git.get_commit_diff_stats.return_value = {
        "files": [],
        "files_changed": 0,
        "lines_added": 0,
        "lines_deleted": 0,
    }
    git.extract_task_ids_from_commit_message.side_effect = lambda message: []
    return git


# =============================================================================
# Sample Documents
# =============================================================================


@pytest.fixture
def task_factory():
    return make_task


@pytest.fixture
def session_factory():
    return make_session


@pytest.fixture
def feedback_factory():
    return make_feedback


# =============================================================================
# Repositories and Coordination
# =============================================================================


@pytest.fixture
def lock_manager() -> LockManager:
    return LockManager(lock_timeout=5000, retry_interval=5, max_retries=500, logger=MagicMock())


@pytest.fixture
def task_repository(storage: StorageService, bus: EventBus) -> TaskRepository:
    return TaskRepository(storage, TaskValidator(), event_bus=bus, logger=MagicMock())


@pytest.fixture
def session_repository(
    storage: StorageService, bus: EventBus, git_service: MagicMock
) -> SessionRepository:
    return SessionRepository(
        storage, SessionValidator(), git_service, event_bus=bus, logger=MagicMock()
    )


@pytest.fixture
def feedback_repository(storage: StorageService, bus: EventBus) -> FeedbackRepository:
    return FeedbackRepository(storage, FeedbackValidator(), event_bus=bus, logger=MagicMock())
