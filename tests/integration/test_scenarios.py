"""
End-to-end scenarios across repositories, locks, plugins and error handling.

Each scenario uses literal inputs and checks the externally visible
outcome: return values, persisted files and emitted events.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from knoa.core.error_handler import ErrorHandler
from knoa.core.errors import DataConsistencyError, LockTimeoutError, StateError, TimeoutError
from knoa.core.locks import LockManager
from knoa.core.plugins import PluginManager

TASK = {"id": "T001", "title": "x", "description": "d", "priority": 3, "status": "pending"}


def event_names(bus, prefix: str) -> list[str]:
    return [h["event"] for h in bus.get_event_history() if h["event"].startswith(prefix)]


@pytest.mark.asyncio
async def test_create_then_update_task(task_repository, bus):
    await task_repository.create(dict(TASK))
    await task_repository.update("T001", {"status": "in_progress"})

    assert await task_repository.get_by_id("T001") == {**TASK, "status": "in_progress"}
    assert event_names(bus, "task:") == ["task:created", "task:updated"]
    for entry in bus.get_event_history():
        if entry["event"].startswith("task:"):
            assert isinstance(entry["data"]["traceId"], str)
            assert isinstance(entry["data"]["requestId"], str)


@pytest.mark.asyncio
async def test_duplicate_create(task_repository):
    await task_repository.create(dict(TASK))
    with pytest.raises(DataConsistencyError) as exc_info:
        await task_repository.create(dict(TASK))

    assert exc_info.value.name == "DataConsistencyError"
    assert "T001 already exists" in exc_info.value.message
    assert len((await task_repository.get_all())["tasks"]) == 1


@pytest.mark.asyncio
async def test_invalid_transition_leaves_file_unchanged(task_repository, tmp_path):
    await task_repository.create({**TASK, "progress_state": "not_started"})
    collection = tmp_path / "ai-context/tasks/current-tasks.json"
    before = collection.read_bytes()

    with pytest.raises(StateError) as exc_info:
        await task_repository.update_task_progress("T001", "completed")

    assert exc_info.value.message == "Transition from not_started to completed is not allowed"
    assert collection.read_bytes() == before


@pytest.mark.asyncio
async def test_lock_timeout():
    locks = LockManager(retry_interval=10, logger=MagicMock())
    assert await locks.acquire_lock("r", "A") is True

    with pytest.raises(LockTimeoutError) as exc_info:
        await locks.acquire_lock("r", "B", timeout=50)

    err = exc_info.value
    assert err.code == "ERR_LOCK_TIMEOUT"
    assert err.context["resourceId"] == "r"
    assert err.context["lockerId"] == "B"
    assert err.context["heldBy"] == "A"


@pytest.mark.asyncio
async def test_plugin_invocation_path(bus):
    class CiPlugin:
        async def run_tests(self):
            return {"ok": True}

    plugins = PluginManager(logger=MagicMock(), event_bus=bus)
    assert plugins.register_plugin("ci", CiPlugin()) is True

    assert await plugins.invoke_plugin("ci", "runTests") == {"ok": True}
    assert event_names(bus, "plugin:") == [
        "plugin:registered",
        "plugin:method_invoked",
        "plugin:method_completed",
    ]


@pytest.mark.asyncio
async def test_error_recovery(bus):
    handler = ErrorHandler(logger=MagicMock(), event_bus=bus)
    handler.register_recovery_strategy(
        "ERR_TIMEOUT", lambda error, component, operation, ctx: {"retried": True}
    )

    result = await handler.handle(TimeoutError("t"), "C", "op")

    assert result == {"retried": True}
    emitted = event_names(bus, "error:")
    for name in ("error:occurred", "error:recovery_started", "error:recovery_succeeded"):
        assert name in emitted
    assert handler.get_error_statistics()["recovery_success"] == 1
