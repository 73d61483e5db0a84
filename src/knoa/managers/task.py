"""Task workflows on top of :class:`~knoa.data.task_repository.TaskRepository`."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from knoa.core.errors import NotFoundError, ValidationError
from knoa.core.events.helpers import generate_request_id, utc_timestamp
from knoa.core.logging import get_logger

if TYPE_CHECKING:
    from knoa.core.locks import LockManager
    from knoa.data.task_repository import TaskRepository
    from knoa.managers.state import StateManager

__all__ = ["TaskManager"]

TASKS_RESOURCE = "tasks"


def _normalize_dependencies(dependencies: list[Any] | None) -> list[dict[str, Any]]:
    normalized = []
    for dep in dependencies or []:
        if isinstance(dep, str):
            normalized.append({"task_id": dep, "type": "strong"})
        else:
            normalized.append(dict(dep))
    return normalized


class TaskManager:
    """Creates, updates and links tasks.

    Id allocation and the write that follows happen under the ``tasks``
    lock so concurrent ``create_task`` calls never reuse an id.
    """

    def __init__(
        self,
        task_repository: TaskRepository,
        *,
        lock_manager: LockManager,
        state_manager: StateManager | None = None,
        logger: Any = None,
    ) -> None:
        self.task_repository = task_repository
        self.lock_manager = lock_manager
        self.state_manager = state_manager
        self.logger = logger or get_logger(__name__)

    async def create_task(
        self,
        title: str,
        description: str,
        priority: int = 3,
        status: str = "pending",
        estimated_hours: float | None = None,
        dependencies: list[Any] | None = None,
    ) -> dict[str, Any]:
        locker_id = f"task-manager-{generate_request_id()}"
        async with self.lock_manager.lock(TASKS_RESOURCE, locker_id):
            task_id = await self.task_repository.next_task_id()
            now = utc_timestamp()
            task: dict[str, Any] = {
                "id": task_id,
                "title": title,
                "description": description,
                "priority": priority,
                "status": status,
                "progress_state": "not_started",
                "progress_percentage": 0,
                "dependencies": _normalize_dependencies(dependencies),
                "created_at": now,
                "updated_at": now,
            }
            if estimated_hours is not None:
                task["estimated_hours"] = estimated_hours
            created = await self.task_repository.create(task)

        self.logger.info("task_created", task_id=task_id, title=title)
        return created

    async def update_task(
        self,
        task_id: str,
        status: str | None = None,
        progress: int | None = None,
    ) -> dict[str, Any]:
        """Set ``status`` and/or ``progress_percentage``."""
        if status is None and progress is None:
            raise ValidationError(
                "Nothing to update", errors=["status or progress is required"]
            )

        changes: dict[str, Any] = {"updated_at": utc_timestamp()}
        if status is not None:
            changes["status"] = status
        if progress is not None:
            changes["progress_percentage"] = progress

        locker_id = f"task-manager-{generate_request_id()}"
        async with self.lock_manager.lock(TASKS_RESOURCE, locker_id):
            return await self.task_repository.update(task_id, changes)

    async def update_task_progress(
        self,
        task_id: str,
        progress_state: str,
        percentage: int | None = None,
    ) -> dict[str, Any]:
        locker_id = f"task-manager-{generate_request_id()}"
        async with self.lock_manager.lock(TASKS_RESOURCE, locker_id):
            task = await self.task_repository.update_task_progress(
                task_id, progress_state, percentage
            )
        if self.state_manager is not None:
            self.state_manager.advance(
                "task_in_progress", {"taskId": task_id, "progressState": progress_state}
            )
        return task

    async def list_tasks(self, status: str | None = None) -> list[dict[str, Any]]:
        if status:
            return await self.task_repository.get_tasks_by_status(status)
        entities = await self.task_repository.get_all()
        return entities.get("tasks", [])

    async def get_task(self, task_id: str) -> dict[str, Any]:
        task = await self.task_repository.get_by_id(task_id)
        if task is None:
            raise NotFoundError(f"task with id {task_id} not found", context={"id": task_id})
        return task

    async def delete_task(self, task_id: str) -> bool:
        locker_id = f"task-manager-{generate_request_id()}"
        async with self.lock_manager.lock(TASKS_RESOURCE, locker_id):
            return await self.task_repository.delete(task_id)

    async def link_task_to_commit(self, task_id: str, commit_hash: str) -> dict[str, Any]:
        return await self.task_repository.associate_commit_with_task(task_id, commit_hash)
