"""Task repository: progress states, dependencies, hierarchy and focus."""

from __future__ import annotations

import re
from typing import Any

from knoa.core.errors import NotFoundError, StateError, ValidationError
from knoa.data.constants import (
    PROGRESS_STATES,
    STATE_TRANSITIONS,
    TASK_ID_REGEX,
    default_percentage,
)
from knoa.data.repository import Repository
from knoa.data.validators.base import ValidationResult

__all__ = ["TaskRepository"]

_TASK_ID = re.compile(TASK_ID_REGEX)


def _status_for(progress_state: str) -> str:
    if progress_state == "completed":
        return "completed"
    if progress_state == "not_started":
        return "pending"
    return "in_progress"


class TaskRepository(Repository):
    """Tasks stored in ``ai-context/tasks/current-tasks.json``.

    The collection document may also carry ``task_hierarchy`` and
    ``current_focus`` next to the ``tasks`` list.
    """

    progress_states = PROGRESS_STATES
    state_transitions = STATE_TRANSITIONS

    def __init__(self, storage_service: Any, validator: Any = None, **kwargs: Any) -> None:
        kwargs.setdefault("directory", "ai-context/tasks")
        kwargs.setdefault("current_file", "current-tasks.json")
        kwargs.setdefault("history_directory", "task-history")
        super().__init__(storage_service, "task", validator=validator, **kwargs)

    # ── Queries ──────────────────────────────────────────────────────────

    async def get_tasks_by_status(self, status: str) -> list[dict[str, Any]]:
        return await self.find(lambda t: t.get("status") == status)

    async def get_tasks_by_progress_state(self, progress_state: str) -> list[dict[str, Any]]:
        return await self.find(lambda t: t.get("progress_state") == progress_state)

    async def get_tasks_by_priority(self, priority: int) -> list[dict[str, Any]]:
        return await self.find(lambda t: t.get("priority") == priority)

    async def get_tasks_by_dependency(self, dependency_id: str) -> list[dict[str, Any]]:
        return await self.find(
            lambda t: any(d.get("task_id") == dependency_id for d in t.get("dependencies") or [])
        )

    async def next_task_id(self) -> str:
        """``T###`` one above the highest existing id."""
        entities = await self.get_all()
        numbers = [
            int(t["id"][1:])
            for t in entities.get(self.collection_key, [])
            if isinstance(t.get("id"), str) and _TASK_ID.match(t["id"])
        ]
        return f"T{max(numbers, default=0) + 1:03d}"

    # ── Progress ─────────────────────────────────────────────────────────

    async def update_task_progress(
        self,
        id: str,
        new_state: str,
        custom_percentage: float | None = None,
    ) -> dict[str, Any]:
        """Move a task to ``new_state`` and derive its percentage and status.

        Raises:
            NotFoundError: unknown task
            StateError: unmet dependencies or a disallowed transition
            ValidationError: ``new_state`` is not a progress state
        """
        try:
            task = await self.get_by_id(id)
            if task is None:
                raise NotFoundError(
                    f"task with id {id} not found", context={"entity": "task", "id": id}
                )

            dependency_check = await self.check_dependencies(id)
            if not dependency_check.is_valid:
                raise StateError(
                    ", ".join(dependency_check.errors),
                    context={"id": id, "errors": dependency_check.errors},
                )

            if new_state not in self.progress_states:
                raise ValidationError(f"Invalid progress state: {new_state}")

            current = task.get("progress_state") or "not_started"
            if current != new_state and new_state not in self.state_transitions.get(current, ()):
                raise StateError(
                    f"Transition from {current} to {new_state} is not allowed",
                    context={"id": id, "from": current, "to": new_state},
                )
        except Exception as e:
            return await self._fail(e, "update_task_progress", {"id": id})

        changes = {
            "progress_state": new_state,
            "progress_percentage": (
                custom_percentage if custom_percentage is not None else default_percentage(new_state)
            ),
            "status": _status_for(new_state),
        }
        updated = await self.update(id, changes)
        self._emit(
            "progress_updated",
            {
                "id": id,
                "previousState": current,
                "newState": new_state,
                "percentage": changes["progress_percentage"],
            },
        )
        return updated

    async def check_dependencies(self, task_id: str) -> ValidationResult:
        """Detect dependency cycles and unfinished strong dependencies."""
        entities = await self.get_all()
        tasks = {t.get("id"): t for t in entities.get(self.collection_key, [])}
        errors: list[str] = []
        visited: set[str] = set()
        stack: set[str] = set()

        def has_cycle(current: str) -> bool:
            if current in stack:
                errors.append(f"Circular dependency detected at {current}")
                return True
            if current in visited:
                return False
            visited.add(current)
            stack.add(current)

            node = tasks.get(current)
            if node is None:
                errors.append(f"task {current} not found")
                return False
            for dep in node.get("dependencies") or []:
                if has_cycle(dep.get("task_id")):
                    return True

            stack.discard(current)
            return False

        has_cycle(task_id)

        task = tasks.get(task_id)
        for dep in (task or {}).get("dependencies") or []:
            if dep.get("type") != "strong":
                continue
            dep_task = tasks.get(dep.get("task_id"))
            if dep_task is None:
                errors.append(f"dependency {dep.get('task_id')} not found")
            elif dep_task.get("status") != "completed":
                errors.append(f"strong dependency {dep.get('task_id')} is not completed")

        return ValidationResult.from_errors(list(dict.fromkeys(errors)))

    # ── Git linkage ──────────────────────────────────────────────────────

    async def associate_commit_with_task(self, task_id: str, commit_hash: str) -> dict[str, Any]:
        try:
            task = await self.get_by_id(task_id)
            if task is None:
                raise NotFoundError(
                    f"task with id {task_id} not found",
                    context={"entity": "task", "id": task_id},
                )
        except Exception as e:
            return await self._fail(e, "associate_commit_with_task", {"id": task_id})

        commits = list(task.get("git_commits") or [])
        if commit_hash in commits:
            return task
        commits.append(commit_hash)
        return await self.update(task_id, {"git_commits": commits})

    # ── Hierarchy and focus ──────────────────────────────────────────────

    async def get_task_hierarchy(self) -> dict[str, Any]:
        entities = await self.get_all()
        return entities.get("task_hierarchy") or {"epics": [], "stories": []}

    async def update_task_hierarchy(self, hierarchy: dict[str, Any]) -> dict[str, Any]:
        try:
            validate = getattr(self.validator, "validate_hierarchy", None)
            if validate is not None:
                result = validate(hierarchy)
                if not result.is_valid:
                    raise ValidationError("Invalid task hierarchy", errors=result.errors)

            entities = await self._read_all()
            entities["task_hierarchy"] = hierarchy
            await self._write_all(entities)
        except Exception as e:
            return await self._fail(e, "update_task_hierarchy")
        return hierarchy

    async def get_current_focus(self) -> str | None:
        entities = await self.get_all()
        return entities.get("current_focus")

    async def set_current_focus(self, task_id: str) -> str:
        try:
            entities = await self._read_all()
            if self._find_in(entities, task_id) is None:
                raise NotFoundError(
                    f"task with id {task_id} not found",
                    context={"entity": "task", "id": task_id},
                )
            entities["current_focus"] = task_id
            await self._write_all(entities)
        except Exception as e:
            return await self._fail(e, "set_current_focus", {"id": task_id})
        return task_id
