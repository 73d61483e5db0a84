"""
Feedback collection from test runs.

``collect_feedback`` runs the task's tests (through a registered ``ci``
plugin when there is one, otherwise as a subprocess), turns the outcome
into a feedback loop and stores it as pending feedback.
"""

from __future__ import annotations

import asyncio
import re
import shlex
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Any

from knoa.core.errors import ExternalServiceError, NotFoundError
from knoa.core.events.helpers import emit_standardized_event, utc_timestamp
from knoa.core.logging import get_logger

if TYPE_CHECKING:
    from knoa.core.events.bus import EventBus
    from knoa.core.plugins import PluginManager
    from knoa.data.feedback_repository import FeedbackRepository
    from knoa.data.task_repository import TaskRepository
    from knoa.managers.state import StateManager

__all__ = ["FeedbackManager", "parse_test_output"]

_FAILED_TEST = re.compile(r"^FAILED\s+(\S+)", re.MULTILINE)
_COUNT = re.compile(r"(\d+)\s+(passed|failed|error|errors)\b")


def parse_test_output(output: str, returncode: int) -> dict[str, Any]:
    """Extract pass/fail counts and failing test ids from pytest-style output."""
    counts = {"passed": 0, "failed": 0}
    for number, label in _COUNT.findall(output):
        key = "passed" if label == "passed" else "failed"
        counts[key] += int(number)

    failed_tests = _FAILED_TEST.findall(output)
    if returncode != 0 and counts["failed"] == 0:
        counts["failed"] = max(1, len(failed_tests))

    total = counts["passed"] + counts["failed"]
    if total:
        success_rate = round(counts["passed"] / total * 100, 1)
    else:
        success_rate = 100.0 if returncode == 0 else 0.0

    return {
        "passed": counts["passed"],
        "failed": counts["failed"],
        "failed_tests": failed_tests,
        "success_rate": success_rate,
        "returncode": returncode,
    }


def _verification_status(results: dict[str, Any]) -> str:
    if not results.get("failed"):
        return "passed"
    if results.get("passed"):
        return "partial"
    return "failed"


class FeedbackManager:
    """Collects, prioritizes and resolves feedback for tasks."""

    def __init__(
        self,
        feedback_repository: FeedbackRepository,
        task_repository: TaskRepository,
        *,
        plugin_manager: PluginManager | None = None,
        state_manager: StateManager | None = None,
        event_bus: EventBus | None = None,
        logger: Any = None,
        base_path: Path | None = None,
        default_test_command: str = "pytest",
        environment: str = "development",
        timeout: float = 600,
    ) -> None:
        self.feedback_repository = feedback_repository
        self.task_repository = task_repository
        self.plugin_manager = plugin_manager
        self.state_manager = state_manager
        self.event_bus = event_bus
        self.logger = logger or get_logger(__name__)
        self.base_path = Path(base_path) if base_path else Path.cwd()
        self.default_test_command = default_test_command
        self.environment = environment
        self.timeout = timeout

    # ── Collection ───────────────────────────────────────────────────────

    async def collect_feedback(
        self, task_id: str, test_command: str | None = None
    ) -> dict[str, Any]:
        if await self.task_repository.get_by_id(task_id) is None:
            raise NotFoundError(f"task with id {task_id} not found", context={"id": task_id})

        command = test_command or self.default_test_command
        results = await self._run_tests(task_id, command)
        timestamp = utc_timestamp()

        pending = await self.feedback_repository.get_feedback_by_task_id(task_id)
        if pending:
            feedback_id = pending[0]["feedback_id"]
            attempt = pending[0]["feedback_loop"].get("implementation_attempt", 1)
        else:
            history = await self.feedback_repository.get_feedback_history_by_task_id(task_id)
            attempt = len(history) + 1
            feedback_id = f"FB-{task_id}-{attempt}"

        feedback = {
            "feedback_id": feedback_id,
            "timestamp": timestamp,
            "feedback_loop": {
                "task_id": task_id,
                "implementation_attempt": attempt,
                "test_execution": {
                    "command": command,
                    "timestamp": timestamp,
                    "environment": self.environment,
                },
                "verification_results": {
                    "status": _verification_status(results),
                    "timestamp": timestamp,
                    "passed": results.get("passed", 0),
                    "failed": results.get("failed", 0),
                },
                "feedback_items": [
                    {"description": f"Test failed: {name}", "type": "bug", "priority": "high"}
                    for name in results.get("failed_tests") or []
                ],
                "test_results": {
                    "success_rate": results.get("success_rate", 0),
                    "failed_tests": results.get("failed_tests") or [],
                },
                "status": "open",
                "feedback_type": "functional",
            },
        }
        feedback["feedback_loop"]["priority"] = self.feedback_repository.calculate_priority(feedback)

        await self.feedback_repository.save_feedback(feedback)
        emit_standardized_event(
            self.event_bus,
            "feedback",
            "collected",
            {
                "feedbackId": feedback_id,
                "taskId": task_id,
                "status": feedback["feedback_loop"]["verification_results"]["status"],
                "priority": feedback["feedback_loop"]["priority"],
            },
        )
        if self.state_manager is not None:
            self.state_manager.advance(
                "feedback_collected", {"feedbackId": feedback_id, "taskId": task_id}
            )
        self.logger.info(
            "feedback_collected",
            feedback_id=feedback_id,
            task_id=task_id,
            success_rate=results.get("success_rate"),
        )
        return feedback

    async def _run_tests(self, task_id: str, command: str) -> dict[str, Any]:
        if self.plugin_manager is not None and self.plugin_manager.has_plugin("ci"):
            results = await self.plugin_manager.invoke_plugin("ci", "runTests", task_id, command)
            if results is not None:
                return results
        return await asyncio.to_thread(self._run_command, command)

    def _run_command(self, command: str) -> dict[str, Any]:
        try:
            proc = subprocess.run(
                shlex.split(command),
                cwd=self.base_path,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ExternalServiceError(
                f"Test command failed to run: {command}",
                cause=e,
                context={"command": command},
            ) from e
        return parse_test_output(proc.stdout + proc.stderr, proc.returncode)

    # ── Resolution and status ────────────────────────────────────────────

    async def resolve_feedback(
        self, feedback_id: str, resolution_details: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        feedback = await self.feedback_repository.update_feedback_status(
            feedback_id, "resolved", resolution_details
        )
        await self.feedback_repository.move_feedback_to_history(feedback)
        emit_standardized_event(
            self.event_bus,
            "feedback",
            "resolved",
            {"feedbackId": feedback_id, "taskId": feedback["feedback_loop"]["task_id"]},
        )
        return feedback

    async def get_pending_feedback(self) -> list[dict[str, Any]]:
        return await self.feedback_repository.get_pending_feedback()

    async def get_feedback_status(self, task_id: str) -> dict[str, Any]:
        pending = await self.feedback_repository.get_feedback_by_task_id(task_id)
        history = await self.feedback_repository.get_feedback_history_by_task_id(task_id)
        return {
            "taskId": task_id,
            "pending": [
                {
                    "feedback_id": f["feedback_id"],
                    "status": f["feedback_loop"].get("status"),
                    "priority": self.feedback_repository.calculate_priority(f),
                }
                for f in pending
            ],
            "history_count": len(history),
            "latest_status": (
                pending[0]["feedback_loop"].get("status")
                if pending
                else (history[0]["feedback_loop"].get("status") if history else None)
            ),
        }

    async def prioritize_feedback(self, task_id: str | None = None) -> list[dict[str, Any]]:
        """Pending feedback (optionally for one task), highest priority first."""
        pending = await self.feedback_repository.get_pending_feedback()
        if task_id:
            pending = [f for f in pending if f["feedback_loop"].get("task_id") == task_id]
        ranked = [
            {
                "feedback_id": f["feedback_id"],
                "task_id": f["feedback_loop"].get("task_id"),
                "priority": self.feedback_repository.calculate_priority(f),
            }
            for f in pending
        ]
        ranked.sort(key=lambda item: item["priority"], reverse=True)
        return ranked
