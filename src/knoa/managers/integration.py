"""
Cross-component views: workflow status, reports and commit synchronization.

Report types
------------
task_summary       tasks by status and progress state
session_summary    the latest session and recent history
feedback_summary   pending feedback and its statistics
workflow_status    the combined status view

A registered ``report`` plugin gets the first chance to render any report;
when it returns None the built-in Markdown renderer is used.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import TYPE_CHECKING, Any

from knoa.core.errors import ValidationError
from knoa.core.events.helpers import emit_standardized_event, generate_request_id, utc_timestamp
from knoa.core.logging import get_logger
from knoa.managers.state import WorkflowState

if TYPE_CHECKING:
    from knoa.core.cache import CacheManager
    from knoa.core.events.bus import EventBus
    from knoa.core.locks import LockManager
    from knoa.core.plugins import PluginManager
    from knoa.data.feedback_repository import FeedbackRepository
    from knoa.data.git import GitService
    from knoa.data.session_repository import SessionRepository
    from knoa.data.task_repository import TaskRepository
    from knoa.managers.state import StateManager

__all__ = ["IntegrationManager", "REPORT_TYPES"]

REPORT_TYPES = ("task_summary", "session_summary", "feedback_summary", "workflow_status")
SYNC_RESOURCE = "sync:components"


class IntegrationManager:
    """Read-mostly facade over the task, session and feedback repositories."""

    def __init__(
        self,
        task_repository: TaskRepository,
        session_repository: SessionRepository,
        feedback_repository: FeedbackRepository,
        git_service: GitService,
        *,
        lock_manager: LockManager,
        plugin_manager: PluginManager | None = None,
        state_manager: StateManager | None = None,
        cache_manager: CacheManager | None = None,
        event_bus: EventBus | None = None,
        logger: Any = None,
    ) -> None:
        self.task_repository = task_repository
        self.session_repository = session_repository
        self.feedback_repository = feedback_repository
        self.git_service = git_service
        self.lock_manager = lock_manager
        self.plugin_manager = plugin_manager
        self.state_manager = state_manager
        self.cache_manager = cache_manager
        self.event_bus = event_bus
        self.logger = logger or get_logger(__name__)
        if state_manager is not None:
            self._track_workflow_state(state_manager)

    def _track_workflow_state(self, states: StateManager) -> None:
        if states.get_current_state() == WorkflowState.UNINITIALIZED.value:
            states.transition_to(WorkflowState.INITIALIZED, {"component": "integration"})
        states.register_state_change_listener(self._on_state_changed)

    def _on_state_changed(self, previous: str, new: str, metadata: dict[str, Any]) -> None:
        self.logger.info("workflow_state_changed", previous_state=previous, new_state=new)
        if self.cache_manager is not None:
            self.cache_manager.invalidate(f"^state:{previous}$")

    # ── Status ───────────────────────────────────────────────────────────

    async def get_workflow_status(self) -> dict[str, Any]:
        entities = await self.task_repository.get_all()
        tasks = entities.get("tasks", [])
        latest = await self.session_repository.get_latest_session()
        pending = await self.feedback_repository.get_pending_feedback()

        session = None
        if latest:
            handover = latest["session_handover"]
            session = {
                "session_id": handover.get("session_id"),
                "session_timestamp": handover.get("session_timestamp"),
                "ended": bool(handover.get("session_end_timestamp")),
            }

        return {
            "state": self.state_manager.get_current_state() if self.state_manager else None,
            "tasks": {
                "total": len(tasks),
                "by_status": dict(Counter(t.get("status", "unknown") for t in tasks)),
                "by_progress_state": dict(
                    Counter(t.get("progress_state", "not_started") for t in tasks)
                ),
            },
            "current_focus": entities.get("current_focus"),
            "session": session,
            "pending_feedback": len(pending),
            "cache": self.cache_manager.get_stats() if self.cache_manager else None,
            "timestamp": utc_timestamp(),
        }

    # ── Reports ──────────────────────────────────────────────────────────

    async def generate_report(self, report_type: str = "workflow_status") -> str:
        if report_type not in REPORT_TYPES:
            raise ValidationError(
                f"Unknown report type: {report_type}",
                errors=[f"report_type must be one of {', '.join(REPORT_TYPES)}"],
            )

        data = await self._report_data(report_type)
        if self.plugin_manager is not None and self.plugin_manager.has_plugin("report"):
            rendered = await self.plugin_manager.invoke_plugin(
                "report", "generateReport", report_type, data
            )
            if rendered is not None:
                return rendered

        report = _RENDERERS[report_type](data)
        emit_standardized_event(
            self.event_bus, "integration", "report_generated", {"reportType": report_type}
        )
        return report

    async def _report_data(self, report_type: str) -> dict[str, Any]:
        if report_type == "task_summary":
            entities = await self.task_repository.get_all()
            return {"tasks": entities.get("tasks", []), "current_focus": entities.get("current_focus")}
        if report_type == "session_summary":
            return {
                "latest": await self.session_repository.get_latest_session(),
                "sessions": await self.session_repository.list_sessions(),
            }
        if report_type == "feedback_summary":
            return {
                "pending": await self.feedback_repository.get_pending_feedback(),
                "stats": await self.feedback_repository.get_feedback_stats(),
            }
        return await self.get_workflow_status()

    # ── Sync ─────────────────────────────────────────────────────────────

    async def sync_components(self, since: str | None = None) -> dict[str, Any]:
        """Link every ``#T###`` mentioned in commits after ``since`` to its task.

        ``since`` defaults to the latest session's commit.
        """
        start = since
        if not start:
            latest = await self.session_repository.get_latest_session()
            start = latest["session_handover"]["session_id"] if latest else None
        if not start:
            raise ValidationError(
                "No starting commit for sync",
                errors=["pass a starting commit or start a session first"],
            )

        locker_id = f"integration-manager-{generate_request_id()}"
        linked: list[dict[str, str]] = []
        unknown: list[str] = []
        async with self.lock_manager.lock(SYNC_RESOURCE, locker_id):
            commits = await asyncio.to_thread(self.git_service.get_commits_between, start, "HEAD")
            for commit in commits:
                for task_id in commit.get("related_tasks") or []:
                    if await self.task_repository.get_by_id(task_id) is None:
                        if task_id not in unknown:
                            unknown.append(task_id)
                        continue
                    await self.task_repository.associate_commit_with_task(task_id, commit["hash"])
                    linked.append({"taskId": task_id, "commit": commit["hash"]})
            await self._refresh_cache()

        if unknown:
            self.logger.warning("sync_unknown_tasks", task_ids=unknown)
        result = {"commits": len(commits), "linked": linked, "unknown_tasks": unknown}
        emit_standardized_event(
            self.event_bus,
            "integration",
            "components_synced",
            {"commits": len(commits), "linked": len(linked)},
        )
        return result

    async def _refresh_cache(self) -> None:
        """Cache the task collection, latest session and pending feedback."""
        if self.cache_manager is None:
            return
        self.cache_manager.set("tasks", await self.task_repository.get_all())
        latest = await self.session_repository.get_latest_session()
        if latest:
            self.cache_manager.set("latest-session", latest)
        pending = await self.feedback_repository.get_pending_feedback()
        if pending:
            self.cache_manager.set("pending-feedback", pending)


# ── Markdown renderers ───────────────────────────────────────────────────


def _render_task_summary(data: dict[str, Any]) -> str:
    tasks = data["tasks"]
    lines = ["# Task Summary", "", f"Total tasks: {len(tasks)}", ""]
    if data.get("current_focus"):
        lines += [f"Current focus: {data['current_focus']}", ""]
    lines += ["| ID | Title | Status | Progress | Priority |", "|---|---|---|---|---|"]
    for task in sorted(tasks, key=lambda t: t.get("id", "")):
        lines.append(
            f"| {task.get('id')} | {task.get('title')} | {task.get('status')} "
            f"| {task.get('progress_state', 'not_started')} ({task.get('progress_percentage', 0)}%) "
            f"| {task.get('priority')} |"
        )
    return "\n".join(lines) + "\n"


def _render_session_summary(data: dict[str, Any]) -> str:
    lines = ["# Session Summary", ""]
    latest = data.get("latest")
    if not latest:
        return "\n".join(lines + ["No sessions recorded."]) + "\n"

    handover = latest["session_handover"]
    summary = handover.get("project_state_summary") or {}
    lines += [
        f"Latest session: {handover.get('session_id')} ({handover.get('session_timestamp')})",
        "",
        f"- Completed: {len(summary.get('completed_tasks') or [])}",
        f"- In progress: {len(summary.get('current_tasks') or [])}",
        f"- Pending: {len(summary.get('pending_tasks') or [])}",
        f"- Blocked: {len(summary.get('blocked_tasks') or [])}",
        "",
        f"Recorded sessions: {len(data.get('sessions') or [])}",
    ]
    return "\n".join(lines) + "\n"


def _render_feedback_summary(data: dict[str, Any]) -> str:
    stats = data["stats"]
    lines = [
        "# Feedback Summary",
        "",
        f"Total: {stats['total']} (pending {stats['pending']}, resolved {stats['history']})",
        "",
    ]
    for status, count in stats["status_counts"].items():
        lines.append(f"- {status}: {count}")
    lines.append("")
    for feedback in data["pending"]:
        loop = feedback["feedback_loop"]
        lines.append(
            f"- {feedback['feedback_id']} [{loop.get('status')}] task {loop.get('task_id')}, "
            f"{len(loop.get('feedback_items') or [])} item(s)"
        )
    return "\n".join(lines) + "\n"


def _render_workflow_status(data: dict[str, Any]) -> str:
    tasks = data["tasks"]
    session = data.get("session")
    lines = [
        "# Workflow Status",
        "",
        f"State: {data.get('state') or '-'}",
        f"Tasks: {tasks['total']}",
    ]
    for status, count in sorted(tasks["by_status"].items()):
        lines.append(f"- {status}: {count}")
    lines += [
        "",
        f"Current focus: {data.get('current_focus') or '-'}",
        f"Latest session: {session['session_id'] if session else '-'}",
        f"Pending feedback: {data['pending_feedback']}",
    ]
    return "\n".join(lines) + "\n"


_RENDERERS = {
    "task_summary": _render_task_summary,
    "session_summary": _render_session_summary,
    "feedback_summary": _render_feedback_summary,
    "workflow_status": _render_workflow_status,
}
