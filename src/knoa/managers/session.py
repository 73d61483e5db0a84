"""
Session lifecycle: start, end and the Markdown handover document.

Ending a session collects the commits made since it started and writes
``ai-context/sessions/session-handover.md`` for whoever picks up next.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from knoa.core.errors import GitError, NotFoundError
from knoa.core.events.helpers import emit_standardized_event, utc_timestamp
from knoa.core.logging import get_logger

if TYPE_CHECKING:
    from knoa.core.events.bus import EventBus
    from knoa.data.git import GitService
    from knoa.data.session_repository import SessionRepository
    from knoa.data.storage import StorageService
    from knoa.data.task_repository import TaskRepository
    from knoa.managers.state import StateManager

__all__ = ["SessionManager", "HANDOVER_FILENAME", "render_handover_markdown", "summarize_tasks"]

HANDOVER_FILENAME = "session-handover.md"

_SUMMARY_BY_STATUS = {
    "completed": "completed_tasks",
    "in_progress": "current_tasks",
    "pending": "pending_tasks",
    "not_started": "pending_tasks",
    "blocked": "blocked_tasks",
}


def summarize_tasks(tasks: list[dict[str, Any]]) -> dict[str, list[str]]:
    """Bucket task ids by status into a project state summary."""
    summary: dict[str, list[str]] = {
        "completed_tasks": [],
        "current_tasks": [],
        "pending_tasks": [],
        "blocked_tasks": [],
    }
    for task in tasks:
        key = _SUMMARY_BY_STATUS.get(task.get("status", ""))
        if key and task.get("id"):
            summary[key].append(task["id"])
    return summary


def _bullets(items: list[str], empty: str = "_None_") -> list[str]:
    return [f"- {item}" for item in items] if items else [empty]


def render_handover_markdown(session: dict[str, Any]) -> str:
    handover = session["session_handover"]
    summary = handover.get("project_state_summary") or {}
    git_changes = handover.get("git_changes") or {}
    changes = git_changes.get("summary") or {}

    lines = [
        "# Session Handover",
        "",
        f"- **Project:** {handover.get('project_id')}",
        f"- **Session:** {handover.get('session_id')}",
        f"- **Previous session:** {handover.get('previous_session_id') or '-'}",
        f"- **Started:** {handover.get('session_start_timestamp') or handover.get('session_timestamp')}",
        f"- **Ended:** {handover.get('session_end_timestamp') or '-'}",
        "",
        "## Project State",
        "",
    ]
    for title, key in (
        ("Completed", "completed_tasks"),
        ("In progress", "current_tasks"),
        ("Pending", "pending_tasks"),
        ("Blocked", "blocked_tasks"),
    ):
        lines.append(f"**{title}:** {', '.join(summary.get(key) or []) or '-'}")
    lines.append("")

    lines += ["## Git Changes", ""]
    lines.append(
        f"{changes.get('files_added', 0)} added, {changes.get('files_modified', 0)} modified, "
        f"{changes.get('files_deleted', 0)} deleted "
        f"(+{changes.get('lines_added', 0)} / -{changes.get('lines_deleted', 0)} lines)"
    )
    lines.append("")
    lines += _bullets(
        [f"`{c.get('short_hash') or c.get('hash', '')[:7]}` {c.get('message', '')}"
         for c in git_changes.get("commits") or []],
        "_No commits_",
    )
    lines.append("")

    lines += ["## Key Artifacts", ""]
    lines += _bullets(
        [f"`{a.get('path')}` - {a.get('description')}" for a in handover.get("key_artifacts") or []]
    )
    lines.append("")

    lines += ["## Current Challenges", ""]
    lines += _bullets([c.get("description", "") for c in handover.get("current_challenges") or []])
    lines.append("")

    lines += ["## Next Session Focus", "", handover.get("next_session_focus") or "_Not set_", ""]

    lines += ["## Action Items", ""]
    lines += _bullets([a.get("description", "") for a in handover.get("action_items") or []])
    lines.append("")
    return "\n".join(lines)


class SessionManager:
    """Starts and ends work sessions."""

    def __init__(
        self,
        session_repository: SessionRepository,
        task_repository: TaskRepository,
        git_service: GitService,
        storage_service: StorageService,
        *,
        event_bus: EventBus | None = None,
        state_manager: StateManager | None = None,
        logger: Any = None,
    ) -> None:
        self.session_repository = session_repository
        self.task_repository = task_repository
        self.git_service = git_service
        self.storage = storage_service
        self.state_manager = state_manager
        self.event_bus = event_bus
        self.logger = logger or get_logger(__name__)

    async def start_session(self, previous_session_id: str | None = None) -> dict[str, Any]:
        session = await self.session_repository.create_new_session(previous_session_id)
        handover = session["session_handover"]

        entities = await self.task_repository.get_all()
        handover["project_state_summary"] = summarize_tasks(entities.get("tasks", []))
        focus = entities.get("current_focus")
        if focus and not handover.get("next_session_focus"):
            handover["next_session_focus"] = focus

        await self.session_repository.save_session(session)
        emit_standardized_event(
            self.event_bus,
            "session",
            "started",
            {
                "sessionId": handover["session_id"],
                "previousSessionId": handover.get("previous_session_id"),
            },
        )
        if self.state_manager is not None:
            self.state_manager.advance("session_started", {"sessionId": handover["session_id"]})
        self.logger.info("session_started", session_id=handover["session_id"])
        return session

    async def end_session(self, session_id: str | None = None) -> dict[str, Any]:
        """Close a session (the latest by default) and write the handover document.

        Returns the saved session plus ``handover_document`` and ``handover_path``.
        """
        if session_id:
            session = await self.session_repository.get_session_by_id(session_id)
        else:
            session = await self.session_repository.get_latest_session()
        if not session:
            raise NotFoundError(
                f"Session {session_id} not found" if session_id else "No active session",
                context={"sessionId": session_id},
            )

        handover = session["session_handover"]
        try:
            commits = await asyncio.to_thread(
                self.git_service.get_commits_between, handover["session_id"], "HEAD"
            )
        except GitError as e:
            self.logger.warning(
                "session_commits_unavailable", session_id=handover["session_id"], error=str(e)
            )
            commits = []

        handover["session_end_timestamp"] = utc_timestamp()
        handover["git_changes"] = {
            "commits": commits,
            "summary": await self.session_repository.calculate_change_summary(commits),
        }
        known = {a.get("path") for a in handover.get("key_artifacts") or []}
        handover["key_artifacts"] = list(handover.get("key_artifacts") or []) + [
            a
            for a in await self.session_repository.get_key_artifact_candidates(commits)
            if a["path"] not in known
        ]

        entities = await self.task_repository.get_all()
        handover["project_state_summary"] = summarize_tasks(entities.get("tasks", []))

        await self.session_repository.save_session(session)

        document = render_handover_markdown(session)
        directory = self.session_repository.directory
        await self.storage.write_text(directory, HANDOVER_FILENAME, document)

        emit_standardized_event(
            self.event_bus,
            "session",
            "ended",
            {"sessionId": handover["session_id"], "commitCount": len(commits)},
        )
        if self.state_manager is not None:
            self.state_manager.advance("session_ended", {"sessionId": handover["session_id"]})
        self.logger.info(
            "session_ended", session_id=handover["session_id"], commit_count=len(commits)
        )
        return {
            **session,
            "handover_document": document,
            "handover_path": str(self.storage.get_file_path(directory, HANDOVER_FILENAME)),
        }

    async def list_sessions(self) -> list[dict[str, Any]]:
        return await self.session_repository.list_sessions()

    async def get_latest_session(self) -> dict[str, Any] | None:
        return await self.session_repository.get_latest_session()

    async def get_session(self, session_id: str) -> dict[str, Any]:
        session = await self.session_repository.get_session_by_id(session_id)
        if not session:
            raise NotFoundError(
                f"Session {session_id} not found", context={"sessionId": session_id}
            )
        return session
