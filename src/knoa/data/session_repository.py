"""
Session repository.

Sessions are keyed by the Git commit hash current when they were created.
The latest session lives in ``ai-context/sessions/latest-session.json``;
every saved session is also written to
``session-history/session-<id>.json``.
"""

from __future__ import annotations

import asyncio
from typing import Any

from knoa.core.errors import NotFoundError, ValidationError
from knoa.core.events.helpers import utc_timestamp
from knoa.data.repository import Repository

__all__ = ["SessionRepository"]

_SUMMARY_KEYS = ("completed_tasks", "current_tasks", "pending_tasks", "blocked_tasks")
_STATUS_BY_KEY = {
    "completed_tasks": "completed",
    "current_tasks": "in_progress",
    "pending_tasks": "pending",
    "blocked_tasks": "blocked",
}


def _empty_change_summary() -> dict[str, int]:
    return {
        "files_added": 0,
        "files_modified": 0,
        "files_deleted": 0,
        "lines_added": 0,
        "lines_deleted": 0,
    }


def _status_of(summary: dict[str, Any], task_id: str) -> str | None:
    for key in _SUMMARY_KEYS:
        if task_id in (summary.get(key) or []):
            return _STATUS_BY_KEY[key]
    return None


def _all_ids(summary: dict[str, Any]) -> list[str]:
    return [t for key in _SUMMARY_KEYS for t in summary.get(key) or []]


class SessionRepository(Repository):
    """Session handover documents with Git-derived ids and change summaries."""

    def __init__(
        self,
        storage_service: Any,
        validator: Any,
        git_service: Any,
        *,
        project_id: str = "knoa",
        **kwargs: Any,
    ) -> None:
        if validator is None:
            raise ValueError("SessionRepository requires a validator")
        if git_service is None:
            raise ValueError("SessionRepository requires a git_service")
        kwargs.setdefault("directory", "ai-context/sessions")
        kwargs.setdefault("current_file", "latest-session.json")
        kwargs.setdefault("history_directory", "session-history")
        super().__init__(storage_service, "session", validator=validator, **kwargs)
        self.git_service = git_service
        self.project_id = project_id

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_latest_session(self) -> dict[str, Any] | None:
        """The latest session, or None when the file is missing or corrupt."""
        try:
            latest = await self._read_document(self.directory, self.current_file)
        except Exception as e:
            return await self._fail(e, "get_latest_session", read=True)
        return latest if isinstance(latest, dict) else None

    async def get_session_by_id(self, session_id: str) -> dict[str, Any] | None:
        try:
            latest = await self._read_document(self.directory, self.current_file)
        except Exception as e:
            self.logger.warning(
                "latest_session_unreadable", session_id=session_id, error=str(e)
            )
            latest = None
        if isinstance(latest, dict) and latest.get("session_handover", {}).get("session_id") == session_id:
            return latest

        try:
            found = await self._read_document(self.history_path, f"session-{session_id}.json")
        except Exception as e:
            return await self._fail(e, "get_session_by_id", {"sessionId": session_id}, read=True)
        return found if isinstance(found, dict) else None

    async def list_sessions(self) -> list[dict[str, Any]]:
        """Saved sessions, newest first."""
        try:
            names = await self.storage.list_files(self.history_path, r"^session-.+\.json$")
            sessions = [await self._read_document(self.history_path, n) for n in names]
        except Exception as e:
            return await self._fail(e, "list_sessions", read=True)
        sessions = [s for s in sessions if isinstance(s, dict) and "session_handover" in s]
        sessions.sort(
            key=lambda s: s["session_handover"].get("session_timestamp", ""), reverse=True
        )
        return sessions

    # ── Creation ─────────────────────────────────────────────────────────

    async def create_new_session(self, previous_session_id: str | None = None) -> dict[str, Any]:
        """Build (but do not save) a session that carries over the previous one.

        Task summary, unresolved challenges, action items and the next focus
        are copied from the previous session; the id is the current commit.
        """
        try:
            if previous_session_id:
                previous = await self.get_session_by_id(previous_session_id)
            else:
                previous = await self.get_latest_session()
                if previous:
                    previous_session_id = previous["session_handover"].get("session_id")

            session_id = await asyncio.to_thread(self.git_service.get_current_commit_hash)
            timestamp = utc_timestamp()

            handover: dict[str, Any] = {
                "project_id": self.project_id,
                "session_id": session_id,
                "previous_session_id": previous_session_id or None,
                "session_timestamp": timestamp,
                "session_start_timestamp": timestamp,
                "project_state_summary": {key: [] for key in _SUMMARY_KEYS},
                "key_artifacts": [],
                "git_changes": {"commits": [], "summary": _empty_change_summary()},
                "other_changes": {"config_changes": [], "external_changes": []},
                "current_challenges": [],
                "next_session_focus": "",
                "action_items": [],
            }

            if previous:
                prev = previous["session_handover"]
                handover["project_id"] = prev.get("project_id") or self.project_id
                summary = prev.get("project_state_summary") or {}
                handover["project_state_summary"] = {
                    key: list(summary.get(key) or []) for key in _SUMMARY_KEYS
                }
                handover["current_challenges"] = [
                    c
                    for c in prev.get("current_challenges") or []
                    if c.get("status") not in ("resolved", "wontfix")
                ]
                handover["action_items"] = list(prev.get("action_items") or [])
                handover["next_session_focus"] = prev.get("next_session_focus") or ""

            session = {"session_handover": handover}
            self._validate_session(session, "Generated new session data is invalid")
        except Exception as e:
            return await self._fail(
                e, "create_new_session", {"previousSessionId": previous_session_id}, read=True
            )
        return session

    async def create_session_from_git_commits(self, start: str, end: str) -> dict[str, Any]:
        """A new session describing the commits in ``start..end``."""
        session = await self.create_new_session()
        handover = session["session_handover"]
        try:
            handover["session_id"] = end
            commits = await asyncio.to_thread(self.git_service.get_commits_between, start, end)
            handover["git_changes"] = {
                "commits": commits,
                "summary": await self.calculate_change_summary(commits),
            }
            if commits:
                handover["session_start_timestamp"] = commits[-1]["timestamp"]
                handover["session_timestamp"] = commits[0]["timestamp"]
            handover["key_artifacts"] = await self.get_key_artifact_candidates(commits)
            self._validate_session(session, "Generated session data is invalid")
        except Exception as e:
            return await self._fail(
                e, "create_session_from_git_commits", {"start": start, "end": end}, read=True
            )
        return session

    async def calculate_change_summary(self, commits: list[dict[str, Any]]) -> dict[str, int]:
        """Aggregate added/modified/deleted files and line counts over ``commits``."""
        summary = _empty_change_summary()
        for commit in commits:
            try:
                stats = await asyncio.to_thread(
                    self.git_service.get_commit_diff_stats, commit["hash"]
                )
            except Exception as e:
                self.logger.warning(
                    "commit_stats_unavailable", commit=commit.get("hash"), error=str(e)
                )
                continue
            for file in stats.get("files") or []:
                key = f"files_{file.get('status')}"
                if key in summary:
                    summary[key] += 1
            summary["lines_added"] += stats.get("lines_added") or 0
            summary["lines_deleted"] += stats.get("lines_deleted") or 0
        return summary

    async def get_key_artifact_candidates(
        self, commits: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """One artifact per changed path, first (newest) commit wins."""
        artifacts: list[dict[str, Any]] = []
        seen: set[str] = set()
        for commit in commits:
            try:
                files = await asyncio.to_thread(
                    self.git_service.get_changed_files_in_commit, commit["hash"]
                )
            except Exception as e:
                self.logger.warning(
                    "commit_files_unavailable", commit=commit.get("hash"), error=str(e)
                )
                continue
            for file in files:
                if file["path"] in seen:
                    continue
                seen.add(file["path"])
                artifacts.append(
                    {
                        "path": file["path"],
                        "description": f"Changed in commit {commit['hash'][:7]}",
                        "last_modified": commit.get("timestamp"),
                        "git_status": file.get("status"),
                        "related_tasks": commit.get("related_tasks") or [],
                        "importance": "medium",
                    }
                )
        return artifacts

    # ── Persistence ──────────────────────────────────────────────────────

    async def save_session(self, session: dict[str, Any], is_latest: bool = True) -> bool:
        """Write the session to history and, when ``is_latest``, to the latest file."""
        try:
            self._validate_session(session, "Invalid session data")
            session_id = session["session_handover"]["session_id"]
            await self.storage.write_json(self.history_path, f"session-{session_id}.json", session)
            if is_latest:
                await self.storage.write_json(self.directory, self.current_file, session)
        except Exception as e:
            return await self._fail(e, "save_session")

        self._emit("saved", {"sessionId": session_id, "isLatest": is_latest})
        return True

    def _validate_session(self, session: dict[str, Any], message: str) -> None:
        result = self.validator.validate(session)
        if not result.is_valid:
            raise ValidationError(message, errors=result.errors)

    # ── Comparison ───────────────────────────────────────────────────────

    async def get_session_state_changes(
        self, previous_session_id: str, current_session_id: str
    ) -> dict[str, list[Any]]:
        """Tasks newly completed, newly added, or whose status changed between two sessions."""
        try:
            previous = await self.get_session_by_id(previous_session_id)
            current = await self.get_session_by_id(current_session_id)
            if not previous or not current:
                raise NotFoundError(
                    "Session not found for state change comparison",
                    context={
                        "previousSessionId": previous_session_id,
                        "currentSessionId": current_session_id,
                    },
                )
        except Exception as e:
            return await self._fail(e, "get_session_state_changes", read=True)

        check = getattr(self.validator, "validate_state_changes", None)
        if check is not None:
            result = check(previous, current)
            if not result.is_valid:
                self.logger.warning(
                    "session_state_change_invalid",
                    previous_session_id=previous_session_id,
                    current_session_id=current_session_id,
                    errors=result.errors,
                    warnings=result.warnings,
                )

        prev = previous["session_handover"].get("project_state_summary") or {}
        curr = current["session_handover"].get("project_state_summary") or {}
        prev_ids = _all_ids(prev)
        curr_ids = _all_ids(curr)

        changed = []
        for task_id in curr_ids:
            before = _status_of(prev, task_id)
            after = _status_of(curr, task_id)
            if before is not None and before != after:
                changed.append(
                    {"taskId": task_id, "previousStatus": before, "currentStatus": after}
                )

        return {
            "newlyCompletedTasks": [
                t for t in curr.get("completed_tasks") or [] if t not in (prev.get("completed_tasks") or [])
            ],
            "newlyAddedTasks": [t for t in curr_ids if t not in prev_ids],
            "changedStatusTasks": changed,
        }
