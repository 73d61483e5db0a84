"""
Thin wrapper over the ``git`` CLI.

Every command goes through :meth:`GitService._run_git`, which executes
``git <args>`` in ``repo_path`` and raises :class:`~knoa.core.errors.GitError`
on a non-zero exit, a timeout or a missing executable.

Events:
    git:command_executed   {command}
    git:command_failed     {command, error}
"""

from __future__ import annotations

import re
import shutil
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Any

from knoa.core.errors import GitError
from knoa.core.events.helpers import emit_standardized_event
from knoa.core.logging import get_logger

if TYPE_CHECKING:
    from knoa.core.events.bus import EventBus

__all__ = ["GitService", "TASK_ID_PATTERN", "STATUS_ACTIONS"]

TASK_ID_PATTERN = re.compile(r"#?\b(T\d{3})\b")

STATUS_ACTIONS = {
    "A": "added",
    "M": "modified",
    "D": "deleted",
    "R": "renamed",
    "C": "copied",
    "U": "unmerged",
    "T": "type_changed",
}

_LOG_FORMAT = "%H|%h|%an|%aI|%s"
_STAT_FILES = re.compile(r"(\d+) files? changed")
_STAT_INSERTIONS = re.compile(r"(\d+) insertions?")
_STAT_DELETIONS = re.compile(r"(\d+) deletions?")


class GitService:
    """Read-mostly access to a Git working tree."""

    def __init__(
        self,
        repo_path: str | Path | None = None,
        *,
        event_bus: EventBus | None = None,
        logger: Any = None,
        debug: bool = False,
        timeout: int = 30,
    ) -> None:
        self.repo_path = Path(repo_path) if repo_path is not None else Path.cwd()
        self.event_bus = event_bus
        self.logger = logger or get_logger(__name__)
        self.debug = debug
        self.timeout = timeout

    def _run_git(self, *args: str) -> str:
        command = "git " + " ".join(args)
        if self.debug:
            self.logger.debug("git_command", command=command, cwd=str(self.repo_path))

        git = shutil.which("git") or "git"
        try:
            result = subprocess.run(
                [git, *args],
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self._failed(command, str(e))
            raise GitError(
                f"Failed to execute git command: {command}",
                cause=e,
                context={"command": command},
            ) from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            self._failed(command, stderr)
            raise GitError(
                f"Failed to execute git command: {command}",
                context={"command": command, "returncode": result.returncode, "stderr": stderr},
            )

        emit_standardized_event(self.event_bus, "git", "command_executed", {"command": command})
        return (result.stdout or "").strip()

    def _failed(self, command: str, error: str) -> None:
        self.logger.error("git_command_failed", command=command, error=error)
        emit_standardized_event(
            self.event_bus, "git", "command_failed", {"command": command, "error": error}
        )

    # ── Repository state ─────────────────────────────────────────────────

    def is_valid_repository(self) -> bool:
        try:
            self._run_git("rev-parse", "--is-inside-work-tree")
        except GitError:
            return False
        return True

    def get_current_branch(self) -> str:
        return self._run_git("rev-parse", "--abbrev-ref", "HEAD")

    def get_current_commit_hash(self, short: bool = False) -> str:
        if short:
            return self._run_git("rev-parse", "--short", "HEAD")
        return self._run_git("rev-parse", "HEAD")

    # ── Commits ──────────────────────────────────────────────────────────

    def get_commits_between(self, start: str, end: str = "HEAD") -> list[dict[str, Any]]:
        """Commits in ``start..end`` with the task IDs their subjects mention."""
        output = self._run_git("log", f"--pretty=format:{_LOG_FORMAT}", f"{start}..{end}")
        if not output:
            return []

        commits = []
        for line in output.splitlines():
            parts = line.split("|", 4)
            if len(parts) < 5:
                continue
            commit_hash, short_hash, author, timestamp, subject = parts
            commits.append(
                {
                    "hash": commit_hash,
                    "short_hash": short_hash,
                    "author": author,
                    "timestamp": timestamp,
                    "message": subject,
                    "related_tasks": self.extract_task_ids_from_commit_message(subject),
                }
            )
        return commits

    def get_changed_files_in_commit(self, commit_hash: str = "HEAD") -> list[dict[str, str]]:
        output = self._run_git("show", "--name-status", "--pretty=format:", commit_hash)
        files = []
        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            status, _, path = line.partition("\t")
            files.append({"status": STATUS_ACTIONS.get(status[:1], "unknown"), "path": path})
        return files

    def get_commit_diff_stats(self, commit_hash: str = "HEAD") -> dict[str, Any]:
        """Summary line of ``git diff --stat`` plus the changed files."""
        output = self._run_git("diff", "--stat", f"{commit_hash}^", commit_hash)
        last = output.splitlines()[-1] if output else ""

        def _first(pattern: re.Pattern[str]) -> int:
            match = pattern.search(last)
            return int(match.group(1)) if match else 0

        return {
            "files": self.get_changed_files_in_commit(commit_hash),
            "files_changed": _first(_STAT_FILES),
            "lines_added": _first(_STAT_INSERTIONS),
            "lines_deleted": _first(_STAT_DELETIONS),
        }

    @staticmethod
    def extract_task_ids_from_commit_message(message: str | None) -> list[str]:
        """Bare ``T###`` IDs referenced with or without ``#``, first occurrence order."""
        if not message:
            return []
        return list(dict.fromkeys(TASK_ID_PATTERN.findall(message)))
