"""Tests for ``knoa.data.session_repository``: handover documents."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from knoa.core.error_handler import ErrorHandler
from knoa.core.errors import GitError, NotFoundError, StorageError, ValidationError
from knoa.data.session_repository import SessionRepository
from knoa.data.validators import SessionValidator
from tests._support.factories import make_session


@pytest.fixture
def sessions(storage, bus, git_service) -> SessionRepository:
    return SessionRepository(
        storage, SessionValidator(), git_service, event_bus=bus, logger=MagicMock()
    )


class TestConstruction:
    def test_requires_validator_and_git(self, storage, git_service):
        with pytest.raises(ValueError):
            SessionRepository(storage, None, git_service)
        with pytest.raises(ValueError):
            SessionRepository(storage, SessionValidator(), None)

    def test_layout(self, sessions, tmp_path):
        assert sessions.current_file == "latest-session.json"
        assert (tmp_path / "ai-context/sessions/session-history").is_dir()


class TestSaveAndRead:
    @pytest.mark.asyncio
    async def test_save_writes_history_and_latest(self, sessions, bus):
        session = make_session("aaa")
        assert await sessions.save_session(session) is True

        assert await sessions.get_latest_session() == session
        assert await sessions.get_session_by_id("aaa") == session
        saved = [h["data"] for h in bus.get_event_history() if h["event"] == "session:saved"]
        assert saved[0]["sessionId"] == "aaa"
        assert saved[0]["isLatest"] is True

    @pytest.mark.asyncio
    async def test_save_not_latest(self, sessions):
        await sessions.save_session(make_session("aaa"))
        await sessions.save_session(make_session("bbb"), is_latest=False)
        latest = await sessions.get_latest_session()
        assert latest["session_handover"]["session_id"] == "aaa"
        assert (await sessions.get_session_by_id("bbb"))["session_handover"]["session_id"] == "bbb"

    @pytest.mark.asyncio
    async def test_save_invalid_session(self, sessions):
        with pytest.raises(ValidationError) as exc_info:
            await sessions.save_session({"session_handover": {"session_id": "x"}})
        assert exc_info.value.message.startswith("Invalid session data")

    @pytest.mark.asyncio
    async def test_missing_session(self, sessions):
        assert await sessions.get_latest_session() is None
        assert await sessions.get_session_by_id("nope") is None

    @pytest.mark.asyncio
    async def test_unreadable_latest_falls_back_to_history(self, sessions, tmp_path):
        await sessions.save_session(make_session("aaa"))
        (tmp_path / "ai-context/sessions/latest-session.json").write_text("{broken")

        found = await sessions.get_session_by_id("aaa")
        assert found["session_handover"]["session_id"] == "aaa"
        assert sessions.logger.warning.call_args.args[0] == "collection_file_corrupt"

    @pytest.mark.asyncio
    async def test_unreadable_latest_that_is_not_corrupt(self, sessions, tmp_path):
        await sessions.save_session(make_session("aaa"))
        sessions.storage.read_json = AsyncMock(
            side_effect=[StorageError("permission denied"), make_session("aaa")]
        )

        found = await sessions.get_session_by_id("aaa")
        assert found["session_handover"]["session_id"] == "aaa"
        assert sessions.logger.warning.call_args.args[0] == "latest_session_unreadable"

    @pytest.mark.asyncio
    async def test_list_sessions_newest_first(self, sessions):
        await sessions.save_session(make_session("old", session_timestamp="2026-01-01T00:00:00Z"))
        await sessions.save_session(make_session("new", session_timestamp="2026-02-01T00:00:00Z"))
        ids = [s["session_handover"]["session_id"] for s in await sessions.list_sessions()]
        assert ids == ["new", "old"]


class TestCreateNewSession:
    @pytest.mark.asyncio
    async def test_first_session(self, sessions, git_service):
        session = await sessions.create_new_session()
        handover = session["session_handover"]

        assert handover["session_id"] == "abc1234def5678"
        assert handover["previous_session_id"] is None
        assert handover["project_id"] == "knoa"
        assert handover["session_start_timestamp"] == handover["session_timestamp"]
        assert handover["git_changes"]["summary"]["lines_added"] == 0
        assert handover["other_changes"] == {"config_changes": [], "external_changes": []}
        assert await sessions.get_latest_session() is None

    @pytest.mark.asyncio
    async def test_carries_over_previous(self, sessions):
        previous = make_session(
            "aaa",
            project_state_summary={"completed_tasks": ["T001"], "current_tasks": ["T002"]},
            current_challenges=[
                {"description": "flaky test", "status": "open"},
                {"description": "old bug", "status": "resolved"},
            ],
            action_items=[{"description": "write docs"}],
            next_session_focus="T002",
        )
        await sessions.save_session(previous)

        handover = (await sessions.create_new_session())["session_handover"]
        assert handover["previous_session_id"] == "aaa"
        assert handover["project_state_summary"]["completed_tasks"] == ["T001"]
        assert handover["project_state_summary"]["blocked_tasks"] == []
        assert [c["description"] for c in handover["current_challenges"]] == ["flaky test"]
        assert handover["action_items"] == [{"description": "write docs"}]
        assert handover["next_session_focus"] == "T002"

    @pytest.mark.asyncio
    async def test_explicit_previous_id(self, sessions):
        await sessions.save_session(make_session("aaa", next_session_focus="A"))
        await sessions.save_session(make_session("bbb", next_session_focus="B"))
        handover = (await sessions.create_new_session("aaa"))["session_handover"]
        assert handover["previous_session_id"] == "aaa"
        assert handover["next_session_focus"] == "A"

    @pytest.mark.asyncio
    async def test_git_failure_wrapped(self, sessions, git_service):
        git_service.get_current_commit_hash.side_effect = GitError("not a repository")
        with pytest.raises(StorageError) as exc_info:
            await sessions.create_new_session()
        assert isinstance(exc_info.value.cause, GitError)
        assert exc_info.value.message.startswith("Failed to create_new_session session")


class TestGitDerived:
    @pytest.fixture
    def commits(self) -> list[dict]:
        return [
            {"hash": "bbbbbbbbbb", "message": "Second T002", "timestamp": "2026-01-10T12:00:00Z", "related_tasks": ["T002"]},
            {"hash": "aaaaaaaaaa", "message": "First T001", "timestamp": "2026-01-10T09:00:00Z", "related_tasks": ["T001"]},
        ]

    @pytest.mark.asyncio
    async def test_change_summary(self, sessions, git_service, commits):
        git_service.get_commit_diff_stats.side_effect = [
            {
                "files": [{"status": "added", "path": "a.py"}, {"status": "modified", "path": "b.py"}],
                "lines_added": 10,
                "lines_deleted": 2,
            },
            GitError("no parent"),
        ]
        summary = await sessions.calculate_change_summary(commits)
        assert summary == {
            "files_added": 1,
            "files_modified": 1,
            "files_deleted": 0,
            "lines_added": 10,
            "lines_deleted": 2,
        }
        assert sessions.logger.warning.call_args.args[0] == "commit_stats_unavailable"

    @pytest.mark.asyncio
    async def test_key_artifacts_deduplicated(self, sessions, git_service, commits):
        git_service.get_changed_files_in_commit.side_effect = [
            [{"status": "modified", "path": "src/a.py"}],
            [{"status": "added", "path": "src/a.py"}, {"status": "added", "path": "src/b.py"}],
        ]
        artifacts = await sessions.get_key_artifact_candidates(commits)
        assert [a["path"] for a in artifacts] == ["src/a.py", "src/b.py"]
        assert artifacts[0]["description"] == "Changed in commit bbbbbbb"
        assert artifacts[0]["git_status"] == "modified"
        assert artifacts[1]["related_tasks"] == ["T001"]
        assert artifacts[0]["importance"] == "medium"

    @pytest.mark.asyncio
    async def test_session_from_commits(self, sessions, git_service, commits):
        git_service.get_commits_between.return_value = commits
        session = await sessions.create_session_from_git_commits("start", "end")
        handover = session["session_handover"]

        git_service.get_commits_between.assert_called_once_with("start", "end")
        assert handover["session_id"] == "end"
        assert handover["session_timestamp"] == "2026-01-10T12:00:00Z"
        assert handover["session_start_timestamp"] == "2026-01-10T09:00:00Z"
        assert len(handover["git_changes"]["commits"]) == 2


class TestStateChanges:
    @pytest.mark.asyncio
    async def test_changes_between_sessions(self, sessions):
        await sessions.save_session(
            make_session(
                "aaa",
                project_state_summary={"current_tasks": ["T001"], "pending_tasks": ["T002"]},
            )
        )
        await sessions.save_session(
            make_session(
                "bbb",
                previous_session_id="aaa",
                session_timestamp="2026-01-11T09:00:00.000Z",
                project_state_summary={
                    "completed_tasks": ["T001"],
                    "pending_tasks": ["T002", "T003"],
                },
            )
        )
        changes = await sessions.get_session_state_changes("aaa", "bbb")
        assert changes["newlyCompletedTasks"] == ["T001"]
        assert changes["newlyAddedTasks"] == ["T003"]
        assert changes["changedStatusTasks"] == [
            {"taskId": "T001", "previousStatus": "in_progress", "currentStatus": "completed"}
        ]

    @pytest.mark.asyncio
    async def test_continuity_problems_only_warn(self, sessions):
        await sessions.save_session(make_session("aaa"))
        await sessions.save_session(make_session("bbb", previous_session_id="zzz"))
        changes = await sessions.get_session_state_changes("aaa", "bbb")
        assert changes["changedStatusTasks"] == []
        assert sessions.logger.warning.call_args.args[0] == "session_state_change_invalid"

    @pytest.mark.asyncio
    async def test_missing_session(self, sessions):
        await sessions.save_session(make_session("aaa"))
        with pytest.raises(NotFoundError) as exc_info:
            await sessions.get_session_state_changes("aaa", "zzz")
        assert exc_info.value.message == "Session not found for state change comparison"


class TestCorruptLatestWithErrorHandler:
    @pytest.fixture
    def handled(self, storage, bus, git_service) -> tuple[SessionRepository, ErrorHandler]:
        handler = ErrorHandler(logger=MagicMock(), event_bus=bus)
        repo = SessionRepository(
            storage,
            SessionValidator(),
            git_service,
            event_bus=bus,
            error_handler=handler,
            logger=MagicMock(),
        )
        return repo, handler

    @pytest.mark.asyncio
    async def test_corrupt_latest_reads_as_missing(self, handled, tmp_path):
        repo, handler = handled
        (tmp_path / "ai-context/sessions/latest-session.json").write_text("{ not json")

        assert await repo.get_latest_session() is None
        assert await repo.get_session_by_id("aaa") is None
        assert handler.get_error_statistics()["total_errors"] == 0

    @pytest.mark.asyncio
    async def test_new_session_after_corrupt_latest(self, handled, tmp_path):
        repo, _ = handled
        (tmp_path / "ai-context/sessions/latest-session.json").write_text("{ not json")

        session = await repo.create_new_session()
        assert session["session_handover"]["session_id"] == "abc1234def5678"
        assert session["session_handover"]["previous_session_id"] is None

    @pytest.mark.asyncio
    async def test_recovery_value_never_returned_as_session(self, handled, git_service):
        repo, handler = handled
        git_service.get_current_commit_hash.side_effect = OSError("git missing")

        with pytest.raises(StorageError):
            await repo.create_new_session()
        assert handler.get_error_statistics()["recovery_success"] == 1

    @pytest.mark.asyncio
    async def test_corrupt_history_file_skipped(self, handled, tmp_path):
        repo, _ = handled
        await repo.save_session(make_session("aaa"))
        (tmp_path / "ai-context/sessions/session-history/session-bbb.json").write_text("[oops")

        ids = [s["session_handover"]["session_id"] for s in await repo.list_sessions()]
        assert ids == ["aaa"]
        assert await repo.get_session_by_id("bbb") is None
