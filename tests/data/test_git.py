"""Tests for ``knoa.data.git``: git CLI wrapper (subprocess mocked)."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from knoa.core.errors import GitError
from knoa.data.git import GitService


def completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    result = MagicMock()
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


@pytest.fixture
def git(tmp_path, bus) -> GitService:
    return GitService(tmp_path, event_bus=bus)


class TestRunGit:
    @patch("knoa.data.git.subprocess.run")
    def test_success_strips_output_and_emits(self, mock_run, git, bus, tmp_path):
        mock_run.return_value = completed("abc123\n")
        assert git.get_current_commit_hash() == "abc123"

        args, kwargs = mock_run.call_args
        assert args[0][1:] == ["rev-parse", "HEAD"]
        assert kwargs["cwd"] == tmp_path
        executed = [h["data"] for h in bus.get_event_history() if h["event"] == "git:command_executed"]
        assert executed[0]["command"] == "git rev-parse HEAD"

    @patch("knoa.data.git.subprocess.run")
    def test_nonzero_exit_raises(self, mock_run, git, bus):
        mock_run.return_value = completed(returncode=128, stderr="fatal: not a git repository\n")
        with pytest.raises(GitError) as exc_info:
            git.get_current_branch()

        err = exc_info.value
        assert err.message == "Failed to execute git command: git rev-parse --abbrev-ref HEAD"
        assert err.context["returncode"] == 128
        assert err.context["stderr"] == "fatal: not a git repository"
        assert any(h["event"] == "git:command_failed" for h in bus.get_event_history())

    @patch("knoa.data.git.subprocess.run", side_effect=FileNotFoundError("git"))
    def test_missing_executable(self, mock_run, git):
        with pytest.raises(GitError) as exc_info:
            git.get_current_commit_hash()
        assert isinstance(exc_info.value.cause, FileNotFoundError)

    @patch("knoa.data.git.subprocess.run", side_effect=subprocess.TimeoutExpired("git", 30))
    def test_timeout(self, mock_run, git):
        with pytest.raises(GitError):
            git.get_current_commit_hash()

    @patch("knoa.data.git.subprocess.run")
    def test_short_hash(self, mock_run, git):
        mock_run.return_value = completed("abc1234")
        git.get_current_commit_hash(short=True)
        assert mock_run.call_args.args[0][1:] == ["rev-parse", "--short", "HEAD"]

    @patch("knoa.data.git.subprocess.run")
    def test_is_valid_repository(self, mock_run, git):
        mock_run.return_value = completed("true")
        assert git.is_valid_repository() is True
        mock_run.return_value = completed(returncode=128)
        assert git.is_valid_repository() is False


class TestCommits:
    @patch("knoa.data.git.subprocess.run")
    def test_get_commits_between(self, mock_run, git):
        mock_run.return_value = completed(
            "aaa111|aaa|Ada|2026-01-10T10:00:00+00:00|Implement #T001 and T002\n"
            "bbb222|bbb|Ada|2026-01-10T09:00:00+00:00|Fix typo | in docs\n"
            "malformed line\n"
        )
        commits = git.get_commits_between("start")

        assert mock_run.call_args.args[0][-1] == "start..HEAD"
        assert len(commits) == 2
        assert commits[0]["hash"] == "aaa111"
        assert commits[0]["short_hash"] == "aaa"
        assert commits[0]["related_tasks"] == ["T001", "T002"]
        assert commits[1]["message"] == "Fix typo | in docs"
        assert commits[1]["related_tasks"] == []

    @patch("knoa.data.git.subprocess.run")
    def test_no_commits(self, mock_run, git):
        mock_run.return_value = completed("")
        assert git.get_commits_between("a", "b") == []

    @patch("knoa.data.git.subprocess.run")
    def test_changed_files(self, mock_run, git):
        mock_run.return_value = completed("\nA\tsrc/new.py\nM\tsrc/old.py\nR100\tsrc/a.py\nX\tweird\n")
        files = git.get_changed_files_in_commit("abc")
        assert files == [
            {"status": "added", "path": "src/new.py"},
            {"status": "modified", "path": "src/old.py"},
            {"status": "renamed", "path": "src/a.py"},
            {"status": "unknown", "path": "weird"},
        ]

    @patch("knoa.data.git.subprocess.run")
    def test_diff_stats(self, mock_run, git):
        def fake_run(args, **kwargs):
            if args[1] == "diff":
                return completed(" src/a.py | 4 ++--\n 2 files changed, 10 insertions(+), 3 deletions(-)")
            return completed("M\tsrc/a.py\nA\tsrc/b.py")

        mock_run.side_effect = fake_run
        stats = git.get_commit_diff_stats("abc")
        assert stats["files_changed"] == 2
        assert stats["lines_added"] == 10
        assert stats["lines_deleted"] == 3
        assert [f["status"] for f in stats["files"]] == ["modified", "added"]

    @patch("knoa.data.git.subprocess.run")
    def test_diff_stats_single_insertion(self, mock_run, git):
        mock_run.side_effect = [
            completed(" 1 file changed, 1 insertion(+)"),
            completed(""),
        ]
        stats = git.get_commit_diff_stats("abc")
        assert stats == {"files": [], "files_changed": 1, "lines_added": 1, "lines_deleted": 0}


class TestTaskIds:
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Implement T001", ["T001"]),
            ("Refs #T012, #T003 and T012 again", ["T012", "T003"]),
            ("T1 and T0001 are not ids", []),
            ("", []),
            (None, []),
        ],
    )
    def test_extract(self, message, expected):
        assert GitService.extract_task_ids_from_commit_message(message) == expected
