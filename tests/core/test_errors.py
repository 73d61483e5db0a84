"""Tests for ``knoa.core.errors``: typed error hierarchy and helpers."""

from __future__ import annotations

import pytest

from knoa.core.errors import (
    ApplicationError,
    CliError,
    ConfigurationError,
    DataConsistencyError,
    DependencyError,
    ErrorKind,
    ExternalServiceError,
    GitError,
    LockError,
    LockTimeoutError,
    NetworkError,
    NotFoundError,
    StateError,
    StorageError,
    TimeoutError,
    ValidationError,
    get_error_code,
    is_recoverable,
    is_user_facing,
    wrap_error,
)


class TestDefaults:
    @pytest.mark.parametrize(
        "cls,code,recoverable",
        [
            (StateError, "ERR_STATE", False),
            (DataConsistencyError, "ERR_DATA_CONSISTENCY", False),
            (NotFoundError, "ERR_NOT_FOUND", True),
            (StorageError, "ERR_STORAGE", True),
            (GitError, "ERR_GIT", True),
            (NetworkError, "ERR_NETWORK", True),
            (ExternalServiceError, "ERR_EXTERNAL_SERVICE", True),
            (TimeoutError, "ERR_TIMEOUT", True),
            (ConfigurationError, "ERR_CONFIG", False),
            (DependencyError, "ERR_DEPENDENCY", True),
            (CliError, "ERR_CLI", False),
        ],
    )
    def test_code_and_recoverability(self, cls, code, recoverable):
        err = cls("boom")
        assert err.code == code
        assert err.recoverable is recoverable
        assert err.name == cls.__name__
        assert isinstance(err, ApplicationError)

    def test_overrides_per_instance(self):
        err = StorageError("disk", code="ERR_DISK_FULL", recoverable=False)
        assert err.code == "ERR_DISK_FULL"
        assert err.recoverable is False

    def test_kind(self):
        assert ValidationError("x").kind is ErrorKind.INPUT
        assert StateError("x").kind is ErrorKind.STATE


class TestApplicationError:
    def test_cause_is_chained(self):
        cause = OSError("denied")
        err = StorageError("write failed", cause=cause)
        assert err.cause is cause
        assert err.__cause__ is cause

    def test_with_context_merges(self):
        err = StorageError("write failed", context={"a": 1}).with_context(b=2)
        assert err.context == {"a": 1, "b": 2}

    def test_to_dict(self):
        err = NotFoundError("missing", context={"id": "T001"}, cause=KeyError("T001"))
        data = err.to_dict()
        assert data["name"] == "NotFoundError"
        assert data["code"] == "ERR_NOT_FOUND"
        assert data["context"] == {"id": "T001"}
        assert data["cause"]["name"] == "KeyError"
        assert data["timestamp"].endswith("Z")

    def test_describe(self):
        assert StateError("nope").describe() == "[ERR_STATE] StateError: nope"


class TestValidationError:
    def test_errors_appended_to_message(self):
        err = ValidationError("Invalid task data", errors=["title: required", "id: bad"])
        assert err.message == "Invalid task data: title: required, id: bad"
        assert err.errors == ["title: required", "id: bad"]
        assert err.context["errors"] == ["title: required", "id: bad"]

    def test_without_errors(self):
        err = ValidationError("Nothing to update")
        assert err.message == "Nothing to update"
        assert "errors" not in err.context


class TestLockErrors:
    def test_lock_timeout_is_a_timeout(self):
        err = LockTimeoutError("Failed to acquire lock for resource: tasks")
        assert isinstance(err, TimeoutError)
        assert err.code == "ERR_LOCK_TIMEOUT"
        assert err.context["errorType"] == "LockTimeoutError"

    def test_lock_timeout_code_cannot_be_overridden(self):
        err = LockTimeoutError("x", code="ERR_OTHER")
        assert err.code == "ERR_LOCK_TIMEOUT"

    def test_lock_error_default_code(self):
        assert LockError("x").code == "ERR_LOCK_TIMEOUT"


class TestHelpers:
    def test_wrap_plain_exception(self):
        cause = ValueError("bad value")
        err = wrap_error(cause, error_class=StorageError, context={"file": "x.json"})
        assert isinstance(err, StorageError)
        assert err.message == "bad value"
        assert err.cause is cause
        assert err.context == {"file": "x.json"}

    def test_wrap_application_error_merges_context(self):
        original = NotFoundError("missing")
        err = wrap_error(original, context={"component": "Repository"})
        assert err is original
        assert err.context["component"] == "Repository"

    def test_wrap_uses_explicit_message(self):
        err = wrap_error(RuntimeError("inner"), "Outer message")
        assert err.message == "Outer message"

    def test_is_recoverable(self):
        assert is_recoverable(StorageError("x")) is True
        assert is_recoverable(StateError("x")) is False
        assert is_recoverable(RuntimeError("x")) is False

    def test_get_error_code(self):
        assert get_error_code(GitError("x")) == "ERR_GIT"
        assert get_error_code(RuntimeError("x")) == "ERR_UNKNOWN"

    def test_is_user_facing(self):
        assert is_user_facing(ValidationError("x"))
        assert is_user_facing(NotFoundError("x"))
        assert is_user_facing(CliError("x"))
        assert not is_user_facing(StorageError("x"))
        assert not is_user_facing(RuntimeError("x"))
