"""
Named advisory locks for a single process.

Participants that need cross-entity consistency route through the same
:class:`LockManager` and agree on a resource identifier (``"tasks"``,
``"session:latest"``). Locks are advisory and cooperative; nothing prevents
code that bypasses the manager from touching the resource.

Semantics:
    - at most one lock per resource id
    - a lock is expired when ``now - timestamp > lock_timeout``
    - an expired lock may be taken over by any locker (logged at warning)
    - re-acquisition by the owner refreshes the timestamp
    - only the owner may release

All durations are milliseconds. The manager offers no distributed
guarantees.

Example::

    locks = LockManager(lock_timeout=5000)
    async with locks.lock("tasks", "cli-1234"):
        ...
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from knoa.core.errors import LockError, LockTimeoutError
from knoa.core.logging import get_logger

__all__ = ["LockEntry", "LockManager"]


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class LockEntry:
    """A held lock."""

    resource_id: str
    locker_id: str
    timestamp: float


class LockManager:
    """In-process advisory lock table with expiry and retry."""

    def __init__(
        self,
        *,
        lock_timeout: int = 30000,
        retry_interval: int = 100,
        max_retries: int = 50,
        logger: Any = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.lock_timeout = lock_timeout
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self.logger = logger or get_logger(__name__)
        self._clock = clock or _now_ms
        self._locks: dict[str, LockEntry] = {}

    async def acquire_lock(
        self,
        resource_id: str,
        locker_id: str,
        timeout: int | None = None,
    ) -> bool:
        """Acquire ``resource_id`` for ``locker_id``, retrying until ``timeout`` ms.

        Raises:
            LockTimeoutError: wall clock exceeded ``timeout`` or retries ran out
        """
        deadline = self.lock_timeout if timeout is None else timeout
        started = time.monotonic()
        retries = 0

        while True:
            if self._try_acquire(resource_id, locker_id):
                return True

            retries += 1
            elapsed_ms = (time.monotonic() - started) * 1000
            if elapsed_ms >= deadline or retries >= self.max_retries:
                break
            await asyncio.sleep(self.retry_interval / 1000)

        holder = self._locks.get(resource_id)
        raise LockTimeoutError(
            f"Failed to acquire lock for resource: {resource_id}",
            context={
                "resourceId": resource_id,
                "lockerId": locker_id,
                "timeout": deadline,
                "heldBy": holder.locker_id if holder else None,
                "retries": retries,
            },
        )

    def _try_acquire(self, resource_id: str, locker_id: str) -> bool:
        now = self._clock()
        current = self._locks.get(resource_id)

        if current is None:
            self._locks[resource_id] = LockEntry(resource_id, locker_id, now)
            return True

        if now - current.timestamp > self.lock_timeout:
            self.logger.warning(
                "lock_expired_overwritten",
                resource_id=resource_id,
                previous_locker=current.locker_id,
                new_locker=locker_id,
                age_ms=now - current.timestamp,
            )
            self._locks[resource_id] = LockEntry(resource_id, locker_id, now)
            return True

        if current.locker_id == locker_id:
            current.timestamp = now
            return True

        return False

    def release_lock(self, resource_id: str, locker_id: str) -> bool:
        """Release a lock held by ``locker_id``.

        Raises:
            LockError: the lock is held by another locker
        """
        current = self._locks.get(resource_id)
        if current is None:
            self.logger.debug(
                "lock_release_not_held", resource_id=resource_id, locker_id=locker_id
            )
            return True

        if current.locker_id != locker_id:
            self.logger.error(
                "lock_release_denied",
                resource_id=resource_id,
                locker_id=locker_id,
                owner=current.locker_id,
            )
            raise LockError(
                f"Lock on {resource_id} is held by another locker",
                code="ERR_LOCK_NOT_OWNER",
                recoverable=False,
                context={
                    "resourceId": resource_id,
                    "lockerId": locker_id,
                    "ownerId": current.locker_id,
                },
            )

        del self._locks[resource_id]
        return True

    def is_locked(self, resource_id: str) -> bool:
        """True when a non-expired lock exists for ``resource_id``."""
        current = self._locks.get(resource_id)
        if current is None:
            return False
        return self._clock() - current.timestamp <= self.lock_timeout

    def get_lock_status(self) -> dict[str, dict[str, Any]]:
        """Snapshot ``{resource_id: {lockerId, timestamp, age, isExpired}}``."""
        now = self._clock()
        status: dict[str, dict[str, Any]] = {}
        for resource_id, entry in self._locks.items():
            age = now - entry.timestamp
            status[resource_id] = {
                "lockerId": entry.locker_id,
                "timestamp": entry.timestamp,
                "age": age,
                "isExpired": age > self.lock_timeout,
            }
        return status

    @asynccontextmanager
    async def lock(
        self,
        resource_id: str,
        locker_id: str,
        timeout: int | None = None,
    ) -> AsyncIterator[None]:
        """Hold ``resource_id`` for the duration of an ``async with`` block."""
        await self.acquire_lock(resource_id, locker_id, timeout)
        try:
            yield
        finally:
            self.release_lock(resource_id, locker_id)
