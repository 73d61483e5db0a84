"""
In-memory TTL cache for cross-component reads.

The integration manager keeps the task collection, the latest session and
the pending feedback here after each sync, and drops ``state:<name>`` keys
when the workflow state moves on.

Architecture::

    CacheManager
    ├── get(key)            → value | None   (expired entries are dropped)
    ├── set(key, value)     → evicts the oldest entry when full
    ├── invalidate(pattern) → regex over keys, returns the count
    ├── clear()
    └── get_stats()         → size, maxSize, hitCount, missCount, hitRate

Every operation emits a ``cache:<action>`` event through the bus.

Example::

    cache = CacheManager(event_bus=bus, ttl_ms=60_000)
    cache.set("tasks", tasks)
    cache.get("tasks")
    cache.invalidate(r"^state:")
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from knoa.core.events.helpers import emit_standardized_event
from knoa.core.logging import get_logger

if TYPE_CHECKING:
    from knoa.core.events.bus import EventBus

__all__ = ["CacheManager", "DEFAULT_TTL_MS", "DEFAULT_MAX_SIZE"]

DEFAULT_TTL_MS = 300_000
DEFAULT_MAX_SIZE = 1000


class CacheManager:
    """Bounded key/value cache with per-entry expiry.

    Args:
        event_bus: Receives the ``cache:*`` events; optional.
        logger: structlog logger; defaults to the module logger.
        ttl_ms: Lifetime of an entry when ``set`` is not given one.
        max_size: Entry count at which the oldest entry is evicted.
        clock: Returns the current time in seconds; injectable for tests.
    """

    def __init__(
        self,
        *,
        event_bus: EventBus | None = None,
        logger: Any = None,
        ttl_ms: int = DEFAULT_TTL_MS,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.event_bus = event_bus
        self.logger = logger or get_logger(__name__)
        self.ttl_ms = ttl_ms
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self.hit_count = 0
        self.miss_count = 0

        emit_standardized_event(
            self.event_bus,
            "cache",
            "system_initialized",
            {"ttlMs": ttl_ms, "maxSize": max_size},
        )

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if key not in self._entries:
            return False
        return self._entries[key][1] >= self._now_ms()

    def get(self, key: str) -> Any | None:
        """The cached value, or None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.miss_count += 1
            emit_standardized_event(self.event_bus, "cache", "item_missed", {"key": key})
            return None

        value, expires_at = entry
        if self._now_ms() > expires_at:
            del self._entries[key]
            self.miss_count += 1
            emit_standardized_event(
                self.event_bus, "cache", "item_expired", {"key": key, "ttl": self.ttl_ms}
            )
            return None

        self.hit_count += 1
        emit_standardized_event(self.event_bus, "cache", "item_accessed", {"key": key})
        return value

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        ttl = self.ttl_ms if ttl_ms is None else ttl_ms
        if key not in self._entries and len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            emit_standardized_event(self.event_bus, "cache", "item_evicted", {"key": oldest})

        self._entries[key] = (value, self._now_ms() + ttl)
        emit_standardized_event(self.event_bus, "cache", "item_set", {"key": key, "ttl": ttl})

    def invalidate(self, pattern: str | re.Pattern[str]) -> int:
        """Drop every key matching ``pattern`` (searched, not anchored).

        Returns:
            Number of entries removed; 0 for an invalid pattern
        """
        try:
            regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        except re.error as e:
            self.logger.warning("cache_invalid_pattern", pattern=pattern, error=str(e))
            return 0

        keys = [key for key in self._entries if regex.search(key)]
        for key in keys:
            del self._entries[key]

        if keys:
            emit_standardized_event(
                self.event_bus,
                "cache",
                "items_invalidated",
                {"pattern": regex.pattern, "count": len(keys)},
            )
        return len(keys)

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        if count:
            emit_standardized_event(self.event_bus, "cache", "cleared", {"count": count})

    def get_stats(self) -> dict[str, Any]:
        lookups = self.hit_count + self.miss_count
        return {
            "size": len(self._entries),
            "maxSize": self.max_size,
            "hitCount": self.hit_count,
            "missCount": self.miss_count,
            "hitRate": self.hit_count / lookups if lookups else 0,
        }
