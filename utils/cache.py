"""
TTL cache for metrics reads, owned by the orchestrator.

Constructed once at process start and handed to each cadence run. When a
refresh fails and an expired value is still held, the stale value is
served instead of failing the whole cadence.
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    value: Any
    stored_at: float


class MetricsCache:
    """Keyed async read-through cache with per-call TTLs."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str, ttl_seconds: float) -> Any | None:
        """Return a fresh cached value, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None or self._clock() - entry.stored_at >= ttl_seconds:
            return None
        return entry.value

    def put(self, key: str, value: Any) -> None:
        self._entries[key] = _CacheEntry(value=value, stored_at=self._clock())

    def invalidate(self, key: str | None = None) -> None:
        """Drop one key, or everything when key is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    async def get_or_fetch(
        self,
        key: str,
        ttl_seconds: float,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        cached = self.get(key, ttl_seconds)
        if cached is not None:
            self.hits += 1
            logger.debug(f"Cache hit for '{key}'")
            return cached

        self.misses += 1
        try:
            value = await fetch()
        except Exception as e:
            stale = self._entries.get(key)
            if stale is None:
                raise
            logger.warning(f"Refresh of '{key}' failed ({e}); serving stale value")
            return stale.value

        self.put(key, value)
        return value
