"""In-memory caches shared across concurrent deliveries.

Both caches are created once per process and handed to the components that need them. Reads never block.
Refreshes for the same key are serialized by a per-key lock. A refresh for another key proceeds independently.
An entry is replaced as a whole, so a reader sees either the previous value or the new one.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass


@dataclass(frozen=True)
class CacheEntry[V]:
    value: V
    expires_at: float


class TTLCache[K: Hashable, V]:
    """A keyed cache whose entries expire after a fixed time to live."""

    ttl: float
    clock: Callable[[], float]

    def __init__(self, ttl: float, clock: Callable[[], float] | None = None):
        self.ttl = ttl
        self.clock = clock or time.time
        self._entries: dict[K, CacheEntry[V]] = {}
        self._locks: dict[K, asyncio.Lock] = {}

    def _lock_for(self, key: K) -> asyncio.Lock:
        if (lock := self._locks.get(key)) is None:
            lock = self._locks.setdefault(key, asyncio.Lock())
        return lock

    def get(self, key: K) -> CacheEntry[V] | None:
        """Return the live entry for the key, if any."""

        entry = self._entries.get(key)

        if entry is None or self.clock() >= entry.expires_at:
            return None

        return entry

    def set(self, key: K, value: V, expires_at: float | None = None) -> CacheEntry[V]:
        entry = CacheEntry(value=value, expires_at=expires_at if expires_at is not None else self.clock() + self.ttl)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: K) -> None:
        _ = self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_refresh(self, key: K, refresh: Callable[[], Awaitable[tuple[V, float | None]]]) -> V:
        """Return the cached value, or call `refresh` to produce `(value, expires_at)` and cache it.

        `expires_at` may be None to use the cache's TTL.
        """

        if entry := self.get(key):
            return entry.value

        async with self._lock_for(key):
            # Another task may have refreshed while we waited
            if entry := self.get(key):
                return entry.value

            value, expires_at = await refresh()

            return self.set(key, value, expires_at=expires_at).value
