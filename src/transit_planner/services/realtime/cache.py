"""Time-to-live cache for live feed snapshots."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    captured_at: datetime
    ttl_sec: int

    @property
    def expires_at(self) -> datetime:
        return self.captured_at + timedelta(seconds=self.ttl_sec)

    def is_fresh(self, now: datetime) -> bool:
        """Fresh through ``captured_at + ttl`` inclusive."""
        return now <= self.expires_at


class TtlCache(Generic[T]):
    """Keyed entries with a fixed TTL.

    Staleness depends only on the ``now`` passed in, never on a wall clock
    read inside the cache. Each key has a lock so concurrent requests for
    the same expired feed trigger a single refresh.
    """

    def __init__(self, ttl_sec: int) -> None:
        self.ttl_sec = ttl_sec
        self._entries: dict[str, CacheEntry[T]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str, now: datetime) -> Optional[CacheEntry[T]]:
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(now):
            return None
        return entry

    def put(self, key: str, value: T, captured_at: datetime) -> CacheEntry[T]:
        entry = CacheEntry(value=value, captured_at=captured_at, ttl_sec=self.ttl_sec)
        self._entries[key] = entry
        return entry

    def lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()
