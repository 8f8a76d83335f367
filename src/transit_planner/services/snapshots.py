"""Process-wide holders for immutable snapshots with atomic swap-on-publish.

Readers call :meth:`SnapshotStore.current` once per request and keep the
returned object for the whole request; a concurrent publish never changes
what an in-flight request sees.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Generic, Optional, TypeVar

from transit_planner.logging import get_logger

if TYPE_CHECKING:
    from transit_planner.models.reliability import ReliabilitySnapshot
    from transit_planner.services.schedule.index import ScheduleIndex

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Published(Generic[T]):
    value: T
    version: str
    published_at: datetime


class SnapshotStore(Generic[T]):
    """Holds the current published value of one kind of snapshot."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._current: Optional[Published[T]] = None
        self._lock = threading.Lock()

    def current(self) -> Optional[T]:
        published = self._current
        return published.value if published is not None else None

    def current_published(self) -> Optional[Published[T]]:
        return self._current

    def publish(self, value: T, version: str) -> Published[T]:
        """Replace the current snapshot. Publishers are serialized."""
        published = Published(value=value, version=version, published_at=datetime.now(timezone.utc))
        with self._lock:
            previous = self._current
            self._current = published
        logger.info(
            "Snapshot published",
            snapshot=self.name,
            version=version,
            previous_version=previous.version if previous else None,
        )
        return published

    def clear(self) -> None:
        with self._lock:
            self._current = None


_schedule_store: Optional[SnapshotStore[ScheduleIndex]] = None
_reliability_store: Optional[SnapshotStore[ReliabilitySnapshot]] = None


def get_schedule_store() -> SnapshotStore[ScheduleIndex]:
    """Get or create the schedule snapshot store singleton."""
    global _schedule_store
    if _schedule_store is None:
        _schedule_store = SnapshotStore("schedule")
    return _schedule_store


def get_reliability_store() -> SnapshotStore[ReliabilitySnapshot]:
    """Get or create the reliability snapshot store singleton."""
    global _reliability_store
    if _reliability_store is None:
        _reliability_store = SnapshotStore("reliability")
    return _reliability_store


def reset_snapshot_stores() -> None:
    """Reset the singletons (for testing)."""
    global _schedule_store, _reliability_store
    _schedule_store = None
    _reliability_store = None
