"""Build new snapshots and publish them.

A failed build raises before anything is published, so the snapshot in
service is only ever replaced by a fully built one.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional

from transit_planner.config import get_settings
from transit_planner.logging import get_logger
from transit_planner.services.gtfs_static.loader import GtfsFeedLoader
from transit_planner.services.reliability.migrations import load_snapshot_file
from transit_planner.services.schedule.index import ScheduleIndex
from transit_planner.services.snapshots import get_reliability_store, get_schedule_store

if TYPE_CHECKING:
    from transit_planner.config import Settings
    from transit_planner.models.reliability import ReliabilitySnapshot
    from transit_planner.models.schedule import ScheduleFeed
    from transit_planner.services.gtfs_static.loader import LoadReport
    from transit_planner.services.snapshots import Published

logger = get_logger(__name__)


def build_schedule_index(feed: ScheduleFeed, settings: Optional[Settings] = None) -> ScheduleIndex:
    settings = settings or get_settings()
    return ScheduleIndex.from_feed(
        feed,
        transfer_radius_m=settings.transfer_radius_m,
        walking_speed_m_per_min=settings.walking_speed_m_per_min,
    )


async def publish_schedule(
    source_type: str,
    source: str,
    *,
    strict: Optional[bool] = None,
    loader: Optional[GtfsFeedLoader] = None,
) -> tuple[Published[ScheduleIndex], LoadReport]:
    """Load a GTFS archive, index it and publish the index.

    Raises:
        FetchError, InvalidZipError, FileNotFoundError: If the archive
            cannot be obtained.
        MissingRequiredFileError, MissingColumnError, FeedLoadError: If it
            is malformed.
        ScheduleIntegrityError: If its records are inconsistent.
    """
    loader = loader or GtfsFeedLoader(strict=strict)
    feed, report = await loader.load(source_type, source)
    index = await asyncio.to_thread(build_schedule_index, feed)
    published = get_schedule_store().publish(index, index.version)
    return published, report


def publish_reliability(path: str) -> Published[ReliabilitySnapshot]:
    """Read a reliability document from ``path`` and publish it.

    Raises:
        FileNotFoundError: If the file does not exist.
        SnapshotFormatError: If it is not a valid document.
    """
    snapshot = load_snapshot_file(path)
    return get_reliability_store().publish(snapshot, snapshot.computed_at.isoformat())
