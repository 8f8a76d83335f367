"""GTFS static loader - orchestrates fetch, parse and normalize into a feed."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from transit_planner.config import get_settings
from transit_planner.logging import get_logger
from transit_planner.models.schedule import ScheduleFeed
from transit_planner.services.gtfs_static.fetcher import GtfsStaticFetcher
from transit_planner.services.gtfs_static.normalizer import (
    GtfsNormalizer,
    NormalizationError,
    TimeParseError,
    parse_gtfs_date,
)
from transit_planner.services.gtfs_static.parser import GtfsParser
from transit_planner.services.gtfs_static.reader import GtfsZipReader

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = get_logger(__name__)

T = TypeVar("T")


class FeedLoadError(Exception):
    """Raised in strict mode when any row fails to normalize."""

    def __init__(self, report: LoadReport) -> None:
        self.report = report
        super().__init__(f"GTFS feed rejected: {report.errors[0] if report.errors else 'unknown'}")


class LoadReport:
    """Collects load metrics, warnings, and errors."""

    def __init__(self, source: str, feed_hash: str, load_id: str | None = None) -> None:
        self.load_id = load_id or str(uuid.uuid4())
        self.source = source
        self.feed_hash = feed_hash
        self.version: str | None = None
        self.expiry_date: date | None = None
        self.started_at = datetime.now(timezone.utc)
        self.ended_at: datetime | None = None
        self.duration_ms: int | None = None
        self.counts: dict[str, dict[str, int]] = {}
        self.warnings: list[str] = []
        self.errors: list[str] = []

    def init_file(self, name: str) -> None:
        self.counts[name] = {"read": 0, "loaded": 0, "skipped": 0, "failed": 0}

    def finish(self) -> None:
        self.ended_at = datetime.now(timezone.utc)
        self.duration_ms = int((self.ended_at - self.started_at).total_seconds() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "failed" if self.errors else "success",
            "load_id": self.load_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "source": self.source,
            "feed_hash": self.feed_hash,
            "version": self.version,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "counts": self.counts,
            "warnings": self.warnings[:100],  # cap for response size
            "errors": self.errors[:100],
        }


class GtfsFeedLoader:
    """Turns a GTFS archive into a versioned :class:`ScheduleFeed`.

    In lenient mode malformed rows are skipped and reported as warnings;
    in strict mode the first one aborts the load.
    """

    def __init__(
        self,
        strict: bool | None = None,
        fetcher: GtfsStaticFetcher | None = None,
    ) -> None:
        settings = get_settings()
        self.strict = strict if strict is not None else settings.gtfs_load_strict
        self._fetcher = fetcher or GtfsStaticFetcher(
            timeout_sec=settings.gtfs_fetch_timeout_sec,
            max_retries=settings.gtfs_fetch_max_retries,
            backoff_base=settings.gtfs_fetch_backoff_base,
        )
        self._normalizer = GtfsNormalizer()

    async def load(self, source_type: str, source: str) -> tuple[ScheduleFeed, LoadReport]:
        """Fetch and parse a feed.

        Raises:
            FetchError, InvalidZipError, FileNotFoundError: On fetch failure.
            MissingRequiredFileError, MissingColumnError: On a malformed archive.
            FeedLoadError: In strict mode, on the first bad row.
        """
        logger.info("Loading GTFS static feed", source_type=source_type, source=source)
        data, feed_hash = await self._fetcher.fetch(source_type, source)
        return self.load_bytes(data, feed_hash=feed_hash, source=source)

    def load_bytes(
        self, data: bytes, feed_hash: str, source: str = "<bytes>"
    ) -> tuple[ScheduleFeed, LoadReport]:
        report = LoadReport(source=source, feed_hash=feed_hash)
        normalizer = self._normalizer

        with GtfsZipReader(data) as reader:
            parser = GtfsParser(reader)
            stops = self._parse_and_normalize(
                parser.parse_stops, normalizer.normalize_stop, "stops", report
            )
            routes = self._parse_and_normalize(
                parser.parse_routes, normalizer.normalize_route, "routes", report
            )
            trips = self._parse_and_normalize(
                parser.parse_trips, normalizer.normalize_trip, "trips", report
            )
            stop_times = self._parse_and_normalize(
                parser.parse_stop_times, normalizer.normalize_stop_time, "stop_times", report
            )
            calendars = self._parse_and_normalize(
                parser.parse_calendar, normalizer.normalize_calendar, "calendar", report
            )
            calendar_dates = self._parse_and_normalize(
                parser.parse_calendar_dates,
                normalizer.normalize_calendar_date,
                "calendar_dates",
                report,
            )
            feed_version, feed_end_date = self._read_feed_info(parser.parse_feed_info(), report)

        if report.errors:
            report.finish()
            raise FeedLoadError(report)

        expiry_candidates = [c.end_date for c in calendars] + [
            d.date for d in calendar_dates if d.added
        ]
        expiry_date = feed_end_date or (max(expiry_candidates) if expiry_candidates else None)
        version = feed_version or feed_hash[:16]

        report.version = version
        report.expiry_date = expiry_date
        report.finish()
        logger.info(
            "GTFS static feed loaded",
            load_id=report.load_id,
            version=version,
            expiry_date=expiry_date.isoformat() if expiry_date else None,
            duration_ms=report.duration_ms,
            counts=report.counts,
            warnings_count=len(report.warnings),
        )

        feed = ScheduleFeed(
            version=version,
            feed_hash=feed_hash,
            expiry_date=expiry_date,
            stops=stops,
            routes=routes,
            trips=trips,
            stop_times=stop_times,
            calendars=calendars,
            calendar_dates=calendar_dates,
        )
        return feed, report

    def _parse_and_normalize(
        self,
        parse_fn: Callable[[], Iterator[dict[str, Any]]],
        normalize_fn: Callable[[dict[str, Any]], Optional[T]],
        name: str,
        report: LoadReport,
    ) -> list[T]:
        """Parse and normalize rows from one GTFS file.

        ``None`` results are counted as skipped.
        """
        report.init_file(name)
        counts = report.counts[name]
        results: list[T] = []

        for row in parse_fn():
            counts["read"] += 1
            try:
                normalized = normalize_fn(row)
            except (NormalizationError, TimeParseError) as exc:
                counts["failed"] += 1
                msg = f"{name} row {counts['read']}: {exc}"
                if self.strict:
                    report.errors.append(msg)
                    return results
                report.warnings.append(msg)
                continue
            if normalized is None:
                counts["skipped"] += 1
                continue
            counts["loaded"] += 1
            results.append(normalized)

        return results

    @staticmethod
    def _read_feed_info(
        rows: Iterator[dict[str, Any]], report: LoadReport
    ) -> tuple[str | None, date | None]:
        for row in rows:
            version = (row.get("feed_version") or "").strip() or None
            end_str = (row.get("feed_end_date") or "").strip()
            end_date = None
            if end_str:
                try:
                    end_date = parse_gtfs_date(end_str)
                except NormalizationError as exc:
                    report.warnings.append(f"feed_info: {exc}")
            return version, end_date
        return None, None
