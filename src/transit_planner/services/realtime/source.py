"""Live arrivals source: cached GTFS-RT trip updates and service alerts.

Every planning request asks for one :class:`LiveArrivals` snapshot. Feeds
are refreshed at most once per TTL; an unreachable or undecodable feed, or
one that does not answer within the request timeout, degrades the snapshot
to scheduled-only data instead of failing the request.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

from transit_planner.config import get_settings
from transit_planner.errors import Cancelled, UpstreamUnavailable
from transit_planner.logging import get_logger
from transit_planner.models.realtime import LiveArrivals, Prediction, ServiceAlert
from transit_planner.services.realtime.cache import TtlCache
from transit_planner.services.realtime.decoder import FeedDecodeError, GtfsRtDecoder
from transit_planner.services.realtime.fetcher import FeedFetchError, GtfsRtFetcher
from transit_planner.services.realtime.normalizer import GtfsRtNormalizer

if TYPE_CHECKING:
    from transit_planner.config import Settings
    from transit_planner.services.planning.cancellation import CancellationToken

logger = get_logger(__name__)

TRIP_UPDATES = "trip_updates"
SERVICE_ALERTS = "service_alerts"


class LiveArrivalSource:
    """Fetches, decodes and caches the realtime feeds.

    An empty URL disables that feed; with both disabled every snapshot is
    empty and not degraded.
    """

    def __init__(
        self,
        trip_updates_url: str,
        alerts_url: str = "",
        *,
        fetcher: Optional[GtfsRtFetcher] = None,
        timeout_sec: float = 5.0,
        arrivals_ttl_sec: int = 30,
        alerts_ttl_sec: int = 120,
    ) -> None:
        self.trip_updates_url = trip_updates_url
        self.alerts_url = alerts_url
        self.fetcher = fetcher or GtfsRtFetcher(timeout_sec=timeout_sec)
        self.timeout_sec = timeout_sec
        self.arrivals_ttl_sec = arrivals_ttl_sec
        self._arrivals: TtlCache[dict[tuple[str, str], Prediction]] = TtlCache(arrivals_ttl_sec)
        self._alerts: TtlCache[list[ServiceAlert]] = TtlCache(alerts_ttl_sec)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> LiveArrivalSource:
        settings = settings or get_settings()
        return cls(
            settings.gtfs_trip_updates_full_url,
            settings.gtfs_service_alerts_full_url,
            fetcher=GtfsRtFetcher(
                timeout_sec=settings.realtime_timeout_sec,
                max_retries=settings.realtime_max_retries,
                backoff_base=settings.realtime_backoff_base,
            ),
            timeout_sec=settings.realtime_timeout_sec,
            arrivals_ttl_sec=settings.arrivals_ttl_sec,
            alerts_ttl_sec=settings.alerts_ttl_sec,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.trip_updates_url or self.alerts_url)

    async def snapshot(
        self,
        now: Optional[datetime] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> LiveArrivals:
        """Return live data as of ``now``.

        Raises:
            Cancelled: If ``cancel`` fires before the feeds answer.
        """
        now = now or datetime.now(timezone.utc)
        if not self.enabled:
            return LiveArrivals.empty()
        if cancel is not None:
            cancel.raise_if_cancelled()

        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(self._load(now))
        unregister: Optional[Callable[[], None]] = None
        if cancel is not None:
            unregister = cancel.add_callback(lambda: loop.call_soon_threadsafe(task.cancel))

        try:
            return await asyncio.wait_for(task, timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.warning(
                "Live feeds timed out, using schedule only", timeout_sec=self.timeout_sec
            )
            return LiveArrivals.empty(degraded=True)
        except asyncio.CancelledError:
            if cancel is not None and cancel.is_cancelled:
                msg = "Request cancelled while fetching live arrivals"
                raise Cancelled(msg) from None
            raise
        finally:
            if unregister is not None:
                unregister()

    async def _load(self, now: datetime) -> LiveArrivals:
        arrivals_entry, alerts_entry = await asyncio.gather(
            self._feed(TRIP_UPDATES, self.trip_updates_url, self._arrivals, now),
            self._feed(SERVICE_ALERTS, self.alerts_url, self._alerts, now),
        )
        degraded = (bool(self.trip_updates_url) and arrivals_entry is None) or (
            bool(self.alerts_url) and alerts_entry is None
        )
        return LiveArrivals(
            predictions=arrivals_entry.value if arrivals_entry else {},
            alerts=tuple(alerts_entry.value) if alerts_entry else (),
            captured_at=arrivals_entry.captured_at if arrivals_entry else None,
            degraded=degraded,
        )

    async def _feed(self, feed_type: str, url: str, cache: TtlCache[Any], now: datetime) -> Any:
        """Cached entry for one feed, or None when disabled or unavailable."""
        if not url:
            return None
        entry = cache.get(feed_type, now)
        if entry is not None:
            return entry
        async with cache.lock(feed_type):
            entry = cache.get(feed_type, now)
            if entry is not None:
                return entry
            try:
                value = await self._refresh(feed_type, url, now)
            except UpstreamUnavailable as exc:
                logger.warning("Live feed unavailable", feed_type=feed_type, error=str(exc))
                return None
            return cache.put(feed_type, value, now)

    async def _refresh(self, feed_type: str, url: str, now: datetime) -> Any:
        try:
            data, _ = await self.fetcher.fetch(url, feed_type)
            feed = GtfsRtDecoder.decode(data, feed_type)
        except (FeedFetchError, FeedDecodeError) as exc:
            raise UpstreamUnavailable(str(exc)) from exc

        if feed_type == TRIP_UPDATES:
            value: Any = GtfsRtNormalizer.normalize_trip_updates(
                feed, captured_at=now, ttl_sec=self.arrivals_ttl_sec
            )
        else:
            value = GtfsRtNormalizer.normalize_alerts(feed)
        logger.info("Live feed refreshed", feed_type=feed_type, records=len(value))
        return value

    def clear(self) -> None:
        self._arrivals.clear()
        self._alerts.clear()


_live_source: Optional[LiveArrivalSource] = None


def get_live_source() -> LiveArrivalSource:
    """Get or create the live arrivals source singleton."""
    global _live_source
    if _live_source is None:
        _live_source = LiveArrivalSource.from_settings()
    return _live_source


def reset_live_source() -> None:
    """Reset the singleton (for testing)."""
    global _live_source
    _live_source = None
