"""GTFS-RT feed fetcher with retry and backoff."""

from __future__ import annotations

from transit_planner.logging import get_logger
from transit_planner.services.http import DownloadError, download_with_retry

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 5.0
DEFAULT_MAX_RETRIES = 1
DEFAULT_BACKOFF_BASE = 2.0


class FeedFetchError(Exception):
    """Raised when a GTFS-RT feed fetch fails after all retries."""


class GtfsRtFetcher:
    """Fetches GTFS-RT protobuf feeds from remote URLs."""

    def __init__(
        self,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
    ) -> None:
        self.timeout_sec = timeout_sec
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    async def fetch(self, url: str, feed_type: str) -> tuple[bytes, str]:
        """Download a GTFS-RT protobuf feed.

        Args:
            url: Full URL (with API key) to fetch.
            feed_type: Label for logging (e.g. "trip_updates").

        Returns:
            Tuple of (protobuf_bytes, sha256_hex_digest).

        Raises:
            FeedFetchError: If all retries exhausted.
        """
        try:
            return await download_with_retry(
                url,
                timeout_sec=self.timeout_sec,
                max_retries=self.max_retries,
                backoff_base=self.backoff_base,
                feed_type=feed_type,
            )
        except DownloadError as exc:
            msg = f"Failed to fetch {feed_type} after {max(1, self.max_retries)} attempts"
            raise FeedFetchError(msg) from exc
