"""GTFS static feed fetcher with retry and validation."""

from __future__ import annotations

import hashlib
import io
import zipfile
from pathlib import Path

from transit_planner.logging import get_logger
from transit_planner.services.http import DownloadError, download_with_retry

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 120
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 2.0

ZIP_MAGIC = b"PK\x03\x04"


class FetchError(Exception):
    """Raised when GTFS feed fetch fails after all retries."""


class InvalidZipError(Exception):
    """Raised when downloaded content is not a valid ZIP."""


class GtfsStaticFetcher:
    """Fetches a static GTFS feed from a remote URL or a local path."""

    def __init__(
        self,
        timeout_sec: int = DEFAULT_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
    ) -> None:
        self.timeout_sec = timeout_sec
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    async def fetch(self, source_type: str, source: str) -> tuple[bytes, str]:
        """Fetch from ``source`` as either ``"remote"`` or ``"local"``.

        Raises:
            ValueError: If ``source_type`` is neither.
        """
        if source_type == "remote":
            return await self.fetch_remote(source)
        if source_type == "local":
            return self.fetch_local(source)
        msg = f"Invalid source_type: {source_type}"
        raise ValueError(msg)

    async def fetch_remote(self, url: str) -> tuple[bytes, str]:
        """Download the GTFS ZIP.

        Returns:
            Tuple of (zip_bytes, sha256_hex_digest).

        Raises:
            FetchError: If all retries exhausted.
            InvalidZipError: If response is not a valid ZIP.
        """
        try:
            data, feed_hash = await download_with_retry(
                url,
                timeout_sec=self.timeout_sec,
                max_retries=self.max_retries,
                backoff_base=self.backoff_base,
                feed_type="gtfs_static",
            )
        except DownloadError as exc:
            msg = f"Failed to fetch GTFS feed after {self.max_retries} attempts"
            raise FetchError(msg) from exc

        self._validate_zip(data)
        return data, feed_hash

    def fetch_local(self, path: str | Path) -> tuple[bytes, str]:
        """Read GTFS ZIP from local filesystem.

        Raises:
            FileNotFoundError: If path does not exist.
            InvalidZipError: If file is not a valid ZIP.
        """
        path = Path(path)
        if not path.exists():
            msg = f"Local GTFS file not found: {path}"
            raise FileNotFoundError(msg)

        data = path.read_bytes()
        self._validate_zip(data)
        feed_hash = hashlib.sha256(data).hexdigest()
        logger.info(
            "GTFS feed loaded from local file",
            path=str(path),
            size_bytes=len(data),
            feed_hash=feed_hash[:12],
        )
        return data, feed_hash

    @staticmethod
    def _validate_zip(data: bytes) -> None:
        if len(data) < 4 or data[:4] != ZIP_MAGIC or not zipfile.is_zipfile(io.BytesIO(data)):
            msg = "Downloaded content is not a valid ZIP file"
            raise InvalidZipError(msg)
