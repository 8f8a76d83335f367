"""HTTP download with retry and exponential backoff, shared by feed fetchers."""

from __future__ import annotations

import asyncio
import hashlib
import inspect
from typing import Any

import httpx

from transit_planner.logging import get_logger

logger = get_logger(__name__)


class DownloadError(Exception):
    """Raised when a download fails after all retries."""


async def download_with_retry(
    url: str,
    *,
    timeout_sec: float,
    max_retries: int,
    backoff_base: float,
    **log_fields: Any,
) -> tuple[bytes, str]:
    """Download ``url`` and return ``(body, sha256_hex_digest)``.

    HTTP errors, transport errors and empty bodies are retried with a delay
    of ``backoff_base ** attempt`` seconds between attempts.

    Raises:
        DownloadError: If all retries are exhausted.
    """
    last_error: Exception | None = None
    attempts = max(1, max_retries)

    for attempt in range(attempts):
        try:
            logger.info(
                "Downloading feed",
                attempt=attempt + 1,
                max_retries=attempts,
                **log_fields,
            )
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(timeout_sec),
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
                raise_result = response.raise_for_status()
                if inspect.isawaitable(raise_result):
                    await raise_result
                data = response.content

            if not data:
                msg = "Empty response body"
                raise DownloadError(msg)

            digest = hashlib.sha256(data).hexdigest()
            logger.info(
                "Feed downloaded",
                size_bytes=len(data),
                feed_hash=digest[:12],
                **log_fields,
            )
            return data, digest

        except (httpx.HTTPStatusError, httpx.RequestError, DownloadError) as exc:
            last_error = exc
            if attempt < attempts - 1:
                delay = backoff_base ** (attempt + 1)
                logger.warning(
                    "Download failed, retrying",
                    attempt=attempt + 1,
                    delay_sec=delay,
                    error=str(exc),
                    **log_fields,
                )
                await asyncio.sleep(delay)

    msg = f"Failed to download after {attempts} attempts"
    logger.error(msg, error=str(last_error), **log_fields)
    raise DownloadError(msg) from last_error
