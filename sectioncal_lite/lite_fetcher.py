"""HTTP client for downloading ICS calendar files - SectionCal Lite version."""

import asyncio
import logging
import os
import random
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, NoReturn, Optional
from urllib.parse import urlparse

import httpx

from .config_manager import DEFAULT_MAX_CONTENT_BYTES, get_config_value
from .http_client import (
    DEFAULT_HEADERS,
    get_shared_client,
    record_client_error,
    record_client_success,
)
from .middleware import get_request_id

logger = logging.getLogger(__name__)

# Backoff calculation constants
MAX_BACKOFF_SECONDS = 30.0  # Maximum backoff time for corruption scenarios
JITTER_MIN_FACTOR = 0.1  # Minimum jitter multiplier
JITTER_MAX_FACTOR = 0.3  # Maximum jitter multiplier

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class LiteICSFetchError(Exception):
    """Base exception for ICS fetch errors."""


class LiteICSAuthError(LiteICSFetchError):
    """Authentication error during ICS fetch."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LiteICSNetworkError(LiteICSFetchError):
    """Network error during ICS fetch."""


class LiteICSTimeoutError(LiteICSFetchError):
    """Timeout error during ICS fetch."""


class LiteICSContentTooLargeError(LiteICSFetchError):
    """Calendar body exceeds the configured size limit."""


def _raise_too_large(limit: int) -> NoReturn:
    raise LiteICSContentTooLargeError(f"Calendar exceeds {limit} bytes")


class LiteICSFetcher:
    """Downloads the calendar feed into a temporary file.

    Implements the calendar source protocol used by the cache store:
    ``fetch_calendar()`` is an async context manager yielding the path of a
    complete download, removed again when the context exits.
    """

    def __init__(self, settings: Any, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize ICS fetcher.

        Args:
            settings: Application settings (dict or attribute object)
            client: Optional HTTP client; the shared pooled client is used otherwise
        """
        self.settings = settings
        self.url: str = str(get_config_value(settings, "ics_url", "") or "")
        self.request_timeout = float(get_config_value(settings, "request_timeout", 60))
        self.max_retries = int(get_config_value(settings, "max_retries", 2))
        self.backoff_factor = float(get_config_value(settings, "retry_backoff_factor", 2.0))
        self.max_content_bytes = int(
            get_config_value(settings, "max_content_bytes", DEFAULT_MAX_CONTENT_BYTES)
        )

        self.client: Optional[httpx.AsyncClient] = client
        self._use_shared_client = client is None
        self._client_id = "lite_fetcher"

        logger.debug("Lite ICS fetcher initialized (shared_client: %s)", self._use_shared_client)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._use_shared_client:
            try:
                return await get_shared_client(self._client_id)
            except RuntimeError as e:
                raise LiteICSFetchError(f"HTTP client unavailable: {e}") from e
        if self.client is None:
            raise LiteICSFetchError("HTTP client not initialized")
        return self.client

    def _validate_url(self, url: str) -> bool:
        """Validate URL for basic format before any network access.

        Args:
            url: URL string to validate. Should be a complete HTTP or HTTPS URL.

        Returns:
            bool: True if URL has valid format, False if blocked due to invalid format.
        """
        try:
            parsed = urlparse(url)
        except ValueError as e:
            logger.debug("URL validation error for %s: %s", url, e)
            return False

        if parsed.scheme not in ("http", "https"):
            logger.debug("Blocked non-HTTP(S) URL: %s", url)
            return False

        if not parsed.hostname:
            logger.debug("Blocked URL with missing hostname: %s", url)
            return False

        return True

    @asynccontextmanager
    async def fetch_calendar(self) -> AsyncIterator[Path]:
        """Download the calendar and yield the path of the temporary file.

        The temporary file is removed when the context exits, whether the
        download, the caller's parsing, or neither failed.

        Yields:
            Path to a complete ICS download

        Raises:
            LiteICSAuthError: HTTP 401/403
            LiteICSTimeoutError: Timeouts after all retries
            LiteICSNetworkError: Network failures after all retries
            LiteICSContentTooLargeError: Body above ``max_content_bytes``
            LiteICSFetchError: Invalid URL, other HTTP errors, empty body,
                temporary file or HTTP client setup failures
        """
        if not self._validate_url(self.url):
            logger.error("Refusing to fetch invalid calendar URL: %r", self.url)
            raise LiteICSFetchError("Invalid calendar URL")

        try:
            fd, name = tempfile.mkstemp(prefix="sectioncal-", suffix=".ics")
        except OSError as e:
            raise LiteICSFetchError(f"Cannot create download file: {e}") from e
        os.close(fd)
        path = Path(name)
        try:
            size = await self._download_with_retry(self.url, path)
            logger.debug("Downloaded calendar to %s (%d bytes)", path, size)
            yield path
        finally:
            path.unlink(missing_ok=True)

    def _calculate_backoff(
        self,
        attempt: int,
        corruption_detected: bool,
        backoff_factor: float,
    ) -> float:
        """Calculate exponential backoff time with jitter.

        Args:
            attempt: Current retry attempt number (0-indexed)
            corruption_detected: Whether network corruption has been detected
            backoff_factor: Base factor for exponential backoff calculation

        Returns:
            float: Calculated backoff time in seconds including jitter
        """
        base_backoff = backoff_factor**attempt

        # Double backoff and apply cap for corruption scenarios
        if corruption_detected:
            base_backoff = min(base_backoff * 2, MAX_BACKOFF_SECONDS)

        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311 - jitter not cryptographic
        return base_backoff + jitter

    async def _download_with_retry(self, url: str, path: Path) -> int:
        """Stream the response body into ``path``, retrying transient failures.

        Timeouts and network errors are retried with backoff. HTTP status
        errors and size violations are not.

        Returns:
            Number of bytes written
        """
        attempt = 0
        corruption_detected = False

        while True:
            try:
                size = await self._download_once(url, path)
                if self._use_shared_client:
                    await record_client_success(self._client_id)
                logger.debug("Fetched ICS from %s (attempt %d)", url, attempt + 1)
                return size

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.error("HTTP error fetching ICS from %s: %s", url, status)
                if status in (401, 403):
                    raise LiteICSAuthError(
                        f"Access denied by calendar server (HTTP {status})", status
                    ) from e
                raise LiteICSFetchError(f"HTTP {status}: {e.response.reason_phrase}") from e

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if self._use_shared_client:
                    await record_client_error(self._client_id)

                if (
                    "Connection broken" in str(e)
                    or "Broken pipe" in str(e)
                    or "Connection reset" in str(e)
                ):
                    corruption_detected = True
                    logger.warning("Network corruption detected in attempt %d: %s", attempt + 1, e)

                if attempt >= self.max_retries:
                    logger.error("All %d attempts failed for %s: %s", attempt + 1, url, e)
                    if isinstance(e, httpx.TimeoutException):
                        raise LiteICSTimeoutError(
                            f"Request timeout after {self.request_timeout:.0f}s"
                        ) from e
                    raise LiteICSNetworkError(f"Network error: {e}") from e

                backoff_time = self._calculate_backoff(
                    attempt, corruption_detected, self.backoff_factor
                )
                logger.warning(
                    "Request failed (attempt %s/%s), retrying in %.1fs: %s",
                    attempt + 1,
                    self.max_retries + 1,
                    backoff_time,
                    e,
                )
                await asyncio.sleep(backoff_time)
                attempt += 1

            except httpx.HTTPError as e:
                if self._use_shared_client:
                    await record_client_error(self._client_id)
                raise LiteICSFetchError(f"Unexpected HTTP error: {e}") from e

            except OSError as e:
                logger.error("Cannot write calendar download to %s: %s", path, e)
                raise LiteICSFetchError(f"Cannot write download file: {e}") from e

    async def _download_once(self, url: str, path: Path) -> int:
        client = await self._get_client()
        headers = dict(DEFAULT_HEADERS)

        request_id = get_request_id()
        if request_id != "no-request-id":
            headers["X-Request-ID"] = request_id

        async with client.stream(
            "GET", url, headers=headers, timeout=self.request_timeout
        ) as response:
            response.raise_for_status()

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > self.max_content_bytes:
                _raise_too_large(self.max_content_bytes)

            content_type = response.headers.get("content-type", "").lower()
            if content_type and not any(ct in content_type for ct in ("text/calendar", "text/plain")):
                logger.warning("Unexpected content type: %s", content_type)

            written = 0
            # "wb" truncates leftovers from a failed previous attempt.
            with path.open("wb") as f:
                async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                    written += len(chunk)
                    if written > self.max_content_bytes:
                        _raise_too_large(self.max_content_bytes)
                    f.write(chunk)

        if written == 0:
            raise LiteICSFetchError("Empty content received")
        return written
