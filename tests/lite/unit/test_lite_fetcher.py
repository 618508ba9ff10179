"""
Unit tests for sectioncal_lite.lite_fetcher.LiteICSFetcher

Covers:
- backoff calculation behavior
- URL validation
- streaming download into a temporary file, size limits and cleanup
- error mapping and retries
"""

import random
from collections.abc import AsyncIterator, Callable
from pathlib import Path

import httpx
import pytest

from sectioncal_lite.lite_fetcher import (
    JITTER_MAX_FACTOR,
    MAX_BACKOFF_SECONDS,
    LiteICSAuthError,
    LiteICSContentTooLargeError,
    LiteICSFetcher,
    LiteICSFetchError,
    LiteICSNetworkError,
    LiteICSTimeoutError,
)
from sectioncal_lite.middleware import request_id_var

pytestmark = [pytest.mark.unit, pytest.mark.fast]

ICS_BODY = b"BEGIN:VCALENDAR\r\nVERSION:2.0\r\nEND:VCALENDAR\r\n"
URL = "https://calendar.example.test/school.ics"


def _settings(**overrides) -> dict:
    settings = {
        "ics_url": URL,
        "request_timeout": 5,
        "max_retries": 2,
        "retry_backoff_factor": 2.0,
        "max_content_bytes": 1024,
    }
    settings.update(overrides)
    return settings


def _fetcher(
    handler: Callable[[httpx.Request], httpx.Response], monkeypatch=None, **overrides
) -> LiteICSFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = LiteICSFetcher(_settings(**overrides), client=client)
    if monkeypatch is not None:
        monkeypatch.setattr(fetcher, "_calculate_backoff", lambda *args, **kwargs: 0.0)
    return fetcher


@pytest.fixture(autouse=True)
def seeded_random(monkeypatch):
    """Seed random.uniform to deterministic value for jitter in tests."""
    monkeypatch.setattr(random, "uniform", lambda a, b: (a + b) / 2)


class TestBackoff:
    def test_calculate_backoff_when_attempts_increase_then_backoff_increases(self) -> None:
        fetcher = LiteICSFetcher(_settings())
        b0 = fetcher._calculate_backoff(attempt=0, corruption_detected=False, backoff_factor=2.0)
        b1 = fetcher._calculate_backoff(attempt=1, corruption_detected=False, backoff_factor=2.0)
        b2 = fetcher._calculate_backoff(attempt=2, corruption_detected=False, backoff_factor=2.0)

        assert b0 == pytest.approx(1.2)
        assert b1 > b0
        assert b2 > b1

    def test_calculate_backoff_when_corruption_detected_then_capped_and_doubled(self) -> None:
        fetcher = LiteICSFetcher(_settings())

        doubled = fetcher._calculate_backoff(attempt=1, corruption_detected=True, backoff_factor=2.0)
        capped = fetcher._calculate_backoff(attempt=10, corruption_detected=True, backoff_factor=2.0)

        assert doubled == pytest.approx(4.0 * 1.2)
        assert capped <= MAX_BACKOFF_SECONDS * (1.0 + JITTER_MAX_FACTOR)


class TestValidateUrl:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://example.com/calendar.ics", True),
            ("http://example.com/calendar.ics", True),
            ("ftp://example.com/resource", False),
            ("file:///etc/passwd", False),
            ("http:///no-host", False),
            ("", False),
        ],
    )
    def test_validate_url(self, url: str, expected: bool) -> None:
        assert LiteICSFetcher(_settings())._validate_url(url) is expected

    async def test_invalid_url_rejected_before_network(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, content=ICS_BODY)

        fetcher = _fetcher(handler, ics_url="ftp://example.com/cal.ics")

        with pytest.raises(LiteICSFetchError, match="Invalid calendar URL"):
            async with fetcher.fetch_calendar():
                pass
        assert calls == []


class TestFetchCalendar:
    async def test_download_yields_complete_file_and_removes_it(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=ICS_BODY, headers={"content-type": "text/calendar"})

        fetcher = _fetcher(handler)

        async with fetcher.fetch_calendar() as path:
            assert path.read_bytes() == ICS_BODY
            kept: Path = path

        assert not kept.exists()

    async def test_file_removed_when_caller_fails(self) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(200, content=ICS_BODY))
        seen: list[Path] = []

        with pytest.raises(RuntimeError):
            async with fetcher.fetch_calendar() as path:
                seen.append(path)
                raise RuntimeError("parse failed")

        assert not seen[0].exists()

    async def test_request_id_forwarded(self) -> None:
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request.headers.get("X-Request-ID"))
            return httpx.Response(200, content=ICS_BODY)

        fetcher = _fetcher(handler)
        token = request_id_var.set("req-123")
        try:
            async with fetcher.fetch_calendar():
                pass
        finally:
            request_id_var.reset(token)

        assert received == ["req-123"]

    async def test_declared_length_over_limit_rejected(self) -> None:
        fetcher = _fetcher(
            lambda request: httpx.Response(200, content=b"x" * 2048), max_content_bytes=1024
        )

        with pytest.raises(LiteICSContentTooLargeError):
            async with fetcher.fetch_calendar():
                pass

    async def test_streamed_body_over_limit_rejected(self) -> None:
        async def body() -> AsyncIterator[bytes]:
            for _ in range(4):
                yield b"y" * 400

        fetcher = _fetcher(lambda request: httpx.Response(200, content=body()))

        with pytest.raises(LiteICSContentTooLargeError):
            async with fetcher.fetch_calendar():
                pass

    async def test_empty_body_is_error(self) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(200, content=b""))

        with pytest.raises(LiteICSFetchError, match="Empty content"):
            async with fetcher.fetch_calendar():
                pass

    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_status_maps_to_auth_error(self, status: int) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(status)

        fetcher = _fetcher(handler)

        with pytest.raises(LiteICSAuthError) as exc_info:
            async with fetcher.fetch_calendar():
                pass
        assert exc_info.value.status_code == status
        assert len(calls) == 1

    async def test_server_error_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        fetcher = _fetcher(handler)

        with pytest.raises(LiteICSFetchError, match="HTTP 500"):
            async with fetcher.fetch_calendar():
                pass
        assert len(calls) == 1

    async def test_timeout_retried_then_succeeds(self, monkeypatch) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, content=ICS_BODY)

        fetcher = _fetcher(handler, monkeypatch)

        async with fetcher.fetch_calendar() as path:
            assert path.read_bytes() == ICS_BODY
        assert len(calls) == 3

    async def test_timeout_exhausts_retries(self, monkeypatch) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        fetcher = _fetcher(handler, monkeypatch, max_retries=1)

        with pytest.raises(LiteICSTimeoutError):
            async with fetcher.fetch_calendar():
                pass
        assert len(calls) == 2

    async def test_network_error_exhausts_retries(self, monkeypatch) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection reset by peer", request=request)

        fetcher = _fetcher(handler, monkeypatch, max_retries=0)

        with pytest.raises(LiteICSNetworkError):
            async with fetcher.fetch_calendar():
                pass


class TestLocalFailures:
    async def test_temp_file_failure_maps_to_fetch_error(self, monkeypatch) -> None:
        def refuse(*args, **kwargs):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr("sectioncal_lite.lite_fetcher.tempfile.mkstemp", refuse)
        fetcher = _fetcher(lambda request: httpx.Response(200, content=ICS_BODY))

        with pytest.raises(LiteICSFetchError, match="Cannot create download file"):
            async with fetcher.fetch_calendar():
                pass

    async def test_write_failure_maps_to_fetch_error(self, monkeypatch) -> None:
        def refuse(self, *args, **kwargs):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(Path, "open", refuse)
        fetcher = _fetcher(lambda request: httpx.Response(200, content=ICS_BODY))

        with pytest.raises(LiteICSFetchError, match="Cannot write download file"):
            async with fetcher.fetch_calendar():
                pass

    async def test_shared_client_failure_maps_to_fetch_error(self, monkeypatch) -> None:
        async def broken_client(client_id: str = "default"):
            raise RuntimeError(f"Could not open HTTP pool {client_id!r}")

        monkeypatch.setattr("sectioncal_lite.lite_fetcher.get_shared_client", broken_client)
        fetcher = LiteICSFetcher(_settings())

        with pytest.raises(LiteICSFetchError, match="HTTP client unavailable"):
            async with fetcher.fetch_calendar():
                pass
