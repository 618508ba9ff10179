from collections.abc import AsyncIterator, Callable, Generator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from sectioncal_lite.http_client import close_all_clients
from sectioncal_lite.lite_fetcher import LiteICSFetchError


class FakeCalendarSource:
    """In-memory calendar source writing its content to a temporary file.

    ``content`` may be swapped between rebuilds. Setting ``error`` makes the
    next fetches raise it instead. ``gate`` (an asyncio.Event) can hold a
    fetch open so tests can observe a rebuild in progress.
    """

    def __init__(self, content: str, tmp_dir: Path) -> None:
        self.content = content
        self.tmp_dir = tmp_dir
        self.error: Exception | None = None
        self.gate: Any = None
        self.fetch_count = 0
        self.paths: list[Path] = []

    @asynccontextmanager
    async def fetch_calendar(self) -> AsyncIterator[Path]:
        self.fetch_count += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        path = self.tmp_dir / f"calendar-{self.fetch_count}.ics"
        path.write_text(self.content, encoding="utf-8")
        self.paths.append(path)
        try:
            yield path
        finally:
            path.unlink(missing_ok=True)


class FakeClock:
    """Mutable clock returning an aware UTC datetime."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object used across lite tests.

    Fields:
      - timezone: service timezone
      - window_days_ahead: days after today kept in the cache
      - stale_after_seconds / refresh_interval_seconds: cache timing
      - request_timeout, max_retries, retry_backoff_factor: fetcher options
      - max_occurrences_per_rule: RRULE expansion cap
    """
    return SimpleNamespace(
        ics_url="https://calendar.example.test/school.ics",
        timezone="Europe/Rome",
        window_days_ahead=2,
        stale_after_seconds=900,
        refresh_interval_seconds=900,
        request_timeout=5,
        max_retries=2,
        retry_backoff_factor=1.5,
        max_content_bytes=1024 * 1024,
        max_occurrences_per_rule=250,
    )


@pytest.fixture
def fixed_clock() -> FakeClock:
    """Clock frozen at Monday 2025-01-13 08:00 Europe/Rome (07:00 UTC)."""
    return FakeClock(datetime(2025, 1, 13, 7, 0, tzinfo=UTC))


@pytest.fixture
def make_source(tmp_path: Path) -> Callable[[str], FakeCalendarSource]:
    """Factory for in-memory calendar sources backed by ``tmp_path``."""

    def _make(content: str) -> FakeCalendarSource:
        return FakeCalendarSource(content, tmp_path)

    return _make


@pytest.fixture
def fetch_error() -> LiteICSFetchError:
    """A generic download failure."""
    return LiteICSFetchError("HTTP 500: Internal Server Error")


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Ensure SectionCal environment variables do not leak between tests.

    Some tests set SECTIONCAL_TEST_TIME to freeze the clock.
    """
    for name in (
        "SECTIONCAL_TEST_TIME",
        "SECTIONCAL_DEBUG",
        "SECTIONCAL_LOG_LEVEL",
        "SECTIONCAL_ICS_URL",
        "ICS_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close shared httpx clients after every test to prevent resource leaks."""
    yield
    await close_all_clients()


# ==================== ICS Test Data Fixtures ====================


@pytest.fixture
def sample_ics_school_day() -> str:
    """
    Return a school calendar for Monday 2025-01-13 (Europe/Rome).

    Events:
      - 09:00 local "CLASSE 3B - PROF. ROSSI ASSENTE"
      - 11:00 local "Uscita anticipata 4A" with escaped description
      - all-day "Assemblea d'istituto" on 2025-01-13
      - 10:00 local on 2025-01-14 "CLASSE 5C verifica"
      - 2025-01-20 event outside the window
    """
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//SectionCal Test//EN
BEGIN:VEVENT
UID:absence-3b
DTSTART;TZID=Europe/Rome:20250113T090000
DTEND;TZID=Europe/Rome:20250113T100000
SUMMARY:CLASSE 3B - PROF. ROSSI ASSENTE
DESCRIPTION:Entrata posticipata
END:VEVENT
BEGIN:VEVENT
UID:exit-4a
DTSTART:20250113T100000Z
DTEND:20250113T110000Z
SUMMARY:Uscita anticipata 4A
DESCRIPTION:Classi 4A\\, 4B\\nore 11
END:VEVENT
BEGIN:VEVENT
UID:assembly
DTSTART;VALUE=DATE:20250113
DTEND;VALUE=DATE:20250114
SUMMARY:Assemblea d'istituto
END:VEVENT
BEGIN:VEVENT
UID:test-5c
DTSTART:20250114T100000
DTEND:20250114T110000
SUMMARY:CLASSE 5C verifica
END:VEVENT
BEGIN:VEVENT
UID:far-future
DTSTART:20250120T080000Z
SUMMARY:Gita 2A
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def sample_ics_weekly_exdate() -> str:
    """
    Return a weekly recurring event with one exception.

    - RRULE:FREQ=WEEKLY;COUNT=3 from 2025-01-06 10:00 local
    - EXDATE 2025-01-13 10:00 local
    """
    return """BEGIN:VCALENDAR
VERSION:2.0
BEGIN:VEVENT
UID:weekly-lab
DTSTART;TZID=Europe/Rome:20250106T100000
DTEND;TZID=Europe/Rome:20250106T110000
RRULE:FREQ=WEEKLY;COUNT=3
EXDATE;TZID=Europe/Rome:20250113T100000
SUMMARY:Laboratorio 2B
END:VEVENT
END:VCALENDAR
"""
