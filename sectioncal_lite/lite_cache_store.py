"""In-memory occurrence cache for SectionCal Lite.

``CacheStore`` owns the single published ``CacheSnapshot``. Readers take the
current snapshot reference and never wait; rebuilds produce a complete new
snapshot off the event loop and swap it in with one assignment.

All rebuild triggers (on demand, staleness on read, periodic) share one
single-flight gate. A trigger that finds the gate held is dropped, not queued.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol

from .config_manager import get_config_value
from .lite_datetime_utils import LiteDateTimeParser
from .lite_fetcher import LiteICSFetchError
from .lite_models import (
    CacheSnapshot,
    CacheState,
    CacheStatus,
    DayDigestEntry,
    Occurrence,
    RebuildOutcome,
    RebuildResult,
)
from .lite_rrule_expander import LiteRRuleExpander
from .lite_section_extractor import (
    extract_class_from_summary,
    extract_professors,
    extract_sections,
    occurrence_text,
)
from .lite_streaming_parser import IcsSource, iter_event_records
from .timezone_utils import get_service_timezone, local_midnight, now_utc

if TYPE_CHECKING:
    from .health_tracker import HealthTracker

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS_AHEAD = 2
DEFAULT_STALE_AFTER_SECONDS = 900
DEFAULT_REFRESH_INTERVAL_SECONDS = 900


class LiteCacheNotReadyError(Exception):
    """Raised when no snapshot has been built yet.

    Distinct from an empty result: callers should retry later.
    """


class CalendarSource(Protocol):
    """Delivers exactly one complete calendar per call."""

    def fetch_calendar(self) -> AbstractAsyncContextManager[Path]:
        """Yield a readable path to the downloaded calendar.

        Raises:
            LiteICSFetchError: If the calendar is unavailable
        """
        ...


def occurrence_day(occurrence: Occurrence, tz: tzinfo) -> date:
    """Calendar date of an occurrence's start in the service timezone."""
    if isinstance(occurrence.start, datetime):
        return occurrence.start.astimezone(tz).date()
    return occurrence.start


def _sort_key(occurrence: Occurrence, tz: tzinfo) -> tuple[date, bool, datetime, str]:
    day = occurrence_day(occurrence, tz)
    if isinstance(occurrence.start, datetime):
        start = occurrence.start
    else:
        start = local_midnight(day, tz)
    # All-day occurrences sort before timed ones of the same day.
    return (day, not occurrence.is_all_day, start, occurrence.id)


def compute_window(today: date, window_days_ahead: int, tz: tzinfo) -> tuple[datetime, datetime]:
    """Half-open window ``[today 00:00, today + window_days_ahead + 1 00:00)``."""
    start = local_midnight(today, tz)
    end = local_midnight(today + timedelta(days=window_days_ahead + 1), tz)
    return start, end


def build_section_index(
    occurrences: tuple[Occurrence, ...], day: date, tz: tzinfo
) -> dict[str, tuple[Occurrence, ...]]:
    """Map each section token to the occurrences of ``day`` mentioning it."""
    index: dict[str, list[Occurrence]] = {}
    for occurrence in occurrences:
        if occurrence_day(occurrence, tz) != day:
            continue
        for token in extract_sections(occurrence_text(occurrence)):
            index.setdefault(token, []).append(occurrence)
    return {token: tuple(bucket) for token, bucket in index.items()}


def build_snapshot(
    source: IcsSource,
    *,
    expander: LiteRRuleExpander,
    today: date,
    window_days_ahead: int,
    built_at: datetime,
) -> CacheSnapshot:
    """Parse, expand and index a calendar into a new snapshot.

    Pure and synchronous; runs in a worker thread during rebuilds.

    Args:
        source: ICS content or path
        expander: Expander bound to the service timezone
        today: Calendar day the section index is built for
        window_days_ahead: Days after ``today`` included in the window
        built_at: Timestamp recorded on the snapshot

    Returns:
        Fully built snapshot
    """
    tz = expander.datetime_parser.default_timezone
    range_start, range_end = compute_window(today, window_days_ahead, tz)

    builder, records = iter_event_records(source)
    collected: dict[str, Occurrence] = {}
    failed = 0

    for record in records:
        try:
            occurrences = expander.expand(record, range_start, range_end)
        except (ValueError, TypeError, OverflowError, ArithmeticError):
            failed += 1
            logger.warning("Skipping event %r that failed to expand", record.uid, exc_info=True)
            continue

        for occurrence in occurrences:
            if occurrence.id in collected:
                logger.debug("Duplicate occurrence id %r ignored", occurrence.id)
                continue
            collected[occurrence.id] = occurrence

    recent = tuple(sorted(collected.values(), key=lambda o: _sort_key(o, tz)))
    index = build_section_index(recent, today, tz)

    logger.debug(
        "Built snapshot: %d records, %d dropped, %d failed, %d occurrences, %d sections",
        builder.records_seen,
        builder.records_dropped,
        failed,
        len(recent),
        len(index),
    )

    return CacheSnapshot(
        recent_occurrences=recent,
        today_section_index=index,
        built_at=built_at,
        built_for_day=today,
        records_seen=builder.records_seen,
        records_dropped=builder.records_dropped + failed,
    )


class CacheStore:
    """Owns the published snapshot and coordinates rebuilds."""

    def __init__(
        self,
        source: CalendarSource,
        settings: Any = None,
        *,
        time_provider: Optional[Callable[[], datetime]] = None,
        health_tracker: Optional[HealthTracker] = None,
    ) -> None:
        """Initialize the cache store.

        Args:
            source: Calendar source collaborator
            settings: Settings (dict or attribute object)
            time_provider: Returns the current aware UTC time
            health_tracker: Optional tracker receiving refresh outcomes
        """
        self.source = source
        self.timezone = get_service_timezone(get_config_value(settings, "timezone"))
        self.datetime_parser = LiteDateTimeParser(self.timezone)
        self.expander = LiteRRuleExpander(self.datetime_parser, settings)
        self.window_days_ahead = int(
            get_config_value(settings, "window_days_ahead", DEFAULT_WINDOW_DAYS_AHEAD)
        )
        self.stale_after_seconds = int(
            get_config_value(settings, "stale_after_seconds", DEFAULT_STALE_AFTER_SECONDS)
        )
        self.refresh_interval_seconds = int(
            get_config_value(
                settings, "refresh_interval_seconds", DEFAULT_REFRESH_INTERVAL_SECONDS
            )
        )
        self._now = time_provider or now_utc
        self.health_tracker = health_tracker

        self._snapshot: Optional[CacheSnapshot] = None
        self._state = CacheState.BUILDING
        self._last_error: Optional[str] = None
        self._rebuild_in_progress = False
        self._background_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Rebuild
    # ------------------------------------------------------------------

    def _try_acquire_gate(self) -> bool:
        # Synchronous check-and-set: nothing can interleave without an await.
        if self._rebuild_in_progress:
            return False
        self._rebuild_in_progress = True
        return True

    async def rebuild(self) -> RebuildResult:
        """Rebuild the snapshot unless a rebuild is already running.

        Returns:
            ``skipped`` when dropped by the gate, otherwise success or failure
        """
        if not self._try_acquire_gate():
            logger.debug("Rebuild already in progress, request dropped")
            return RebuildResult(outcome=RebuildOutcome.SKIPPED)
        return await self._run_rebuild()

    async def _run_rebuild(self) -> RebuildResult:
        """Run one rebuild; the gate must already be held and is released here."""
        try:
            today = self.datetime_parser.local_day(self._now())
            if self.health_tracker is not None:
                self.health_tracker.record_refresh_attempt()

            logger.debug("Rebuilding cache for %s (+%d days)", today, self.window_days_ahead)

            try:
                async with self.source.fetch_calendar() as calendar_path:
                    snapshot = await asyncio.to_thread(
                        build_snapshot,
                        calendar_path,
                        expander=self.expander,
                        today=today,
                        window_days_ahead=self.window_days_ahead,
                        built_at=self._now(),
                    )
            except LiteICSFetchError as e:
                return self._record_failure(f"Calendar unavailable: {e}")
            except Exception as e:
                logger.exception("Calendar parsing failed, keeping previous snapshot")
                return self._record_failure(f"Calendar parsing failed: {e}")

            self._snapshot = snapshot
            self._state = CacheState.READY
            self._last_error = None
            if self.health_tracker is not None:
                self.health_tracker.record_refresh_success(snapshot.occurrence_count)

            logger.info(
                "Cache rebuilt: %d occurrences, %d sections today",
                snapshot.occurrence_count,
                len(snapshot.today_section_index),
            )
            return RebuildResult(
                outcome=RebuildOutcome.SUCCESS, occurrence_count=snapshot.occurrence_count
            )
        finally:
            self._rebuild_in_progress = False

    def _record_failure(self, message: str) -> RebuildResult:
        logger.warning("Cache rebuild failed: %s", message)
        self._state = CacheState.ERROR
        self._last_error = message
        if self.health_tracker is not None:
            self.health_tracker.record_refresh_failure(message)
        return RebuildResult(outcome=RebuildOutcome.FAILURE, error_message=message)

    # ------------------------------------------------------------------
    # Staleness
    # ------------------------------------------------------------------

    def is_stale(self) -> bool:
        """True when there is no snapshot, it is too old, or it is for another day."""
        snapshot = self._snapshot
        if snapshot is None:
            return True
        now = self._now()
        if (now - snapshot.built_at).total_seconds() > self.stale_after_seconds:
            return True
        return snapshot.built_for_day != self.datetime_parser.local_day(now)

    def trigger_refresh_if_stale(self) -> bool:
        """Schedule one background rebuild if the snapshot is stale.

        The gate is taken before the task is created, so further calls made
        before the rebuild finishes schedule nothing.

        Returns:
            True if a background rebuild was scheduled
        """
        if not self.is_stale():
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, stale snapshot not refreshed")
            return False

        if not self._try_acquire_gate():
            return False

        task = loop.create_task(self._background_rebuild())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        logger.debug("Stale snapshot, background rebuild scheduled")
        return True

    async def _background_rebuild(self) -> None:
        try:
            await self._run_rebuild()
        except Exception:
            logger.exception("Background rebuild failed")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _current_snapshot(self) -> CacheSnapshot:
        snapshot = self._snapshot
        if snapshot is None:
            self.trigger_refresh_if_stale()
            raise LiteCacheNotReadyError("Calendar cache has not been built yet")
        return snapshot

    def get_snapshot(self) -> CacheSnapshot:
        """Return the current snapshot.

        Raises:
            LiteCacheNotReadyError: If no snapshot has been built yet
        """
        snapshot = self._current_snapshot()
        self.trigger_refresh_if_stale()
        return snapshot

    def query(self, section: Optional[str] = None, day: Optional[date] = None) -> list[Occurrence]:
        """Query the cache.

        - no section: the whole recent window (``day`` alone is ignored)
        - section only: today's indexed bucket for that section
        - section and day: occurrences of that day whose text contains ``section``

        Raises:
            LiteCacheNotReadyError: If no snapshot has been built yet
        """
        if not section:
            snapshot = self._current_snapshot()
            result = list(snapshot.recent_occurrences)
            self.trigger_refresh_if_stale()
            return result
        if day is None:
            return self.query_by_section(section)
        return self.query_by_section_and_date(section, day)

    def query_by_section(self, section: str) -> list[Occurrence]:
        """Occurrences of the snapshot's day indexed under ``section``."""
        snapshot = self._current_snapshot()
        result = list(snapshot.today_section_index.get(section, ()))
        self.trigger_refresh_if_stale()
        return result

    def query_by_section_and_date(self, section: str, day: date) -> list[Occurrence]:
        """Occurrences on ``day`` whose summary or description contains ``section``."""
        snapshot = self._current_snapshot()
        result = [
            occurrence
            for occurrence in snapshot.recent_occurrences
            if occurrence_day(occurrence, self.timezone) == day
            and section in occurrence_text(occurrence)
        ]
        self.trigger_refresh_if_stale()
        return result

    def day_digest(self, day: Optional[date] = None) -> list[DayDigestEntry]:
        """All occurrences of ``day`` (default today) with their derived tokens.

        Raises:
            LiteCacheNotReadyError: If no snapshot has been built yet
        """
        snapshot = self._current_snapshot()
        target_day = day or self.datetime_parser.local_day(self._now())

        entries = []
        for occurrence in snapshot.recent_occurrences:
            if occurrence_day(occurrence, self.timezone) != target_day:
                continue
            text = occurrence_text(occurrence)
            entries.append(
                DayDigestEntry(
                    occurrence=occurrence,
                    sections=extract_sections(text),
                    class_code=extract_class_from_summary(occurrence.summary)
                    or extract_class_from_summary(occurrence.description),
                    professors=extract_professors(text),
                )
            )

        self.trigger_refresh_if_stale()
        return entries

    def status(self) -> CacheStatus:
        """Point-in-time cache status."""
        snapshot = self._snapshot
        return CacheStatus(
            state=self._state,
            occurrence_count=snapshot.occurrence_count if snapshot else 0,
            built_at=snapshot.built_at if snapshot else None,
            built_for_day=snapshot.built_for_day if snapshot else None,
            last_error=self._last_error,
            rebuild_in_progress=self._rebuild_in_progress,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run_periodic_refresh(self, stop_event: asyncio.Event) -> None:
        """Rebuild immediately, then every ``refresh_interval_seconds`` until stopped."""
        interval = self.refresh_interval_seconds
        logger.debug("Periodic refresh starting with interval %d seconds", interval)

        while not stop_event.is_set():
            try:
                result = await self.rebuild()
                logger.debug("Periodic rebuild outcome: %s", result.outcome)
            except Exception:
                logger.exception("Periodic refresh unexpected error")

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=interval)

    async def shutdown(self) -> None:
        """Cancel background rebuilds and wait for them to finish."""
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()
