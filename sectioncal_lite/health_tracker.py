"""Health tracking and monitoring for sectioncal_lite server."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Any, Optional

# No successful refresh for this long means degraded
DEGRADED_AFTER_SECONDS = 1800


@dataclass
class HealthStatus:
    """Health status information for the server."""

    status: str  # "ok" or "degraded"
    uptime_seconds: int
    pid: int
    event_count: int
    refresh_attempts: int
    refresh_failures: int
    last_refresh_success_age_seconds: Optional[int]
    last_refresh_error: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation."""
        return {
            "status": self.status,
            "uptime_s": self.uptime_seconds,
            "pid": self.pid,
            "event_count": self.event_count,
            "refresh_attempts": self.refresh_attempts,
            "refresh_failures": self.refresh_failures,
            "last_refresh_success_age_s": self.last_refresh_success_age_seconds,
            "last_refresh_error": self.last_refresh_error,
        }


class HealthTracker:
    """Tracks refresh outcomes for monitoring.

    Only touched from the event loop thread.
    """

    def __init__(self) -> None:
        """Initialize health tracker with default values."""
        self._start_time: float = time.time()
        self._last_refresh_attempt: Optional[float] = None
        self._last_refresh_success: Optional[float] = None
        self._last_refresh_error: Optional[str] = None
        self._current_event_count: int = 0
        self._refresh_attempts: int = 0
        self._refresh_failures: int = 0

    def record_refresh_attempt(self) -> None:
        """Record that a refresh attempt was made."""
        self._last_refresh_attempt = time.time()
        self._refresh_attempts += 1

    def record_refresh_success(self, event_count: int) -> None:
        """Record a successful refresh with event count.

        Args:
            event_count: Number of occurrences in the window after refresh
        """
        self._last_refresh_success = time.time()
        self._current_event_count = event_count
        self._last_refresh_error = None

    def record_refresh_failure(self, error: str) -> None:
        """Record a failed refresh.

        Args:
            error: Human-readable failure reason
        """
        self._refresh_failures += 1
        self._last_refresh_error = error

    def get_uptime_seconds(self) -> int:
        """Get server uptime in seconds.

        Returns:
            Uptime in seconds since tracker initialization
        """
        return int(time.time() - self._start_time)

    def get_last_refresh_age_seconds(self) -> Optional[int]:
        """Get age of last successful refresh in seconds.

        Returns:
            Seconds since last successful refresh, or None if never refreshed
        """
        if self._last_refresh_success is None:
            return None
        return int(time.time() - self._last_refresh_success)

    def determine_overall_status(self) -> str:
        """Determine overall health status.

        Returns:
            "ok" or "degraded"
        """
        last_success_age = self.get_last_refresh_age_seconds()

        if last_success_age is None:
            return "degraded"

        if last_success_age > DEGRADED_AFTER_SECONDS:
            return "degraded"

        return "ok"

    def get_health_status(self) -> HealthStatus:
        """Get comprehensive health status."""
        return HealthStatus(
            status=self.determine_overall_status(),
            uptime_seconds=self.get_uptime_seconds(),
            pid=os.getpid(),
            event_count=self._current_event_count,
            refresh_attempts=self._refresh_attempts,
            refresh_failures=self._refresh_failures,
            last_refresh_success_age_seconds=self.get_last_refresh_age_seconds(),
            last_refresh_error=self._last_refresh_error,
        )
