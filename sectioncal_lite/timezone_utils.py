"""Clock and service timezone utilities for sectioncal_lite."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo

logger = logging.getLogger(__name__)

# Default service timezone for floating and TZID-qualified calendar times
DEFAULT_SERVICE_TIMEZONE = "Europe/Rome"

TEST_TIME_ENV_VAR = "SECTIONCAL_TEST_TIME"


class TimeProvider:
    """Provides current time with test time override support."""

    def now_utc(self) -> datetime.datetime:
        """Return current UTC time with tzinfo.

        Can be overridden for testing via the SECTIONCAL_TEST_TIME environment variable.
        Format: ISO 8601 datetime string (e.g., "2025-01-15T08:20:00+01:00")

        Returns:
            Current time in UTC with timezone info
        """
        test_time = os.environ.get(TEST_TIME_ENV_VAR)
        if test_time:
            try:
                from dateutil import parser as date_parser

                dt = date_parser.isoparse(test_time)

                if dt.tzinfo is not None:
                    return dt.astimezone(datetime.timezone.utc)
                # Assume naive datetime is already UTC
                return dt.replace(tzinfo=datetime.timezone.utc)

            except ValueError as e:
                logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV_VAR, test_time, e)
                # Fall through to real time

        return datetime.datetime.now(datetime.timezone.utc)


_time_provider = TimeProvider()


def now_utc() -> datetime.datetime:
    """Get current UTC time (convenience function).

    Returns:
        Current time in UTC
    """
    return _time_provider.now_utc()


def get_service_timezone(name: str | None = None) -> zoneinfo.ZoneInfo:
    """Resolve the service timezone, falling back to the default when invalid.

    Args:
        name: IANA timezone name (e.g. "Europe/Rome"); None selects the default

    Returns:
        ZoneInfo instance for the service timezone
    """
    if not name:
        return zoneinfo.ZoneInfo(DEFAULT_SERVICE_TIMEZONE)
    try:
        return zoneinfo.ZoneInfo(name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Invalid timezone %r, falling back to %r", name, DEFAULT_SERVICE_TIMEZONE
        )
        return zoneinfo.ZoneInfo(DEFAULT_SERVICE_TIMEZONE)


def local_midnight(day: datetime.date, tz: datetime.tzinfo) -> datetime.datetime:
    """Timezone-aware 00:00 of ``day`` in ``tz``."""
    return datetime.datetime.combine(day, datetime.time.min, tzinfo=tz)
