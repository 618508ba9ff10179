"""DateTime parsing utilities for ICS calendar processing - SectionCal Lite.

This module converts raw RFC5545 DATE / DATE-TIME strings into absolute,
timezone-aware timestamps.

All local (floating or TZID-qualified) times are interpreted in the single
service timezone. TZID values are stripped, not resolved, and VTIMEZONE
blocks are never consulted.
"""

import logging
import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

# All-day values are anchored at local noon so that timezone shifts never
# move them across a calendar-date boundary.
ALL_DAY_ANCHOR_TIME = time(12, 0)

_DATE_ONLY_PATTERN = re.compile(r"^\d{8}$")
_DATETIME_FORMAT = "%Y%m%dT%H%M%S"
_DATE_FORMAT = "%Y%m%d"


def ensure_timezone_aware(dt: datetime) -> datetime:
    """Ensure datetime is timezone-aware.

    Args:
        dt: Datetime to make timezone-aware

    Returns:
        Timezone-aware datetime (UTC if originally naive)
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


@dataclass(frozen=True)
class LiteParsedDateTime:
    """A normalized ICS date-time value.

    Attributes:
        timestamp: Absolute, timezone-aware instant. Local noon for all-day values.
        is_all_day: True when the source value was a DATE (``YYYYMMDD``)
        is_utc: True when the source value carried the ``Z`` suffix
    """

    timestamp: datetime
    is_all_day: bool
    is_utc: bool = False

    @property
    def day(self) -> date:
        """Calendar date of the value in its own timezone."""
        return self.timestamp.date()


def strip_datetime_prefix(raw: str) -> str:
    """Remove ``TZID=...:`` and ``VALUE=DATE:`` style prefixes from a raw value.

    Values handed over by the line reader are already separated from their
    parameters; this handles strings that still embed them.
    """
    value = raw.strip()
    # Parameter prefixes always end in a colon before the digits start.
    while value[:1].isalpha() and ":" in value:
        value = value.split(":", 1)[1].strip()
    return value


class LiteDateTimeParser:
    """Parser for raw iCalendar DATE / DATE-TIME strings."""

    def __init__(self, default_timezone: Optional[tzinfo | str] = None):
        """Initialize datetime parser.

        Args:
            default_timezone: Service timezone used for floating and TZID values
                (IANA name or tzinfo, defaults to UTC)
        """
        if isinstance(default_timezone, str):
            default_timezone = ZoneInfo(default_timezone)
        self.default_timezone: tzinfo = default_timezone or UTC

    def parse(self, raw: Optional[str], date_only: bool = False) -> Optional[LiteParsedDateTime]:
        """Parse a raw ICS date-time string.

        Args:
            raw: Value such as ``20250115``, ``20250115T090000Z``,
                ``20250115T090000`` or ``TZID=Europe/Rome:20250115T090000``
            date_only: True when the property carried ``VALUE=DATE``

        Returns:
            Parsed value, or None for empty/unparseable input
        """
        if not raw:
            return None

        value = strip_datetime_prefix(raw)
        if not value:
            return None

        try:
            if _DATE_ONLY_PATTERN.match(value):
                day = datetime.strptime(value, _DATE_FORMAT).date()
                return self.all_day(day)

            if date_only:
                # VALUE=DATE with a trailing time component; keep the date part.
                day = datetime.strptime(value[:8], _DATE_FORMAT).date()
                return self.all_day(day)

            if len(value) >= 15 and value.endswith("Z"):
                naive = datetime.strptime(value[:15], _DATETIME_FORMAT)
                return LiteParsedDateTime(
                    timestamp=naive.replace(tzinfo=UTC), is_all_day=False, is_utc=True
                )

            naive = datetime.strptime(value[:15], _DATETIME_FORMAT)
            return LiteParsedDateTime(
                timestamp=naive.replace(tzinfo=self.default_timezone), is_all_day=False
            )
        except ValueError:
            logger.debug("Unparseable ICS date-time value %r", raw)
            return None

    def all_day(self, day: date) -> LiteParsedDateTime:
        """Build the normalized value for an all-day calendar date."""
        anchor = datetime.combine(day, ALL_DAY_ANCHOR_TIME, tzinfo=self.default_timezone)
        return LiteParsedDateTime(timestamp=anchor, is_all_day=True)

    def local_day(self, dt: datetime) -> date:
        """Calendar date of an instant in the service timezone."""
        return ensure_timezone_aware(dt).astimezone(self.default_timezone).date()
