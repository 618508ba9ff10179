"""Data models for ICS calendar processing - SectionCal Lite version."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .lite_ics_text import unescape_ics_text


@dataclass
class RawEventRecord:
    """Unparsed properties of a single VEVENT.

    Built incrementally by the event record builder and discarded once the
    record has been expanded. Text values are kept exactly as they appear in
    the ICS stream (escaped).
    """

    start: Optional[str] = None
    start_is_date_only: bool = False
    end: Optional[str] = None
    end_is_date_only: bool = False
    summary: str = ""
    description: str = ""
    uid: str = ""
    rrule: Optional[str] = None
    exdates: list[str] = field(default_factory=list)
    rdates: list[str] = field(default_factory=list)


class Occurrence(BaseModel):
    """One concrete, schedulable instance of a calendar event."""

    id: str = Field(..., description="Event or instance ID")
    summary: str = Field(default="", description="Event title, escapes resolved")
    description: str = Field(default="", description="Event description, escapes resolved")

    # Timed occurrences carry aware datetimes, all-day occurrences a calendar date.
    start: Union[datetime, date] = Field(..., description="Start instant or all-day date")
    end: Union[datetime, date] = Field(..., description="End instant or all-day date")
    is_all_day: bool = Field(default=False, description="All-day event flag")
    is_recurring: bool = Field(default=False, description="True for RRULE-expanded instances")

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_raw_text(
        cls,
        *,
        id: str,  # noqa: A002
        raw_summary: str,
        raw_description: str,
        start: Union[datetime, date],
        end: Union[datetime, date],
        is_all_day: bool = False,
        is_recurring: bool = False,
    ) -> "Occurrence":
        """Build an occurrence from escaped ICS text values.

        This is the only place where ICS text escapes are resolved.
        """
        return cls(
            id=id,
            summary=unescape_ics_text(raw_summary),
            description=unescape_ics_text(raw_description),
            start=start,
            end=end,
            is_all_day=is_all_day,
            is_recurring=is_recurring,
        )

    @field_serializer("start", "end")
    def serialize_datetime(self, value: Union[datetime, date]) -> str:
        """Serialize datetime or date to ISO format."""
        return value.isoformat()


class CacheSnapshot(BaseModel):
    """Immutable, atomically published view of the cache contents."""

    recent_occurrences: tuple[Occurrence, ...] = Field(
        default_factory=tuple, description="Occurrences within the recent window"
    )
    today_section_index: dict[str, tuple[Occurrence, ...]] = Field(
        default_factory=dict, description="Section token -> occurrences of built_for_day"
    )
    built_at: datetime = Field(..., description="When the snapshot was built (UTC)")
    built_for_day: date = Field(..., description="Calendar day the section index covers")

    # Build statistics
    records_seen: int = 0
    records_dropped: int = 0

    model_config = ConfigDict(frozen=True)

    @property
    def occurrence_count(self) -> int:
        """Number of occurrences in the recent window."""
        return len(self.recent_occurrences)


class CacheState(str, Enum):
    """Lifecycle states of the cache store."""

    BUILDING = "building"
    READY = "ready"
    ERROR = "error"


class RebuildOutcome(str, Enum):
    """Result kinds of a rebuild request."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class RebuildResult(BaseModel):
    """Result of a single rebuild request."""

    outcome: RebuildOutcome
    occurrence_count: int = 0
    error_message: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True)

    @property
    def success(self) -> bool:
        """True when a new snapshot was published."""
        return self.outcome == RebuildOutcome.SUCCESS


class CacheStatus(BaseModel):
    """Point-in-time status of the cache store."""

    state: CacheState
    occurrence_count: int = 0
    built_at: Optional[datetime] = None
    built_for_day: Optional[date] = None
    last_error: Optional[str] = None
    rebuild_in_progress: bool = False

    model_config = ConfigDict(use_enum_values=True)

    @field_serializer("built_at", "built_for_day", when_used="unless-none")
    def serialize_datetime(self, value: Union[datetime, date]) -> str:
        """Serialize datetime fields to ISO format."""
        return value.isoformat()


class DayDigestEntry(BaseModel):
    """One occurrence of a day with its derived routing tokens.

    Consumed by an external notification component; the core holds no notion
    of recipients or delivery channels.
    """

    occurrence: Occurrence
    sections: list[str] = Field(default_factory=list, description="Crude section tokens")
    class_code: Optional[str] = Field(default=None, description="Explicit CLASSE token")
    professors: list[str] = Field(default_factory=list, description="Professor names")
