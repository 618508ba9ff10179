"""RRULE expansion logic for SectionCal Lite ICS parser."""

import hashlib
import logging
import re
import time as time_module
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Any, Optional

from dateutil.rrule import rruleset, rrulestr

from .config_manager import get_config_value
from .lite_datetime_utils import LiteDateTimeParser, LiteParsedDateTime
from .lite_models import Occurrence, RawEventRecord
from .timezone_utils import local_midnight

logger = logging.getLogger(__name__)

_UNTIL_PATTERN = re.compile(r"UNTIL=([0-9TZ]+)", re.IGNORECASE)
_INSTANCE_ID_FORMAT = "%Y%m%dT%H%M%SZ"

# RRULE part -> (minimum, maximum, zero allowed)
_RULE_PART_RANGES: dict[str, tuple[int, int, bool]] = {
    "BYSECOND": (0, 60, True),
    "BYMINUTE": (0, 59, True),
    "BYHOUR": (0, 23, True),
    "BYMONTHDAY": (-31, 31, False),
    "BYYEARDAY": (-366, 366, False),
    "BYWEEKNO": (-53, 53, False),
    "BYMONTH": (1, 12, True),
    "BYSETPOS": (-366, 366, False),
}


class LiteRRuleExpansionError(Exception):
    """Raised when an RRULE cannot be evaluated."""


class LiteRRuleParseError(LiteRRuleExpansionError):
    """Raised when an RRULE string cannot be parsed."""


@dataclass
class RRuleExpanderConfig:
    """Configuration for RRULE expansion.

    Consolidates all RRULE-related settings with explicit defaults.
    """

    max_occurrences_per_rule: int = 250
    expansion_time_budget_ms_per_rule: int = 200
    enable_rrule_expansion: bool = True

    @classmethod
    def from_settings(cls, settings: Any) -> "RRuleExpanderConfig":
        """Extract RRULE configuration from settings object.

        Args:
            settings: Configuration object with RRULE settings

        Returns:
            RRuleExpanderConfig with values from settings or defaults
        """
        return cls(
            max_occurrences_per_rule=int(
                get_config_value(settings, "max_occurrences_per_rule", 250)
            ),
            expansion_time_budget_ms_per_rule=int(
                get_config_value(settings, "expansion_time_budget_ms_per_rule", 200)
            ),
            enable_rrule_expansion=bool(
                get_config_value(settings, "enable_rrule_expansion", True)
            ),
        )


def _rule_part_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as e:
        raise LiteRRuleParseError(f"{name} value {raw!r} is not an integer") from e


def validate_rrule_parts(rrule_string: str) -> None:
    """Reject rule parts that RFC 5545 forbids but dateutil accepts.

    dateutil loops forever on ``INTERVAL=0`` and treats ``BYMONTHDAY=0`` as
    "no restriction", so both are refused before the rule is built.

    Raises:
        LiteRRuleParseError: On a non-positive INTERVAL or COUNT, or an
            out-of-range BY* value
    """
    body = rrule_string.strip()
    if body[:6].upper() == "RRULE:":
        body = body[6:]

    for part in body.split(";"):
        name, _, value = part.partition("=")
        name = name.strip().upper()

        if name in ("INTERVAL", "COUNT"):
            if _rule_part_int(name, value) < 1:
                raise LiteRRuleParseError(f"{name} must be at least 1, got {value!r}")
            continue

        bounds = _RULE_PART_RANGES.get(name)
        if bounds is None:
            continue
        low, high, zero_allowed = bounds
        for item in value.split(","):
            number = _rule_part_int(name, item)
            if not low <= number <= high or (number == 0 and not zero_allowed):
                raise LiteRRuleParseError(f"{name} value {item.strip()!r} out of range")


def synthetic_event_id(record: RawEventRecord) -> str:
    """Deterministic fallback id for a VEVENT without UID."""
    digest = hashlib.sha1(  # nosec B324 - identifier, not security
        f"{record.start}|{record.summary}|{record.description}".encode()
    ).hexdigest()
    return f"no-uid-{digest[:12]}"


class LiteRRuleExpander:
    """Expands raw event records into concrete occurrences within a window.

    Non-recurring records yield at most one occurrence. Records carrying an
    RRULE are expanded with python-dateutil; if the rule cannot be evaluated
    the record degrades to the non-recurring behaviour.
    """

    def __init__(self, datetime_parser: LiteDateTimeParser, settings: Any = None):
        """Initialize expander.

        Args:
            datetime_parser: Parser bound to the service timezone
            settings: Optional settings object with RRULE options
        """
        self.datetime_parser = datetime_parser
        self.config = RRuleExpanderConfig.from_settings(settings)
        self.fallback_count = 0

    def expand(
        self,
        record: RawEventRecord,
        range_start: datetime,
        range_end: datetime,
    ) -> list[Occurrence]:
        """Expand one record over ``[range_start, range_end)``.

        Args:
            record: Raw VEVENT properties
            range_start: Inclusive, timezone-aware window start
            range_end: Exclusive, timezone-aware window end

        Returns:
            Occurrences in chronological order (possibly empty)
        """
        start = self.datetime_parser.parse(record.start, record.start_is_date_only)
        if start is None:
            logger.debug("Dropping event %r with unparseable DTSTART %r", record.uid, record.start)
            return []

        end = self.datetime_parser.parse(record.end, record.end_is_date_only)
        base_id = record.uid or synthetic_event_id(record)

        if record.rrule and self.config.enable_rrule_expansion:
            try:
                return self._expand_recurring(record, base_id, start, end, range_start, range_end)
            except LiteRRuleExpansionError as e:
                self.fallback_count += 1
                logger.warning(
                    "RRULE expansion failed for event %r, treating as single event: %s",
                    base_id,
                    e,
                )

        return self._expand_single(record, base_id, start, end, range_start, range_end)

    def _expand_single(
        self,
        record: RawEventRecord,
        event_id: str,
        start: LiteParsedDateTime,
        end: Optional[LiteParsedDateTime],
        range_start: datetime,
        range_end: datetime,
    ) -> list[Occurrence]:
        if start.is_all_day:
            first_day = self.datetime_parser.local_day(range_start)
            last_day = self.datetime_parser.local_day(range_end)
            if not first_day <= start.day < last_day:
                return []
            return [self._build_all_day(record, event_id, start.day, is_recurring=False)]

        if not range_start <= start.timestamp < range_end:
            return []

        end_ts = end.timestamp if end is not None and not end.is_all_day else start.timestamp
        end_ts = max(end_ts, start.timestamp)

        return [
            Occurrence.from_raw_text(
                id=event_id,
                raw_summary=record.summary,
                raw_description=record.description,
                start=start.timestamp,
                end=end_ts,
            )
        ]

    def _expand_recurring(
        self,
        record: RawEventRecord,
        base_id: str,
        start: LiteParsedDateTime,
        end: Optional[LiteParsedDateTime],
        range_start: datetime,
        range_end: datetime,
    ) -> list[Occurrence]:
        rule_set = self._build_rule_set(record, start)

        duration = timedelta(0)
        if end is not None and not start.is_all_day:
            duration = max(end.timestamp - start.timestamp, timedelta(0))

        master_start = start.timestamp
        master_tz = master_start.tzinfo
        master_time = master_start.timetz().replace(tzinfo=None)

        if start.is_all_day:
            # All-day instances are selected by local calendar date.
            tz = self.datetime_parser.default_timezone
            first_day = self.datetime_parser.local_day(range_start)
            last_day = self.datetime_parser.local_day(range_end)
            lower = local_midnight(first_day, tz)
            upper = local_midnight(last_day, tz)
        else:
            lower, upper = range_start, range_end

        occurrences: list[Occurrence] = []
        try:
            # Both bounds are inclusive for timed rule instants.
            instants = list(self._iter_instants(rule_set, lower, upper, base_id))
        except (ValueError, TypeError, OverflowError) as e:
            raise LiteRRuleExpansionError(f"Failed to evaluate RRULE {record.rrule!r}: {e}") from e

        for instant in instants:
            instance_start = self._pin_time_of_day(instant, master_tz, master_time)

            if start.is_all_day:
                if not first_day <= instance_start.date() < last_day:
                    continue
                occurrences.append(
                    self._build_all_day(
                        record,
                        f"{base_id}_{instance_start.astimezone(UTC).strftime(_INSTANCE_ID_FORMAT)}",
                        instance_start.date(),
                        is_recurring=True,
                    )
                )
                continue

            occurrences.append(
                Occurrence.from_raw_text(
                    id=f"{base_id}_{instance_start.astimezone(UTC).strftime(_INSTANCE_ID_FORMAT)}",
                    raw_summary=record.summary,
                    raw_description=record.description,
                    start=instance_start,
                    end=instance_start + duration,
                    is_recurring=True,
                )
            )

        logger.debug("Expanded RRULE for event %r into %d occurrences", base_id, len(occurrences))
        return occurrences

    def _iter_instants(
        self,
        rule_set: rruleset,
        range_start: datetime,
        range_end: datetime,
        base_id: str,
    ) -> Iterator[datetime]:
        """Yield rule instants in ``[range_start, range_end]``.

        Iteration starts at DTSTART so the time budget is checked on every
        generated instant, including those before the window. Stops at the
        per-rule occurrence cap or when the budget runs out.
        """
        limit = self.config.max_occurrences_per_rule
        budget_ms = self.config.expansion_time_budget_ms_per_rule
        started = time_module.monotonic()
        count = 0
        for instant in rule_set:
            elapsed_ms = (time_module.monotonic() - started) * 1000
            if elapsed_ms > budget_ms:
                logger.warning(
                    "RRULE for event %r exceeded time budget (%dms > %dms) after %d occurrences",
                    base_id,
                    elapsed_ms,
                    budget_ms,
                    count,
                )
                return
            if instant < range_start:
                continue
            if instant > range_end:
                return
            if count >= limit:
                logger.warning("RRULE for event %r limited to %d occurrences", base_id, limit)
                return
            count += 1
            yield instant

    def _build_rule_set(self, record: RawEventRecord, start: LiteParsedDateTime) -> rruleset:
        """Build an rruleset from RRULE, EXDATE and RDATE values."""
        validate_rrule_parts(record.rrule or "")
        rrule_string = self._normalize_until(record.rrule or "")

        try:
            rule_set = rrulestr(rrule_string, dtstart=start.timestamp, forceset=True)
        except (ValueError, TypeError, KeyError) as e:
            raise LiteRRuleParseError(f"Invalid RRULE {record.rrule!r}: {e}") from e

        for raw in record.exdates:
            parsed = self.datetime_parser.parse(raw, start.is_all_day)
            if parsed is None:
                logger.warning("Ignoring unparseable EXDATE %r for event %r", raw, record.uid)
                continue
            rule_set.exdate(self._align_to_master(parsed, start))

        for raw in record.rdates:
            parsed = self.datetime_parser.parse(raw, start.is_all_day)
            if parsed is None:
                logger.warning("Ignoring unparseable RDATE %r for event %r", raw, record.uid)
                continue
            rule_set.rdate(self._align_to_master(parsed, start))

        return rule_set

    def _align_to_master(self, value: LiteParsedDateTime, master: LiteParsedDateTime) -> datetime:
        """Make an EXDATE/RDATE comparable to the master's instances.

        A date-only exception on a timed series refers to the instance on that
        day, so it takes the master's time of day.
        """
        if value.is_all_day and not master.is_all_day:
            return datetime.combine(value.day, master.timestamp.timetz())
        return value.timestamp

    def _normalize_until(self, rrule_string: str) -> str:
        """Rewrite a floating or date-only UNTIL as UTC.

        dateutil refuses a naive UNTIL when DTSTART is timezone-aware.
        """
        match = _UNTIL_PATTERN.search(rrule_string)
        if match is None or match.group(1).upper().endswith("Z"):
            return rrule_string

        raw_until = match.group(1)
        parsed = self.datetime_parser.parse(raw_until)
        if parsed is None:
            raise LiteRRuleParseError(f"Invalid UNTIL value {raw_until!r}")

        if parsed.is_all_day:
            # A date-only UNTIL includes the whole day.
            until = datetime.combine(
                parsed.day, time(23, 59, 59), tzinfo=self.datetime_parser.default_timezone
            )
        else:
            until = parsed.timestamp

        until_utc = until.astimezone(UTC).strftime(_INSTANCE_ID_FORMAT)
        return rrule_string[: match.start(1)] + until_utc + rrule_string[match.end(1) :]

    @staticmethod
    def _pin_time_of_day(instant: datetime, master_tz: Any, master_time: time) -> datetime:
        """Force an instance's wall-clock time to the master's time of day."""
        local = instant.astimezone(master_tz) if master_tz is not None else instant
        return local.replace(
            hour=master_time.hour,
            minute=master_time.minute,
            second=master_time.second,
            microsecond=0,
        )

    def _build_all_day(
        self,
        record: RawEventRecord,
        event_id: str,
        day: date,
        is_recurring: bool,
    ) -> Occurrence:
        return Occurrence.from_raw_text(
            id=event_id,
            raw_summary=record.summary,
            raw_description=record.description,
            start=day,
            end=day,
            is_all_day=True,
            is_recurring=is_recurring,
        )
