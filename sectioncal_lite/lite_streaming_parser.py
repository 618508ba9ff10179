"""Memory-efficient streaming ICS parser for large calendar files - SectionCal Lite.

This module handles streaming parsing of ICS files to minimize memory usage,
processing events incrementally as they are read from the source:

- ``LiteICSLineReader`` turns raw text into unfolded ``(name, params, value)``
  properties, one logical line at a time.
- ``LiteEventRecordBuilder`` groups those properties into ``RawEventRecord``
  objects, one VEVENT at a time.

Neither component ever holds more than one event in memory.
"""

import codecs
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import IO, NamedTuple, Optional, Union

from .lite_models import RawEventRecord

logger = logging.getLogger(__name__)

# Streaming parser constants
DEFAULT_CHUNK_SIZE = 8192  # 8KB chunks for streaming
DEFAULT_STREAM_DECODE_ERRORS = "replace"  # UTF-8 decode error handling

IcsSource = Union[str, Path, IO[str], IO[bytes], Iterable[str]]


class LiteICSProperty(NamedTuple):
    """A single unfolded ICS content line."""

    name: str
    params: dict[str, str]
    value: str

    @property
    def is_date_only(self) -> bool:
        """True when the property declares ``VALUE=DATE``."""
        return self.params.get("VALUE", "").upper() == "DATE"


def split_content_line(line: str) -> Optional[LiteICSProperty]:
    """Split a logical ICS line into name, parameters and value.

    The property name is the text before the first ``;`` or ``:``. The value
    starts after the first colon that is not inside a quoted parameter value.

    Args:
        line: Unfolded content line without line terminator

    Returns:
        Parsed property, or None when the line has no usable colon
    """
    in_quotes = False
    value_split = -1
    for idx, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ":" and not in_quotes:
            value_split = idx
            break

    if value_split <= 0:
        return None

    head = line[:value_split]
    value = line[value_split + 1 :]

    name, _, raw_params = head.partition(";")
    name = name.strip().upper()
    if not name:
        return None

    params: dict[str, str] = {}
    if raw_params:
        for raw_param in _split_params(raw_params):
            key, sep, param_value = raw_param.partition("=")
            if not sep:
                continue
            params[key.strip().upper()] = param_value.strip().strip('"')

    return LiteICSProperty(name, params, value)


def _split_params(raw_params: str) -> list[str]:
    """Split a parameter list on semicolons outside quotes."""
    parts: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in raw_params:
        if char == '"':
            in_quotes = not in_quotes
        if char == ";" and not in_quotes:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


class LiteICSLineReader:
    """Single-pass reader yielding unfolded ICS properties.

    Accepts ICS content as a string, a filesystem path, a text or binary file
    object, or any iterable of lines. Binary input is decoded incrementally
    as UTF-8 so multi-byte characters split across chunks survive.

    A reader is an iterator and cannot be restarted; create a fresh one per
    parse.
    """

    def __init__(
        self,
        source: IcsSource,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        decode_errors: str = DEFAULT_STREAM_DECODE_ERRORS,
    ) -> None:
        """Initialize the line reader.

        Args:
            source: ICS content, path, file object or iterable of lines
            chunk_size: Size of chunks read from file objects
            decode_errors: UTF-8 decode error handling for binary sources
        """
        self.chunk_size = chunk_size
        self.decode_errors = decode_errors
        self.lines_discarded = 0
        self._properties = self._iter_properties(source)

    def __iter__(self) -> "LiteICSLineReader":
        return self

    def __next__(self) -> LiteICSProperty:
        return next(self._properties)

    def _iter_properties(self, source: IcsSource) -> Iterator[LiteICSProperty]:
        pending: Optional[str] = None

        for raw_line in self._iter_raw_lines(source):
            line = raw_line.rstrip("\r\n")

            if line[:1] in (" ", "\t"):
                if pending is not None:
                    # Folded continuation: drop the single leading whitespace char.
                    pending += line[1:]
                continue

            if not line.strip():
                continue

            if pending is not None:
                prop = self._split(pending)
                if prop is not None:
                    yield prop
            pending = line

        if pending is not None:
            prop = self._split(pending)
            if prop is not None:
                yield prop

    def _split(self, logical_line: str) -> Optional[LiteICSProperty]:
        prop = split_content_line(logical_line)
        if prop is None:
            self.lines_discarded += 1
            logger.debug("Discarding malformed ICS line: %.80r", logical_line)
        return prop

    def _iter_raw_lines(self, source: IcsSource) -> Iterator[str]:
        if isinstance(source, Path):
            with source.open("rb") as f:
                yield from self._iter_stream_lines(f)
        elif isinstance(source, str):
            yield from source.split("\n")
        elif hasattr(source, "read"):
            yield from self._iter_stream_lines(source)  # type: ignore[arg-type]
        else:
            for line in source:
                yield line.rstrip("\r\n")

    def _iter_stream_lines(self, stream: Union[IO[str], IO[bytes]]) -> Iterator[str]:
        """Read a file object in chunks, yielding complete lines."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors=self.decode_errors)
        buffer = ""

        while True:
            chunk = stream.read(self.chunk_size)
            if not chunk:
                break
            if isinstance(chunk, bytes):
                chunk = decoder.decode(chunk, final=False)
            buffer += chunk
            lines = buffer.split("\n")
            # Keep the trailing partial line for the next chunk.
            buffer = lines.pop()
            yield from lines

        buffer += decoder.decode(b"", final=True)
        if buffer:
            yield buffer


class LiteEventRecordBuilder:
    """Assembles ``RawEventRecord`` objects from a property stream.

    Only the properties consumed downstream are captured. Properties of
    components nested inside a VEVENT (VALARM and friends) are ignored.
    """

    def __init__(self) -> None:
        """Initialize builder statistics."""
        self.records_seen = 0
        self.records_dropped = 0

    def iter_records(self, properties: Iterable[LiteICSProperty]) -> Iterator[RawEventRecord]:
        """Yield one record per complete VEVENT carrying a DTSTART.

        Args:
            properties: Property stream, typically a ``LiteICSLineReader``

        Yields:
            Raw event records in source order
        """
        record: Optional[RawEventRecord] = None
        nested_depth = 0

        for prop in properties:
            name = prop.name
            value = prop.value

            if name == "BEGIN":
                component = value.strip().upper()
                if component == "VEVENT" and record is None:
                    record = RawEventRecord()
                    nested_depth = 0
                elif record is not None:
                    nested_depth += 1
                continue

            if name == "END":
                component = value.strip().upper()
                if record is None:
                    continue
                if nested_depth:
                    nested_depth -= 1
                    continue
                if component == "VEVENT":
                    finished, record = record, None
                    self.records_seen += 1
                    if finished.start:
                        yield finished
                    else:
                        self.records_dropped += 1
                        logger.debug("Dropping VEVENT without DTSTART (uid=%r)", finished.uid)
                continue

            if record is None or nested_depth:
                continue

            self._apply_property(record, prop)

        if record is not None:
            self.records_seen += 1
            self.records_dropped += 1
            logger.warning("Incomplete VEVENT at end of calendar discarded (uid=%r)", record.uid)

    @staticmethod
    def _apply_property(record: RawEventRecord, prop: LiteICSProperty) -> None:
        name = prop.name
        value = prop.value

        if name == "DTSTART":
            record.start = value.strip()
            record.start_is_date_only = prop.is_date_only
        elif name == "DTEND":
            record.end = value.strip()
            record.end_is_date_only = prop.is_date_only
        elif name == "SUMMARY":
            record.summary = value
        elif name == "DESCRIPTION":
            record.description = value
        elif name == "UID":
            record.uid = value.strip()
        elif name == "RRULE":
            record.rrule = value.strip()
        elif name == "EXDATE":
            record.exdates.extend(_split_date_list(value))
        elif name == "RDATE":
            record.rdates.extend(_split_date_list(value))


def _split_date_list(value: str) -> list[str]:
    """Split a comma-separated EXDATE/RDATE value."""
    return [part.strip() for part in value.split(",") if part.strip()]


def iter_event_records(source: IcsSource) -> tuple[LiteEventRecordBuilder, Iterator[RawEventRecord]]:
    """Convenience pipeline: raw ICS source to raw event records.

    Returns:
        The builder (for statistics once iteration completes) and the record iterator
    """
    builder = LiteEventRecordBuilder()
    return builder, builder.iter_records(LiteICSLineReader(source))
