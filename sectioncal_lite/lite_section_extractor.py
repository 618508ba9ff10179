"""Section, class and professor extraction heuristics - SectionCal Lite.

Best-effort regex extraction from free event text. Two section notions
coexist:

- ``extract_sections`` returns every uppercase/digit token and feeds the
  today-by-section index used by the ``/events?section=`` query path.
  False positives (``PROF``, ``ASSENTE``...) are expected.
- ``extract_class_from_summary`` looks for an explicit ``CLASSE <code>``
  marker and is meant for exact-match routing of notifications.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .lite_models import Occurrence

logger = logging.getLogger(__name__)

MAX_PROFESSOR_NAME_LENGTH = 50

_SECTION_TOKEN_PATTERN = re.compile(r"\b[0-9A-Z]+\b", re.ASCII)
_CLASS_MARKER_PATTERN = re.compile(r"\bCLASSE\s+([0-9A-Z]+)\b", re.IGNORECASE)

# Longest markers first so "PROF.SSA" is never read as "PROF." + "SSA".
_PROFESSOR_MARKER_PATTERN = re.compile(
    r"\b(?P<marker>PROFF\.?|PROF\.?\s*SS[AE]\.?|PROF\.?)(?![^\W\d_])\s*",
    re.IGNORECASE,
)
_NAME = r"[^\W\d_][\w'’]*"
_SINGLE_NAME_PATTERN = re.compile(_NAME)
_NAME_LIST_PATTERN = re.compile(rf"{_NAME}(?:(?:\s*,\s*|\s+[Ee]\s+){_NAME})*")
_NAME_LIST_SEPARATOR = re.compile(r"\s*,\s*|\s+[Ee]\s+")
_NAME_TRIM_CHARS = " \t\r\n.,;:-'\"’()"


def occurrence_text(occurrence: Occurrence) -> str:
    """Text searched by the extractors: summary and description."""
    return f"{occurrence.summary} {occurrence.description}"


def extract_sections(text: str) -> list[str]:
    """Return distinct section-like tokens in order of first appearance.

    Args:
        text: Free text, typically summary + description

    Returns:
        Tokens made only of ASCII uppercase letters and digits
    """
    if not text:
        return []
    return list(dict.fromkeys(_SECTION_TOKEN_PATTERN.findall(text)))


def extract_class_from_summary(text: str) -> Optional[str]:
    """Return the code following the first ``CLASSE`` marker, upper-cased."""
    if not text:
        return None
    match = _CLASS_MARKER_PATTERN.search(text)
    if match is None:
        return None
    return match.group(1).upper()


def _is_plural_marker(marker: str) -> bool:
    normalized = re.sub(r"[\s.]", "", marker.upper())
    return normalized in ("PROFF", "PROFSSE")


def _clean_name(raw: str) -> Optional[str]:
    name = raw.strip(_NAME_TRIM_CHARS)
    if not name or len(name) > MAX_PROFESSOR_NAME_LENGTH:
        return None
    return name


def extract_professors(text: str) -> list[str]:
    """Return professor names following PROF/PROFF./PROF.SSA markers.

    Singular markers take the next word. Plural markers (``PROFF.``,
    ``PROF.SSE``) take a list joined by commas or ``E``.

    Args:
        text: Free text, typically summary + description

    Returns:
        Distinct names in order of appearance, possibly empty
    """
    if not text:
        return []

    names: list[str] = []
    for marker_match in _PROFESSOR_MARKER_PATTERN.finditer(text):
        rest = text[marker_match.end() :]
        if _is_plural_marker(marker_match.group("marker")):
            list_match = _NAME_LIST_PATTERN.match(rest)
            candidates = _NAME_LIST_SEPARATOR.split(list_match.group(0)) if list_match else []
        else:
            name_match = _SINGLE_NAME_PATTERN.match(rest)
            candidates = [name_match.group(0)] if name_match else []

        for candidate in candidates:
            name = _clean_name(candidate)
            if name is None:
                logger.debug("Rejected professor name candidate %r", candidate)
                continue
            if name not in names:
                names.append(name)

    return names
