"""ICS TEXT value escaping helpers for SectionCal Lite.

RFC5545 TEXT values escape backslash, semicolon, comma and newline. Both
directions are handled in a single regex pass so that an escaped backslash
followed by ``n`` is never mistaken for an escaped newline.
"""

import re

_UNESCAPE_PATTERN = re.compile(r"\\([\\;,nN])")
_ESCAPE_PATTERN = re.compile(r"[\\;,\n]")

_UNESCAPE_MAP = {
    "\\": "\\",
    ";": ";",
    ",": ",",
    "n": "\n",
    "N": "\n",
}

_ESCAPE_MAP = {
    "\\": "\\\\",
    ";": "\\;",
    ",": "\\,",
    "\n": "\\n",
}


def unescape_ics_text(value: str) -> str:
    """Resolve ICS text escapes (``\\n``, ``\\,``, ``\\;``, ``\\\\``).

    Unknown escape sequences are left untouched.

    Args:
        value: Raw property value as found in the ICS stream

    Returns:
        Human-readable text
    """
    if not value or "\\" not in value:
        return value
    return _UNESCAPE_PATTERN.sub(lambda m: _UNESCAPE_MAP[m.group(1)], value)


def escape_ics_text(value: str) -> str:
    """Escape text for use as an ICS TEXT property value.

    Inverse of :func:`unescape_ics_text`. CRLF pairs are normalized to a
    single escaped newline.
    """
    if not value:
        return value
    value = value.replace("\r\n", "\n")
    return _ESCAPE_PATTERN.sub(lambda m: _ESCAPE_MAP[m.group(0)], value)
