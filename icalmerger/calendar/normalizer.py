"""Line normalization for raw iCalendar text.

Turns physical lines into logical property lines: line endings are unified,
folded continuation lines are joined and blank lines dropped. Never raises;
garbage in gives best-effort lines out.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

_COMMA_SENTINEL = "\x00ESC-COMMA\x00"
_SEMICOLON_SENTINEL = "\x00ESC-SEMICOLON\x00"

# Tried in order when decoding fetched bytes; latin-1 cannot fail
_FALLBACK_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")


def decode_ics_bytes(data: bytes) -> str:
    """Decode fetched calendar bytes, stripping a UTF-8 BOM when present."""
    for encoding in _FALLBACK_ENCODINGS:
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError:
            continue
        if encoding != "utf-8-sig":
            logger.debug("Decoded calendar data using %s fallback", encoding)
        return text
    return data.decode("latin-1", errors="replace")


def normalize_lines(text: str) -> list[str]:
    """Split raw iCalendar text into unfolded logical lines.

    Args:
        text: Raw document text with any mix of CRLF/CR/LF line endings

    Returns:
        Logical property lines with folding removed and blank lines dropped.
        Escaped commas and semicolons are preserved exactly as written.
    """
    protected = text.replace("\\,", _COMMA_SENTINEL).replace("\\;", _SEMICOLON_SENTINEL)
    physical = protected.replace("\r\n", "\n").replace("\r", "\n").split("\n")

    logical: list[str] = []
    for line in physical:
        if line[:1] in (" ", "\t"):
            continuation = line.lstrip(" \t")
            if logical:
                logical[-1] += continuation
            elif continuation:
                logical.append(continuation)
            continue
        logical.append(line)

    return [
        line.replace(_COMMA_SENTINEL, "\\,").replace(_SEMICOLON_SENTINEL, "\\;")
        for line in logical
        if line.strip()
    ]
