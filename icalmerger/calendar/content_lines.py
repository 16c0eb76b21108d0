"""Content-line parsing, repair and formatting.

A content line is `NAME;PARAM=value;PARAM="quoted":value`. Feeds exported by
some calendar apps leak parameter fragments past the colon, e.g.

    DTEND:;TZID=Europe/Berlin:20250204T230000
    DTEND;TZID=Europe/Berlin:;TZID=Europe/Berlin:20250204T230000
    DTSTART::20250204T230000

For date/time properties `parse_content_line` folds such fragments back into
the parameter list and collapses duplicated parameters, so every consumer sees
one clean form. Other values (TEXT in particular) are taken verbatim.
"""

from __future__ import annotations

import re
from typing import NamedTuple

_NAME_RE = re.compile(r"^[A-Za-z0-9-]+$")
_FRAGMENT_RE = re.compile(r"^;[A-Za-z][A-Za-z0-9-]*=")
_UNESCAPE_RE = re.compile(r"\\([\\;,nN])")

FOLD_LIMIT_OCTETS = 75

# Leaked-fragment repair only applies to date/time values; TEXT is kept as is
TEMPORAL_PROPERTIES = frozenset(
    {
        "DTSTART",
        "DTEND",
        "DUE",
        "DTSTAMP",
        "CREATED",
        "LAST-MODIFIED",
        "COMPLETED",
        "RECURRENCE-ID",
        "EXDATE",
        "RDATE",
    }
)


class ContentLine(NamedTuple):
    """A parsed property line. Parameter names are upper-cased, values unquoted."""

    name: str
    params: dict[str, str]
    value: str


def _read_params(line: str, pos: int, params: dict[str, str]) -> tuple[int, bool]:
    """Read `;KEY=value` pairs starting at `pos` (which points at ';').

    Returns the index of the terminating ':' and whether a duplicate was
    collapsed. Raises ValueError when no unquoted ':' terminates the list.
    """
    collapsed = False
    length = len(line)
    while pos < length and line[pos] == ";":
        key_start = pos + 1
        eq = line.find("=", key_start)
        stop = min(
            (i for i in (line.find(";", key_start), line.find(":", key_start)) if i != -1),
            default=-1,
        )
        if eq == -1 or (stop != -1 and stop < eq):
            # Parameter without a value; drop it
            if stop == -1:
                raise ValueError("unterminated parameter list")
            pos = stop
            collapsed = True
            continue

        key = line[key_start:eq].strip().upper()
        pos = eq + 1
        if pos < length and line[pos] == '"':
            close = line.find('"', pos + 1)
            if close == -1:
                raise ValueError("unterminated quoted parameter value")
            value = line[pos + 1 : close]
            pos = close + 1
        else:
            end = pos
            while end < length and line[end] not in ";:":
                end += 1
            value = line[pos:end]
            pos = end

        if key in params:
            collapsed = True
            if not params[key] and value:
                params[key] = value
        else:
            params[key] = value

    if pos >= length or line[pos] != ":":
        raise ValueError("missing ':' between parameters and value")
    return pos, collapsed


def _parse(line: str) -> tuple[ContentLine, bool]:
    split = len(line)
    for i, char in enumerate(line):
        if char in ";:":
            split = i
            break
    name = line[:split].strip()
    if split == len(line) or not _NAME_RE.match(name):
        raise ValueError(f"not a content line: {line[:40]!r}")

    params: dict[str, str] = {}
    repaired = False
    pos = split
    if line[pos] == ";":
        pos, repaired = _read_params(line, pos, params)
    value = line[pos + 1 :]
    name = name.upper()

    while name in TEMPORAL_PROPERTIES:
        if value.startswith(":"):
            value = value[1:]
            repaired = True
        elif _FRAGMENT_RE.match(value) and ":" in value:
            end, _ = _read_params(value, 0, params)
            value = value[end + 1 :]
            repaired = True
        else:
            break

    return ContentLine(name, params, value), repaired


def parse_content_line(line: str) -> ContentLine:
    """Parse and repair a logical content line.

    Raises:
        ValueError: when the line has no property name or no value separator
    """
    return _parse(line)[0]


def _quote_param(value: str) -> str:
    if any(char in value for char in ":;,"):
        return f'"{value}"'
    return value


def format_content_line(name: str, params: dict[str, str], value: str) -> str:
    """Build a content line; parameter values containing : ; or , are quoted."""
    rendered = "".join(f";{key}={_quote_param(val)}" for key, val in params.items())
    return f"{name}{rendered}:{value}"


def repair_content_line(line: str) -> str:
    """Return `line` with leaked or duplicated parameters collapsed.

    Well-formed lines and lines that cannot be parsed at all are returned
    unchanged.
    """
    try:
        parsed, repaired = _parse(line)
    except ValueError:
        return line
    if not repaired:
        return line
    return format_content_line(*parsed)


def unescape_text(value: str) -> str:
    r"""Undo iCalendar TEXT escaping (\n, \, \; and \\)."""

    def _replace(match: re.Match[str]) -> str:
        char = match.group(1)
        return "\n" if char in "nN" else char

    return _UNESCAPE_RE.sub(_replace, value)


def escape_text(value: str) -> str:
    """Apply iCalendar TEXT escaping."""
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def split_text_list(value: str) -> list[str]:
    """Split a comma-separated TEXT list on unescaped commas and unescape items."""
    items: list[str] = []
    current: list[str] = []
    escaped = False
    for char in value:
        if escaped:
            current.append("\\" + char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ",":
            items.append("".join(current))
            current = []
        else:
            current.append(char)
    if escaped:
        current.append("\\")
    items.append("".join(current))
    return [unescape_text(item).strip() for item in items if item.strip()]


def fold_line(line: str, limit: int = FOLD_LIMIT_OCTETS) -> list[str]:
    """Fold a logical line into physical lines of at most `limit` octets.

    Continuation lines start with a single space, which counts toward the
    limit. Multi-byte UTF-8 characters are never split.
    """
    if len(line.encode("utf-8")) <= limit:
        return [line]

    physical: list[str] = []
    current: list[str] = []
    size = 0
    room = limit
    for char in line:
        width = len(char.encode("utf-8"))
        if size + width > room:
            physical.append("".join(current))
            current = []
            size = 0
            room = limit - 1
        current.append(char)
        size += width
    physical.append("".join(current))
    return [physical[0]] + [" " + part for part in physical[1:]]
