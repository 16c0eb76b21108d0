"""Date/time parsing and display helpers for calendar properties."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime, timezone

from dateutil import parser as date_parser

from .models import TemporalValue

logger = logging.getLogger(__name__)

_BASIC_DATE_RE = re.compile(r"^\d{8}$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Basic-format date-times seen in the wild, most common first
_BASIC_DATETIME_FORMATS = ("%Y%m%dT%H%M%S", "%Y%m%dT%H%M")


def _parse_basic_date(text: str) -> date:
    return datetime.strptime(text, "%Y%m%d").date()


def parse_temporal(params: Mapping[str, str], raw_value: str) -> TemporalValue:
    """Parse a DTSTART/DTEND style value into a TemporalValue.

    Accepted encodings:
        - 20250204 (date, with or without VALUE=DATE)
        - 20250204T230000 / 20250204T2300 (local or TZID-qualified)
        - 20250204T230000Z (UTC)
        - ISO 8601 with separators, e.g. 2025-02-04T23:00:00+01:00

    Args:
        params: Property parameters with upper-cased names (VALUE, TZID)
        raw_value: Property value text

    Returns:
        ALL_DAY value for dates, ZONED value otherwise

    Raises:
        ValueError: If the value matches none of the accepted encodings
    """
    text = raw_value.strip()
    if not text:
        raise ValueError("empty date/time value")

    value_type = params.get("VALUE", "").upper()
    tzid = params.get("TZID", "").strip().strip('"') or None
    is_utc = text[-1] in "Zz"
    core = text[:-1] if is_utc else text

    if _BASIC_DATE_RE.match(core):
        return TemporalValue.all_day(_parse_basic_date(core))
    if value_type == "DATE":
        # VALUE=DATE with a time part attached: keep the date
        if _BASIC_DATE_RE.match(core[:8]):
            return TemporalValue.all_day(_parse_basic_date(core[:8]))
    if _ISO_DATE_RE.match(core):
        return TemporalValue.all_day(date.fromisoformat(core))

    for fmt in _BASIC_DATETIME_FORMATS:
        try:
            wall = datetime.strptime(core, fmt)
        except ValueError:
            continue
        if is_utc:
            return TemporalValue.zoned(wall, "UTC")
        return TemporalValue.zoned(wall, tzid)

    try:
        parsed = date_parser.isoparse(text)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"unrecognized date/time value {raw_value!r}") from e

    if parsed.tzinfo is not None:
        wall = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return TemporalValue.zoned(wall, "UTC")
    return TemporalValue.zoned(parsed, tzid)


def format_time_12h(dt: datetime) -> str:
    """Format a time as "3:04 PM" without a leading zero on the hour."""
    hour = dt.hour % 12 or 12
    am_pm = "AM" if dt.hour < 12 else "PM"
    return f"{hour}:{dt.minute:02d} {am_pm}"


def format_short_date(day: date) -> str:
    """Format a date as "Jan 2"."""
    return f"{day:%b} {day.day}"


def format_day_label(day: date, today: date) -> str:
    """Return "Today", "Tomorrow" or e.g. "Monday, Jan 2"."""
    delta = (day - today).days
    if delta == 0:
        return "Today"
    if delta == 1:
        return "Tomorrow"
    return f"{day:%A}, {format_short_date(day)}"


def to_rfc3339(dt: datetime) -> str:
    """Serialize an aware datetime as RFC 3339 (e.g. 2025-02-04T23:00:00+01:00)."""
    return dt.isoformat(timespec="seconds")
