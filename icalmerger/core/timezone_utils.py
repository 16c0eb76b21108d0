"""Time and time-zone helpers.

Everything that asks "what time is it" goes through `now_utc()` so tests can
pin the clock with the ICALMERGER_TEST_TIME environment variable.
"""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from functools import lru_cache
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_TIMEZONE = "Europe/Berlin"

TEST_TIME_ENV = "ICALMERGER_TEST_TIME"

# Windows zone names emitted by Outlook/Exchange exports
WINDOWS_TZ_MAP: dict[str, str] = {
    "Pacific Standard Time": "America/Los_Angeles",
    "Mountain Standard Time": "America/Denver",
    "Central Standard Time": "America/Chicago",
    "Eastern Standard Time": "America/New_York",
    "US Mountain Standard Time": "America/Phoenix",
    "Atlantic Standard Time": "America/Halifax",
    "GMT Standard Time": "Europe/London",
    "Greenwich Standard Time": "Atlantic/Reykjavik",
    "W. Europe Standard Time": "Europe/Berlin",
    "Central Europe Standard Time": "Europe/Budapest",
    "Central European Standard Time": "Europe/Warsaw",
    "Romance Standard Time": "Europe/Paris",
    "E. Europe Standard Time": "Europe/Chisinau",
    "FLE Standard Time": "Europe/Kiev",
    "GTB Standard Time": "Europe/Bucharest",
    "Russian Standard Time": "Europe/Moscow",
    "Israel Standard Time": "Asia/Jerusalem",
    "India Standard Time": "Asia/Kolkata",
    "China Standard Time": "Asia/Shanghai",
    "Tokyo Standard Time": "Asia/Tokyo",
    "AUS Eastern Standard Time": "Australia/Sydney",
    "New Zealand Standard Time": "Pacific/Auckland",
    "UTC": "UTC",
}

# Obsolete or alternate names found in older feeds
TZ_ALIAS_MAP: dict[str, str] = {
    "US/Pacific": "America/Los_Angeles",
    "US/Mountain": "America/Denver",
    "US/Central": "America/Chicago",
    "US/Eastern": "America/New_York",
    "GMT": "UTC",
    "Etc/UTC": "UTC",
    "Etc/GMT": "UTC",
    "Z": "UTC",
    "Zulu": "UTC",
    "Universal": "UTC",
    "CET": "Europe/Berlin",
    "MET": "Europe/Berlin",
    "Asia/Calcutta": "Asia/Kolkata",
    "Europe/Kyiv": "Europe/Kiev",
}


def now_utc() -> datetime.datetime:
    """Return the current UTC time with tzinfo.

    Can be overridden for testing via the ICALMERGER_TEST_TIME environment
    variable (ISO 8601, e.g. "2025-02-04T09:30:00+01:00"). Naive override
    values are taken as UTC.

    Returns:
        Current time in UTC
    """
    test_time = os.environ.get(TEST_TIME_ENV)
    if test_time:
        try:
            from dateutil import parser as date_parser

            dt = date_parser.isoparse(test_time)
            if dt.tzinfo is not None:
                return dt.astimezone(datetime.timezone.utc)
            return dt.replace(tzinfo=datetime.timezone.utc)
        except ValueError as e:
            logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)

    return datetime.datetime.now(datetime.timezone.utc)


def normalize_timezone_name(tz_str: Optional[str]) -> Optional[str]:
    """Normalize a time-zone string to a canonical IANA identifier.

    Resolution order: Windows zone name, alias table, then the name itself.
    Surrounding quotes (as found in some TZID parameters) are stripped.

    Args:
        tz_str: Windows name, alias or IANA identifier

    Returns:
        A zoneinfo-loadable identifier, or None when the name cannot be resolved

    Examples:
        >>> normalize_timezone_name("W. Europe Standard Time")
        'Europe/Berlin'
        >>> normalize_timezone_name("US/Pacific")
        'America/Los_Angeles'
        >>> normalize_timezone_name("Mars/Olympus_Mons") is None
        True
    """
    if not tz_str:
        return None

    name = tz_str.strip().strip('"').strip()
    if not name:
        return None
    candidate = WINDOWS_TZ_MAP.get(name) or TZ_ALIAS_MAP.get(name, name)
    try:
        zoneinfo.ZoneInfo(candidate)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.debug("Unresolvable timezone name: %r", tz_str)
        return None
    return candidate


@lru_cache(maxsize=64)
def resolve_zone(tz_str: Optional[str]) -> Optional[zoneinfo.ZoneInfo]:
    """Return a ZoneInfo for `tz_str`, or None when it cannot be resolved."""
    name = normalize_timezone_name(tz_str)
    if name is None:
        return None
    return zoneinfo.ZoneInfo(name)


def validate_timezone(tz_str: Optional[str], fallback: str = DEFAULT_OUTPUT_TIMEZONE) -> str:
    """Return `tz_str` when it resolves, otherwise `fallback` (with a warning).

    The original spelling is kept when valid so output headers echo what the
    operator configured.
    """
    if tz_str and normalize_timezone_name(tz_str) is not None:
        return tz_str
    if tz_str:
        logger.warning("Invalid timezone %r, falling back to %r", tz_str, fallback)
    return fallback


def today_in(tz_str: Optional[str]) -> datetime.date:
    """Return today's calendar date in the given zone (UTC when unresolvable)."""
    zone = resolve_zone(tz_str)
    now = now_utc()
    if zone is None:
        return now.date()
    return now.astimezone(zone).date()
