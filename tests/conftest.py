from collections.abc import AsyncIterator, Callable, Generator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from icalmerger.core.http_client import close_all_clients

ICALMERGER_ENV_VARS = (
    "ICALMERGER_TEST_TIME",
    "ICALMERGER_DEBUG",
    "ICALMERGER_LOG_LEVEL",
    "ICALMERGER_CONFIG",
    "CONFIG_PATH",
    "ICALMERGER_OUTPUT_TIMEZONE",
    "OUTPUT_TIMEZONE",
    "ICALMERGER_OUTPUT_PATH",
    "ICALMERGER_SYNC_INTERVAL_MINUTES",
    "ICALMERGER_SERVER_BIND",
    "ICALMERGER_SERVER_PORT",
)


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear ICALMERGER_* variables so host settings never leak into tests."""
    for name in ICALMERGER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close shared httpx clients after every test."""
    yield
    await close_all_clients()


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Naive UTC clock pinned to 2025-02-04 09:30:00."""
    return lambda: datetime(2025, 2, 4, 9, 30, 0)


# ==================== ICS Test Data Fixtures ====================


@pytest.fixture
def sample_ics_simple() -> str:
    """
    Return a well-formed calendar with two events.

    - "Team Meeting" on 2025-02-04 10:00-11:00 Europe/Berlin
    - "Offsite" all day on 2025-02-06
    """
    return (
        "BEGIN:VCALENDAR\r\n"
        "VERSION:2.0\r\n"
        "PRODID:-//icalmerger test//EN\r\n"
        "X-WR-CALNAME:Work\r\n"
        "BEGIN:VEVENT\r\n"
        "UID:meeting-001@example.test\r\n"
        "DTSTAMP:20250101T000000Z\r\n"
        "DTSTART;TZID=Europe/Berlin:20250204T100000\r\n"
        "DTEND;TZID=Europe/Berlin:20250204T110000\r\n"
        "SUMMARY:Team Meeting\r\n"
        "LOCATION:Room A\\, 2nd floor\r\n"
        "DESCRIPTION:Weekly sync\r\n"
        "END:VEVENT\r\n"
        "BEGIN:VEVENT\r\n"
        "UID:offsite-002@example.test\r\n"
        "DTSTAMP:20250101T000000Z\r\n"
        "DTSTART;VALUE=DATE:20250206\r\n"
        "DTEND;VALUE=DATE:20250207\r\n"
        "SUMMARY:Offsite\r\n"
        "CATEGORIES:Travel,Team\r\n"
        "END:VEVENT\r\n"
        "END:VCALENDAR\r\n"
    )


@pytest.fixture
def sample_ics_vendor_broken() -> str:
    """
    Return a calendar with vendor quirks that strict parsing rejects.

    - DTEND with a parameter fragment leaked past the colon
    - X- vendor properties and an ATTENDEE line
    - a second event without DTSTART (dropped in extraction)
    """
    return (
        "BEGIN:VCALENDAR\n"
        "VERSION:2.0\n"
        "PRODID:-//Vendor//Broken//EN\n"
        "BEGIN:VEVENT\n"
        "UID:standup-1@vendor.test\n"
        "DTSTART;TZID=Europe/Berlin:20250204T220000\n"
        "DTEND:;TZID=Europe/Berlin:20250204T230000\n"
        "SUMMARY:Standup\n"
        "X-MICROSOFT-CDO-BUSYSTATUS:BUSY\n"
        "ATTENDEE;CN=Someone:mailto:someone@vendor.test\n"
        "TRANSP:OPAQUE\n"
        "END:VEVENT\n"
        "BEGIN:VEVENT\n"
        "UID:no-start@vendor.test\n"
        "SUMMARY:Missing start\n"
        "END:VEVENT\n"
        "END:VCALENDAR\n"
    )


@pytest.fixture
def sample_ics_garbage() -> str:
    """Return text with no recoverable events."""
    return "<html><body>502 Bad Gateway</body></html>\n"


@pytest.fixture
def calendar_dir(tmp_path: Path, sample_ics_simple: str, sample_ics_vendor_broken: str) -> Path:
    """Directory holding Work.ics and Personal.ics source files."""
    directory = tmp_path / "calendars"
    directory.mkdir()
    (directory / "Work.ics").write_text(sample_ics_simple, encoding="utf-8", newline="")
    (directory / "Personal.ics").write_text(
        sample_ics_vendor_broken, encoding="utf-8", newline=""
    )
    return directory
