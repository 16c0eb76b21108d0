"""Unit tests for icalmerger.calendar.parser."""

from collections.abc import Callable
from datetime import date, datetime

import pytest

from icalmerger.calendar.models import FidelityTier
from icalmerger.calendar.normalizer import normalize_lines
from icalmerger.calendar.parser import (
    PLACEHOLDER_DESCRIPTION,
    PLACEHOLDER_SUMMARY,
    IcsRecoveryParser,
    placeholder_uid,
)

pytestmark = pytest.mark.unit


def _wrap(*event_lines: str) -> str:
    return "\r\n".join(
        ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//test//EN", *event_lines, "END:VCALENDAR"]
    )


@pytest.fixture
def parser(fixed_clock: Callable[[], datetime]) -> IcsRecoveryParser:
    return IcsRecoveryParser(clock=fixed_clock)


class TestStrictTier:
    """Documents that parse cleanly keep every property."""

    def test_parse_when_well_formed_then_strict(
        self, parser: IcsRecoveryParser, sample_ics_simple: str
    ) -> None:
        document = parser.parse_text(sample_ics_simple, "Work")

        assert document.tier == FidelityTier.STRICT
        assert document.calendar_name == "Work"
        assert document.warnings == []
        meeting, offsite = document.events
        assert meeting.uid == "meeting-001@example.test"
        assert meeting.start.value == datetime(2025, 2, 4, 10, 0)
        assert meeting.start.time_zone_id == "Europe/Berlin"
        assert meeting.location == "Room A, 2nd floor"
        assert meeting.source_names == frozenset({"Work"})
        assert "DTSTAMP:20250101T000000Z" in meeting.extra_lines
        assert offsite.start.value == date(2025, 2, 6)
        assert offsite.categories == ("Travel", "Team")

    def test_parse_when_vendor_extension_then_kept_in_strict_mode(
        self, parser: IcsRecoveryParser
    ) -> None:
        text = _wrap(
            "BEGIN:VEVENT",
            "UID:x1",
            "DTSTART:20250204T090000Z",
            "SUMMARY:Review",
            "X-MICROSOFT-CDO-BUSYSTATUS:BUSY",
            "END:VEVENT",
        )
        document = parser.parse_text(text, "Work")

        assert document.tier == FidelityTier.STRICT
        assert document.events[0].extra_lines == ("X-MICROSOFT-CDO-BUSYSTATUS:BUSY",)

    def test_parse_when_text_starts_with_separator_then_kept_verbatim(
        self, parser: IcsRecoveryParser
    ) -> None:
        text = _wrap(
            "BEGIN:VEVENT",
            "UID:x3",
            "DTSTART:20250204T090000Z",
            "SUMMARY::) Party",
            "DESCRIPTION:;X=1: note",
            "END:VEVENT",
        )
        event = parser.parse_text(text, "Work").events[0]

        assert event.summary == ":) Party"
        assert event.description == ";X=1: note"

    def test_parse_when_nested_alarm_then_alarm_properties_ignored(
        self, parser: IcsRecoveryParser
    ) -> None:
        text = _wrap(
            "BEGIN:VEVENT",
            "UID:x2",
            "DTSTART:20250204T090000Z",
            "SUMMARY:Review",
            "BEGIN:VALARM",
            "ACTION:DISPLAY",
            "DESCRIPTION:Reminder",
            "TRIGGER:-PT15M",
            "END:VALARM",
            "DESCRIPTION:Quarterly numbers",
            "END:VEVENT",
        )
        event = parser.parse_text(text, "Work").events[0]

        assert event.description == "Quarterly numbers"
        assert not any(line.startswith(("ACTION", "TRIGGER")) for line in event.extra_lines)

    def test_parse_when_timezone_block_then_skipped(self, parser: IcsRecoveryParser) -> None:
        text = _wrap(
            "BEGIN:VTIMEZONE",
            "TZID:Europe/Berlin",
            "BEGIN:STANDARD",
            "DTSTART:19701025T030000",
            "TZOFFSETFROM:+0200",
            "TZOFFSETTO:+0100",
            "END:STANDARD",
            "END:VTIMEZONE",
            "BEGIN:VEVENT",
            "UID:x3",
            "DTSTART;TZID=Europe/Berlin:20250204T090000",
            "SUMMARY:Review",
            "END:VEVENT",
        )
        document = parser.parse_text(text, "Work")

        assert [event.uid for event in document.events] == ["x3"]


class TestExtractionTier:
    """Documents strict parsing rejects are scanned line by line."""

    def test_parse_when_malformed_then_extraction_keeps_safe_properties(
        self, parser: IcsRecoveryParser, sample_ics_vendor_broken: str
    ) -> None:
        document = parser.parse_text(sample_ics_vendor_broken, "Personal")

        assert document.tier == FidelityTier.EXTRACTION
        assert [event.uid for event in document.events] == ["standup-1@vendor.test"]
        event = document.events[0]
        assert event.end is not None
        assert event.end.value == datetime(2025, 2, 4, 23, 0)
        assert event.end.time_zone_id == "Europe/Berlin"
        assert event.extra_lines == ("TRANSP:OPAQUE",)
        assert document.warnings[0].startswith("strict parse failed")
        assert any("dropped event block 1" in warning for warning in document.warnings)

    def test_parse_when_end_vevent_missing_then_event_recovered(
        self, parser: IcsRecoveryParser
    ) -> None:
        text = _wrap(
            "BEGIN:VEVENT",
            "UID:open-1",
            "DTSTART:20250204T090000Z",
            "SUMMARY:Unterminated",
        )
        document = parser.parse_text(text, "Work")

        assert document.tier != FidelityTier.PLACEHOLDER
        assert [event.uid for event in document.events] == ["open-1"]

    def test_parse_when_bad_dtend_then_event_kept_without_end(
        self, parser: IcsRecoveryParser
    ) -> None:
        text = _wrap(
            "BEGIN:VEVENT",
            "UID:x4",
            "DTSTART;VALUE=DATE:20250204",
            "DTEND:not-a-date",
            "SUMMARY:Holiday",
            "END:VEVENT",
        )
        document = parser.parse_text(text, "Work")

        assert document.tier != FidelityTier.PLACEHOLDER
        assert document.events[0].end is None

    def test_parse_when_folded_lines_then_unfolded_before_parsing(
        self, parser: IcsRecoveryParser
    ) -> None:
        text = _wrap(
            "BEGIN:VEVENT",
            "UID:x5",
            "DTSTART:20250204T090000Z",
            "SUMMARY:A very long",
            "  title",
            "END:VEVENT",
        )
        assert parser.parse(normalize_lines(text), "Work").events[0].summary == "A very longtitle"


class TestPlaceholderTier:
    """Documents with no recoverable event yield one diagnostic event."""

    def test_parse_when_garbage_then_placeholder(
        self, parser: IcsRecoveryParser, sample_ics_garbage: str
    ) -> None:
        document = parser.parse_text(sample_ics_garbage, "Broken")

        assert document.tier == FidelityTier.PLACEHOLDER
        assert not document.has_usable_events
        (event,) = document.events
        assert event.uid == placeholder_uid("Broken")
        assert event.summary == PLACEHOLDER_SUMMARY
        assert event.description == PLACEHOLDER_DESCRIPTION
        assert event.start.value == datetime(2025, 2, 4, 9, 30)
        assert event.start.time_zone_id == "UTC"
        assert event.end is not None
        assert event.end.value == datetime(2025, 2, 4, 10, 30)

    def test_parse_when_empty_then_placeholder(self, parser: IcsRecoveryParser) -> None:
        assert parser.parse_text("", "Empty").tier == FidelityTier.PLACEHOLDER

    def test_placeholder_uid_is_stable_per_source(self) -> None:
        assert placeholder_uid("Work") == placeholder_uid("Work")
        assert placeholder_uid("Work") != placeholder_uid("Personal")
        assert placeholder_uid("Work").startswith("import-error-")
