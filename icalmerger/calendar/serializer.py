"""Re-serialize calendars in a form both strict and lenient clients accept.

Output layout is fixed so the artifact is byte-stable across runs:

    VCALENDAR header
    synthetic VTIMEZONE for the output zone
    VEVENTs ordered by (start, uid), each with
        UID, SUMMARY, DTSTART, DTEND, RRULE, LOCATION, DESCRIPTION,
        STATUS, CATEGORIES, then any extra lines as kept by the parser

All-day values are written as `;VALUE=DATE:YYYYMMDD`; timed values as
`;TZID=<output zone>:YYYYMMDDTHHMMSS`, converted into the output zone when
their own zone is known.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from .content_lines import escape_text, fold_line, format_content_line, repair_content_line
from .models import CalendarEvent, MergedCalendar, TemporalValue
from .parser import IcsRecoveryParser
from .properties import is_core_property

logger = logging.getLogger(__name__)

PRODID = "-//icalmerger//COMPAT//EN"
DEFAULT_CALENDAR_NAME = "Merged Calendar"
LINE_ENDING = "\r\n"


def _timezone_block(time_zone_id: str) -> list[str]:
    """Simplified VTIMEZONE: last Sunday of March/October, fixed one-hour shift."""
    return [
        "BEGIN:VTIMEZONE",
        format_content_line("TZID", {}, time_zone_id),
        "BEGIN:STANDARD",
        "DTSTART:19701025T030000",
        "TZOFFSETFROM:+0200",
        "TZOFFSETTO:+0100",
        "RRULE:FREQ=YEARLY;BYMONTH=10;BYDAY=-1SU",
        "END:STANDARD",
        "BEGIN:DAYLIGHT",
        "DTSTART:19700329T020000",
        "TZOFFSETFROM:+0100",
        "TZOFFSETTO:+0200",
        "RRULE:FREQ=YEARLY;BYMONTH=3;BYDAY=-1SU",
        "END:DAYLIGHT",
        "END:VTIMEZONE",
    ]


class CompatibilitySerializer:
    """Render a MergedCalendar to iCalendar text."""

    def __init__(self, fold_lines: bool = True) -> None:
        self.fold_lines = fold_lines

    def render(
        self,
        calendar: MergedCalendar,
        time_zone_id: str,
        calendar_name: str = DEFAULT_CALENDAR_NAME,
    ) -> str:
        """Render a complete document.

        Args:
            calendar: Events to emit
            time_zone_id: Zone used for the VTIMEZONE block and every timed value
            calendar_name: Value for X-WR-CALNAME

        Returns:
            CRLF-terminated iCalendar text
        """
        lines = [
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            "CALSCALE:GREGORIAN",
            "METHOD:PUBLISH",
            f"PRODID:{PRODID}",
            f"X-WR-CALNAME:{escape_text(calendar_name)}",
            f"X-WR-TIMEZONE:{time_zone_id}",
        ]
        lines.extend(_timezone_block(time_zone_id))

        for event in calendar.sorted_events():
            lines.extend(self._event_lines(event, time_zone_id))

        lines.append("END:VCALENDAR")

        if self.fold_lines:
            lines = [physical for line in lines for physical in fold_line(line)]
        return LINE_ENDING.join(lines) + LINE_ENDING

    def _event_lines(self, event: CalendarEvent, time_zone_id: str) -> list[str]:
        all_day = event.start.is_all_day
        lines = [
            "BEGIN:VEVENT",
            f"UID:{event.uid}",
            f"SUMMARY:{escape_text(event.summary)}",
            self._temporal_line("DTSTART", event.start, time_zone_id, all_day),
        ]
        if event.end is not None:
            lines.append(self._temporal_line("DTEND", event.end, time_zone_id, all_day))
        if event.recurrence_rule:
            lines.append(f"RRULE:{event.recurrence_rule}")
        if event.location:
            lines.append(f"LOCATION:{escape_text(event.location)}")
        if event.description:
            lines.append(f"DESCRIPTION:{escape_text(event.description)}")
        if event.status:
            lines.append(f"STATUS:{escape_text(event.status)}")
        if event.categories:
            lines.append("CATEGORIES:" + ",".join(escape_text(c) for c in event.categories))

        for raw in event.extra_lines:
            line = repair_content_line(raw)
            name = self._property_name(line)
            if name is None or name in ("BEGIN", "END") or is_core_property(name):
                logger.debug("Not re-emitting extra line on %s: %r", event.uid, raw[:80])
                continue
            lines.append(line)

        lines.append("END:VEVENT")
        return lines

    @staticmethod
    def _property_name(line: str) -> Optional[str]:
        for index, char in enumerate(line):
            if char in ";:":
                return line[:index].upper() or None
        return None

    @staticmethod
    def _temporal_line(
        name: str, value: TemporalValue, time_zone_id: str, all_day: bool
    ) -> str:
        if all_day:
            return format_content_line(name, {"VALUE": "DATE"}, f"{value.day:%Y%m%d}")

        if value.is_all_day:
            wall = datetime(value.day.year, value.day.month, value.day.day)
        else:
            wall = value.wall_time_in(time_zone_id)
        return format_content_line(name, {"TZID": time_zone_id}, f"{wall:%Y%m%dT%H%M%S}")


def render(
    calendar: MergedCalendar,
    time_zone_id: str,
    calendar_name: str = DEFAULT_CALENDAR_NAME,
) -> str:
    """Render `calendar` with the default serializer settings."""
    return CompatibilitySerializer().render(calendar, time_zone_id, calendar_name)


def fix_compatibility(
    text: str,
    time_zone_id: str,
    calendar_name: str = DEFAULT_CALENDAR_NAME,
) -> str:
    """Rewrite arbitrary iCalendar text into the compatible output form.

    Runs the full normalize/parse/render chain; events keep their summaries
    as written (no provenance prefix is added).
    """
    document = IcsRecoveryParser().parse_text(text, calendar_name)
    return render(MergedCalendar.from_document(document), time_zone_id, calendar_name)
