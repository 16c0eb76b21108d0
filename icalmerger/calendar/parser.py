"""Recovery-oriented iCalendar parser.

Source feeds are often exported with vendor extensions or subtly broken
parameter syntax. Instead of failing the whole fetch, parsing degrades through
three tiers:

1. STRICT: the document must parse cleanly with `icalendar`; every event keeps
   all of its top-level properties.
2. EXTRACTION: VEVENT blocks are scanned line by line and only SAFE properties
   are kept (see `properties.PropertyClass`). Blocks without UID or a
   parseable DTSTART are dropped.
3. PLACEHOLDER: when extraction finds nothing, a single diagnostic event is
   synthesized so downstream consumers still get a valid, non-empty calendar.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Optional

from icalendar import Calendar

from .content_lines import (
    parse_content_line,
    repair_content_line,
    split_text_list,
    unescape_text,
)
from .datetime_utils import parse_temporal
from .models import (
    CalendarEvent,
    FidelityTier,
    StructuredDocument,
    TemporalValue,
    utc_now_floor,
)
from .normalizer import normalize_lines
from .properties import EventProperty, PropertyClass, classify_property, lookup_property

logger = logging.getLogger(__name__)

PLACEHOLDER_SUMMARY = "Calendar Import Error"
PLACEHOLDER_DESCRIPTION = "There was an error importing this calendar"

# Components whose content is never part of an event's own properties
_SKIPPED_COMPONENTS = frozenset({"VTIMEZONE"})


class StrictParseError(ValueError):
    """The document is not well-formed enough for the strict tier."""


def placeholder_uid(source_name: str) -> str:
    digest = hashlib.sha1(source_name.encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"import-error-{digest[:16]}"


def _collect_blocks(lines: Sequence[str]) -> tuple[list[list[str]], Optional[str]]:
    """Split logical lines into top-level VEVENT property blocks.

    Nested components (VALARM) are cut out of their event, VTIMEZONE blocks
    are skipped entirely. An event left open by a missing END:VEVENT is closed
    when the next event starts or the input ends.

    Returns:
        (event blocks, X-WR-CALNAME value if present)
    """
    blocks: list[list[str]] = []
    calendar_name: Optional[str] = None
    current: Optional[list[str]] = None
    nested_depth = 0
    skip_depth = 0

    for line in lines:
        upper = line.strip().upper()

        if upper.startswith("BEGIN:"):
            component = upper[6:].strip()
            if current is not None:
                if component == "VEVENT" and nested_depth == 0:
                    blocks.append(current)
                    current = []
                else:
                    nested_depth += 1
                continue
            if skip_depth or component in _SKIPPED_COMPONENTS:
                skip_depth += 1
            elif component == "VEVENT":
                current = []
            continue

        if upper.startswith("END:"):
            if current is not None:
                if nested_depth:
                    nested_depth -= 1
                elif upper[4:].strip() == "VEVENT":
                    blocks.append(current)
                    current = None
            elif skip_depth:
                skip_depth -= 1
            continue

        if current is not None:
            if not nested_depth:
                current.append(line)
        elif not skip_depth and upper.startswith("X-WR-CALNAME") and ":" in line:
            calendar_name = unescape_text(line.split(":", 1)[1]).strip() or None

    if current is not None:
        blocks.append(current)
    return blocks, calendar_name


def _build_event(
    block: Sequence[str],
    source_name: str,
    keep: Callable[[str], bool],
) -> CalendarEvent:
    """Build a CalendarEvent from one VEVENT block.

    The first occurrence of each core property wins; other kept properties
    become extra lines.

    Raises:
        ValueError: When UID or a parseable DTSTART is missing
    """
    uid = ""
    summary: Optional[str] = None
    start: Optional[TemporalValue] = None
    end: Optional[TemporalValue] = None
    location: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    recurrence_rule: Optional[str] = None
    categories: list[str] = []
    extra_lines: list[str] = []

    for line in block:
        try:
            name, params, value = parse_content_line(line)
        except ValueError:
            logger.debug("Skipping unparseable line in %s: %r", source_name, line[:80])
            continue
        if not keep(name):
            continue

        prop = lookup_property(name)
        if prop == EventProperty.UID:
            uid = uid or value.strip()
        elif prop == EventProperty.SUMMARY:
            summary = summary if summary is not None else unescape_text(value).strip()
        elif prop == EventProperty.DTSTART:
            start = start or parse_temporal(params, value)
        elif prop == EventProperty.DTEND:
            if end is None:
                try:
                    end = parse_temporal(params, value)
                except ValueError as e:
                    logger.debug("Ignoring bad DTEND in %s: %s", source_name, e)
        elif prop == EventProperty.LOCATION:
            location = location if location is not None else unescape_text(value)
        elif prop == EventProperty.DESCRIPTION:
            description = description if description is not None else unescape_text(value)
        elif prop == EventProperty.STATUS:
            status = status or unescape_text(value).strip() or None
        elif prop == EventProperty.CATEGORIES:
            categories.extend(split_text_list(value))
        elif prop == EventProperty.RRULE:
            recurrence_rule = recurrence_rule or value.strip() or None
        else:
            extra_lines.append(repair_content_line(line))

    if not uid:
        raise ValueError("event has no UID")
    if start is None:
        raise ValueError(f"event {uid!r} has no DTSTART")

    return CalendarEvent(
        uid=uid,
        summary=summary or "",
        start=start,
        end=end,
        location=location,
        description=description,
        status=status,
        categories=tuple(categories),
        recurrence_rule=recurrence_rule,
        source_names=frozenset({source_name}),
        extra_lines=tuple(extra_lines),
    )


def _keep_all(_name: str) -> bool:
    return True


def _keep_safe(name: str) -> bool:
    return classify_property(name) == PropertyClass.SAFE


class IcsRecoveryParser:
    """Parse normalized iCalendar lines with graceful degradation."""

    def __init__(self, clock: Callable[[], datetime] = utc_now_floor) -> None:
        """Initialize parser.

        Args:
            clock: Returns the naive UTC "now" used for placeholder events
        """
        self._clock = clock

    def parse_text(self, text: str, source_name: str) -> StructuredDocument:
        """Normalize raw text, then parse it."""
        return self.parse(normalize_lines(text), source_name)

    def parse(self, lines: Sequence[str], source_name: str) -> StructuredDocument:
        """Parse logical lines into a structured document.

        Args:
            lines: Output of `normalize_lines`
            source_name: Calendar source name, recorded on every event

        Returns:
            StructuredDocument; `tier` tells which strategy succeeded. Never raises.
        """
        try:
            document = self._parse_strict(lines, source_name)
        except StrictParseError as e:
            strict_error = str(e)
            logger.debug("Strict parse of %s failed: %s", source_name, strict_error)
        else:
            logger.debug(
                "Parsed %s strictly: %d events", source_name, len(document.events)
            )
            return document

        document = self._parse_extraction(lines, source_name)
        document.warnings.insert(0, f"strict parse failed: {strict_error}")
        if document.events:
            logger.warning(
                "Source %s parsed in degraded %s mode: %d events kept (%s)",
                source_name,
                document.tier.name.lower(),
                len(document.events),
                strict_error,
            )
            return document

        logger.warning(
            "Source %s yielded no usable events; substituting placeholder event", source_name
        )
        return self._placeholder(source_name, document.warnings, document.calendar_name)

    def _parse_strict(self, lines: Sequence[str], source_name: str) -> StructuredDocument:
        if not lines:
            raise StrictParseError("document is empty")

        try:
            calendar = Calendar.from_ical("\r\n".join(lines) + "\r\n")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise StrictParseError(f"icalendar rejected document: {e}") from e

        if calendar.name != "VCALENDAR":
            raise StrictParseError(f"top-level component is {calendar.name!r}")
        for component in calendar.walk():
            if component.errors:
                name, message = component.errors[0]
                raise StrictParseError(f"{component.name} property {name}: {message}")

        blocks, calendar_name = _collect_blocks(lines)
        expected = len(calendar.walk("VEVENT"))
        if len(blocks) != expected:
            raise StrictParseError(
                f"found {len(blocks)} event blocks but {expected} VEVENT components"
            )

        events = []
        for block in blocks:
            try:
                events.append(_build_event(block, source_name, _keep_all))
            except ValueError as e:
                raise StrictParseError(str(e)) from e

        return StructuredDocument(
            source_name=source_name,
            tier=FidelityTier.STRICT,
            events=events,
            calendar_name=calendar_name,
        )

    def _parse_extraction(self, lines: Sequence[str], source_name: str) -> StructuredDocument:
        blocks, calendar_name = _collect_blocks(lines)
        events: list[CalendarEvent] = []
        warnings: list[str] = []

        for index, block in enumerate(blocks):
            try:
                events.append(_build_event(block, source_name, _keep_safe))
            except ValueError as e:
                logger.debug("Dropping event block %d from %s: %s", index, source_name, e)
                warnings.append(f"dropped event block {index}: {e}")

        return StructuredDocument(
            source_name=source_name,
            tier=FidelityTier.EXTRACTION,
            events=events,
            warnings=warnings,
            calendar_name=calendar_name,
        )

    def _placeholder(
        self,
        source_name: str,
        warnings: list[str],
        calendar_name: Optional[str] = None,
    ) -> StructuredDocument:
        start = TemporalValue.zoned(self._clock(), "UTC")
        event = CalendarEvent(
            uid=placeholder_uid(source_name),
            summary=PLACEHOLDER_SUMMARY,
            description=PLACEHOLDER_DESCRIPTION,
            start=start,
            end=start.shifted(timedelta(hours=1)),
            source_names=frozenset({source_name}),
        )
        return StructuredDocument(
            source_name=source_name,
            tier=FidelityTier.PLACEHOLDER,
            events=[event],
            warnings=[*warnings, "no usable events; placeholder substituted"],
            calendar_name=calendar_name,
        )
