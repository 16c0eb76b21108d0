"""Classification of VEVENT properties.

Every property name the engine knows about is listed in `EventProperty` and
assigned exactly one `PropertyClass`. The extraction parser keeps SAFE
properties only; UNSAFE ones are known to break downstream consumers and
UNKNOWN ones are simply not trusted in degraded mode.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

VENDOR_EXTENSION_PREFIX = "X-"


class PropertyClass(Enum):
    SAFE = "safe"
    UNSAFE = "unsafe"
    UNKNOWN = "unknown"


class EventProperty(str, Enum):
    """Property and component names that appear inside a VEVENT."""

    UID = "UID"
    SUMMARY = "SUMMARY"
    DTSTART = "DTSTART"
    DTEND = "DTEND"
    DTSTAMP = "DTSTAMP"
    DESCRIPTION = "DESCRIPTION"
    LOCATION = "LOCATION"
    SEQUENCE = "SEQUENCE"
    STATUS = "STATUS"
    TRANSP = "TRANSP"
    CREATED = "CREATED"
    LAST_MODIFIED = "LAST-MODIFIED"
    RRULE = "RRULE"
    CATEGORIES = "CATEGORIES"
    CLASS = "CLASS"
    GEO = "GEO"
    PRIORITY = "PRIORITY"
    URL = "URL"
    COMPLETED = "COMPLETED"
    DUE = "DUE"
    PERCENT_COMPLETE = "PERCENT-COMPLETE"

    ATTENDEE = "ATTENDEE"
    ORGANIZER = "ORGANIZER"
    ATTACH = "ATTACH"
    RECURRENCE_ID = "RECURRENCE-ID"
    EXDATE = "EXDATE"
    VALARM = "VALARM"

    @property
    def classification(self) -> PropertyClass:
        if self in SAFE_PROPERTIES:
            return PropertyClass.SAFE
        if self in UNSAFE_PROPERTIES:
            return PropertyClass.UNSAFE
        return PropertyClass.UNKNOWN


SAFE_PROPERTIES: frozenset[EventProperty] = frozenset(
    {
        EventProperty.UID,
        EventProperty.SUMMARY,
        EventProperty.DTSTART,
        EventProperty.DTEND,
        EventProperty.DTSTAMP,
        EventProperty.DESCRIPTION,
        EventProperty.LOCATION,
        EventProperty.SEQUENCE,
        EventProperty.STATUS,
        EventProperty.TRANSP,
        EventProperty.CREATED,
        EventProperty.LAST_MODIFIED,
        EventProperty.RRULE,
        EventProperty.CATEGORIES,
        EventProperty.CLASS,
        EventProperty.GEO,
        EventProperty.PRIORITY,
        EventProperty.URL,
        EventProperty.COMPLETED,
        EventProperty.DUE,
        EventProperty.PERCENT_COMPLETE,
    }
)

UNSAFE_PROPERTIES: frozenset[EventProperty] = frozenset(
    {
        EventProperty.ATTENDEE,
        EventProperty.ORGANIZER,
        EventProperty.ATTACH,
        EventProperty.RECURRENCE_ID,
        EventProperty.EXDATE,
        EventProperty.VALARM,
    }
)

# Properties mapped onto CalendarEvent fields rather than kept as extra lines
CORE_PROPERTIES: frozenset[EventProperty] = frozenset(
    {
        EventProperty.UID,
        EventProperty.SUMMARY,
        EventProperty.DTSTART,
        EventProperty.DTEND,
        EventProperty.DESCRIPTION,
        EventProperty.LOCATION,
        EventProperty.STATUS,
        EventProperty.CATEGORIES,
        EventProperty.RRULE,
    }
)


def lookup_property(name: str) -> Optional[EventProperty]:
    try:
        return EventProperty(name.upper())
    except ValueError:
        return None


def classify_property(name: str) -> PropertyClass:
    """Classify a property name; vendor extensions (X-...) are always UNSAFE."""
    if name.upper().startswith(VENDOR_EXTENSION_PREFIX):
        return PropertyClass.UNSAFE
    prop = lookup_property(name)
    if prop is None:
        return PropertyClass.UNKNOWN
    return prop.classification


def is_core_property(name: str) -> bool:
    return lookup_property(name) in CORE_PROPERTIES
