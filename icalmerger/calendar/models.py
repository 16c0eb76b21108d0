"""Data models for calendar sources, events and merged calendars."""

from __future__ import annotations

import base64
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum, IntEnum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from icalmerger.core.timezone_utils import now_utc, resolve_zone


class SourceAuthType(str, Enum):
    """Supported authentication types for calendar sources."""

    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"


class SourceAuth(BaseModel):
    """Authentication configuration for a remote calendar source."""

    type: SourceAuthType = SourceAuthType.NONE
    username: Optional[str] = None
    password: Optional[str] = None
    bearer_token: Optional[str] = None

    def get_headers(self) -> dict[str, str]:
        """Get HTTP headers for authentication."""
        headers = {}

        if self.type == SourceAuthType.BASIC and self.username and self.password:
            credentials = f"{self.username}:{self.password}"
            encoded = base64.b64encode(credentials.encode()).decode()
            headers["Authorization"] = f"Basic {encoded}"

        elif self.type == SourceAuthType.BEARER and self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"

        return headers


class IcsSource(BaseModel):
    """A named calendar feed, either a local file or an http(s) URL."""

    name: str = Field(..., min_length=1, description="Display name, used for provenance prefixes")
    url: str = Field(..., min_length=1, description="file:// URL, plain path or http(s) URL")
    auth: SourceAuth = Field(default_factory=SourceAuth, description="Authentication configuration")
    timeout: Optional[int] = Field(
        default=None, ge=1, description="HTTP read timeout in seconds (fetcher default if unset)"
    )
    custom_headers: dict[str, str] = Field(default_factory=dict, description="Extra HTTP headers")

    model_config = ConfigDict(use_enum_values=True)

    @property
    def is_local(self) -> bool:
        """True when the source is read from the local filesystem."""
        return not self.url.lower().startswith(("http://", "https://"))


class TemporalKind(str, Enum):
    """Whether a temporal value is a bare date or a wall-clock timestamp."""

    ALL_DAY = "all_day"
    ZONED = "zoned"


class TemporalValue(BaseModel):
    """A DTSTART/DTEND value.

    ALL_DAY values hold a `date` and never a time-zone id. ZONED values hold a
    naive wall-clock `datetime`; `time_zone_id` names the zone that wall time
    belongs to ("UTC" for values written with a trailing Z, None for floating
    times).
    """

    model_config = ConfigDict(frozen=True)

    kind: TemporalKind
    value: Union[datetime, date]
    time_zone_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_kind(self) -> TemporalValue:
        if self.kind == TemporalKind.ALL_DAY:
            if isinstance(self.value, datetime):
                raise ValueError("all-day values must be plain dates")
            if self.time_zone_id is not None:
                raise ValueError("all-day values cannot carry a time zone")
        else:
            if not isinstance(self.value, datetime):
                raise ValueError("zoned values must be date-times")
            if self.value.tzinfo is not None:
                raise ValueError("zoned values are stored as naive wall-clock time")
        return self

    @classmethod
    def all_day(cls, day: date) -> TemporalValue:
        return cls(kind=TemporalKind.ALL_DAY, value=day)

    @classmethod
    def zoned(cls, wall_time: datetime, time_zone_id: Optional[str] = None) -> TemporalValue:
        return cls(kind=TemporalKind.ZONED, value=wall_time, time_zone_id=time_zone_id)

    @property
    def is_all_day(self) -> bool:
        return self.kind == TemporalKind.ALL_DAY

    @property
    def day(self) -> date:
        """Calendar date of the value as written (no zone conversion)."""
        if isinstance(self.value, datetime):
            return self.value.date()
        return self.value

    @property
    def ical_value(self) -> str:
        """The value in iCalendar basic format, e.g. 20250101 or 20250101T120000Z."""
        if self.is_all_day:
            return self.value.strftime("%Y%m%d")
        text = self.value.strftime("%Y%m%dT%H%M%S")
        if self.time_zone_id == "UTC":
            text += "Z"
        return text

    def sort_key(self) -> datetime:
        """Naive datetime usable for ordering mixed all-day and zoned values."""
        if isinstance(self.value, datetime):
            return self.value
        return datetime(self.value.year, self.value.month, self.value.day)

    def as_aware(self, default_zone: tzinfo) -> datetime:
        """Return an aware datetime.

        All-day values map to local midnight in `default_zone`; floating or
        unresolvable zoned values are interpreted in `default_zone` too.
        """
        if isinstance(self.value, datetime):
            zone = resolve_zone(self.time_zone_id) if self.time_zone_id else None
            return self.value.replace(tzinfo=zone or default_zone)
        return datetime(self.value.year, self.value.month, self.value.day, tzinfo=default_zone)

    def wall_time_in(self, target_tz_id: str) -> datetime:
        """Wall-clock time of a zoned value expressed in `target_tz_id`.

        Floating values and values whose own zone cannot be resolved keep
        their wall time unchanged.
        """
        if not isinstance(self.value, datetime):
            raise ValueError("all-day values have no wall-clock time")
        source_zone = resolve_zone(self.time_zone_id) if self.time_zone_id else None
        target_zone = resolve_zone(target_tz_id)
        if source_zone is None or target_zone is None:
            return self.value
        return self.value.replace(tzinfo=source_zone).astimezone(target_zone).replace(tzinfo=None)

    def shifted(self, delta: timedelta) -> TemporalValue:
        return self.model_copy(update={"value": self.value + delta})


class CalendarEvent(BaseModel):
    """A single VEVENT as understood by the merge engine.

    Text fields are stored unescaped. `extra_lines` holds other property lines
    the parser kept, verbatim, so they can be re-emitted unchanged.
    """

    model_config = ConfigDict(frozen=True)

    uid: str = Field(..., min_length=1)
    summary: str = ""
    start: TemporalValue
    end: Optional[TemporalValue] = None
    location: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    categories: tuple[str, ...] = ()
    recurrence_rule: Optional[str] = None
    source_names: frozenset[str] = frozenset()
    extra_lines: tuple[str, ...] = ()

    @field_validator("uid")
    @classmethod
    def _strip_uid(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("uid must not be blank")
        return value

    @property
    def composite_key(self) -> tuple[str, str]:
        """(uid, start-as-text): identifies one occurrence across sources."""
        return (self.uid, self.start.ical_value)

    @property
    def is_all_day(self) -> bool:
        return self.start.is_all_day


class FidelityTier(IntEnum):
    """Parsing strategy that produced a structured document, best first."""

    STRICT = 1
    EXTRACTION = 2
    PLACEHOLDER = 3

    @property
    def is_degraded(self) -> bool:
        return self >= FidelityTier.EXTRACTION


class StructuredDocument(BaseModel):
    """Result of parsing one source document."""

    source_name: str
    tier: FidelityTier
    events: list[CalendarEvent] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    calendar_name: Optional[str] = None

    @property
    def has_usable_events(self) -> bool:
        """True when the document holds real events rather than a diagnostic placeholder."""
        return self.tier != FidelityTier.PLACEHOLDER and bool(self.events)


@dataclass
class MergedCalendar:
    """Events keyed by (uid, start-as-text); at most one entry per key."""

    events: dict[tuple[str, str], CalendarEvent] = field(default_factory=dict)

    @classmethod
    def from_events(cls, events: Iterable[CalendarEvent]) -> MergedCalendar:
        """Key events by composite key; the first event for a key wins."""
        keyed: dict[tuple[str, str], CalendarEvent] = {}
        for event in events:
            keyed.setdefault(event.composite_key, event)
        return cls(events=keyed)

    @classmethod
    def from_document(cls, document: StructuredDocument) -> MergedCalendar:
        return cls.from_events(document.events)

    def sorted_events(self) -> list[CalendarEvent]:
        """Events in deterministic output order: start, then uid."""
        return sorted(self.events.values(), key=lambda e: (e.start.sort_key(), e.uid))

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self) -> Iterator[CalendarEvent]:
        return iter(self.sorted_events())


def utc_now_floor() -> datetime:
    """Current UTC time truncated to whole seconds, as a naive wall time."""
    return now_utc().astimezone(timezone.utc).replace(tzinfo=None, microsecond=0)
