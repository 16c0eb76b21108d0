"""Day-grouped event records for JSON consumers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from icalmerger.core.timezone_utils import resolve_zone

from .datetime_utils import format_day_label, format_short_date, format_time_12h, to_rfc3339
from .models import CalendarEvent, MergedCalendar

DEFAULT_STATUS = "confirmed"

# Alias so DayGroup can have a field named "date"
CalendarDay = date


class EventRecord(BaseModel):
    """One event as presented to JSON clients."""

    uid: str
    summary: str
    start_time: datetime
    end_time: datetime
    start: str = Field(..., description='Short display form, e.g. "3:04 PM" or "Jan 2"')
    end: str
    location: str = ""
    description: str = ""
    all_day: bool = False
    categories: list[str] = Field(default_factory=list)
    status: str = DEFAULT_STATUS

    @field_serializer("start_time", "end_time")
    def _serialize_instant(self, value: datetime) -> str:
        return to_rfc3339(value)


class DayGroup(BaseModel):
    """Events starting on one calendar day."""

    date: CalendarDay
    date_fmt: str
    weekday: str
    is_today: bool
    is_tomorrow: bool
    events: list[EventRecord] = Field(default_factory=list)


class DateRange(BaseModel):
    start: date
    end: date


class StructuredCalendar(BaseModel):
    """Response body of the JSON calendar endpoint."""

    days: list[DayGroup] = Field(default_factory=list)
    total_events: int = 0
    date_range: DateRange
    generated_at: datetime

    @field_serializer("generated_at")
    def _serialize_generated_at(self, value: datetime) -> str:
        return to_rfc3339(value)


def _event_record(event: CalendarEvent, zone: tzinfo, today: date) -> tuple[date, EventRecord]:
    start_dt = event.start.as_aware(zone).astimezone(zone)
    if event.end is not None:
        end_dt = event.end.as_aware(zone).astimezone(zone)
    elif event.is_all_day:
        end_dt = start_dt + timedelta(days=1)
    else:
        end_dt = start_dt + timedelta(hours=1)

    if event.is_all_day:
        day = event.start.day
        start_str = format_short_date(day)
        last_day = end_dt.date() - timedelta(days=1)
        end_str = format_short_date(last_day) if last_day > day else start_str
    else:
        day = start_dt.date()
        if day == today:
            start_str = format_time_12h(start_dt)
        else:
            start_str = f"{format_short_date(day)} {format_time_12h(start_dt)}"
        if end_dt.date() == day:
            end_str = format_time_12h(end_dt)
        else:
            end_str = f"{format_short_date(end_dt.date())} {format_time_12h(end_dt)}"

    record = EventRecord(
        uid=event.uid,
        summary=event.summary,
        start_time=start_dt,
        end_time=end_dt,
        start=start_str,
        end=end_str,
        location=event.location or "",
        description=event.description or "",
        all_day=event.is_all_day,
        categories=list(event.categories),
        status=(event.status or DEFAULT_STATUS).lower(),
    )
    return day, record


def build_structured_calendar(
    calendar: MergedCalendar,
    time_zone_id: Optional[str],
    window: tuple[date, date],
    today: date,
    generated_at: datetime,
) -> StructuredCalendar:
    """Group already-filtered events by day.

    Args:
        calendar: Events to present (normally the output of DateRangeFilter)
        time_zone_id: Zone in which instants and day boundaries are shown
        window: Inclusive (first, last) day the events were filtered to
        today: Reference day for the "Today"/"Tomorrow" labels
        generated_at: Timestamp reported to the client

    Returns:
        StructuredCalendar with days in ascending order
    """
    zone = resolve_zone(time_zone_id) or timezone.utc
    records = sorted(
        (_event_record(event, zone, today) for event in calendar.sorted_events()),
        key=lambda item: (item[1].start_time, item[1].uid),
    )

    groups: dict[date, DayGroup] = {}
    for day, record in records:
        group = groups.get(day)
        if group is None:
            group = DayGroup(
                date=day,
                date_fmt=format_day_label(day, today),
                weekday=f"{day:%A}",
                is_today=day == today,
                is_tomorrow=day == today + timedelta(days=1),
            )
            groups[day] = group
        group.events.append(record)

    first_day, last_day = window
    return StructuredCalendar(
        days=[groups[day] for day in sorted(groups)],
        total_events=len(records),
        date_range=DateRange(start=first_day, end=last_day),
        generated_at=generated_at,
    )
