"""Restrict a merged calendar to a window of calendar days."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional

from icalmerger.core.timezone_utils import today_in

from .models import CalendarEvent, MergedCalendar

logger = logging.getLogger(__name__)


class DateRangeFilter:
    """Select events whose start day falls in [today - back, today + forward].

    Comparison is by calendar day only: an event at 23:59 and one at 00:00 on
    the same date are treated identically. For timed events the date is the
    wall-clock date as written in the feed.
    """

    def __init__(self, time_zone_id: Optional[str] = None) -> None:
        """Initialize filter.

        Args:
            time_zone_id: Zone used to decide what "today" is (UTC if unresolvable)
        """
        self.time_zone_id = time_zone_id

    def window(
        self, days_back: int, days_forward: int, today: Optional[date] = None
    ) -> tuple[date, date]:
        """Return the inclusive (first, last) day of the window."""
        if days_back < 0 or days_forward < 0:
            raise ValueError("days_back and days_forward must be non-negative")
        anchor = today or today_in(self.time_zone_id)
        return anchor - timedelta(days=days_back), anchor + timedelta(days=days_forward)

    def filter(
        self,
        calendar: MergedCalendar,
        days_back: int,
        days_forward: int,
        today: Optional[date] = None,
    ) -> MergedCalendar:
        """Return a sub-calendar limited to the window.

        The result is re-keyed by uid alone so residual duplicates from
        degraded parses collapse to the earliest occurrence. An empty result is
        valid.

        Raises:
            ValueError: If either day count is negative
        """
        first_day, last_day = self.window(days_back, days_forward, today)

        by_uid: dict[str, CalendarEvent] = {}
        dropped = 0
        for event in calendar.sorted_events():
            try:
                day = event.start.day
            except (AttributeError, ValueError) as e:
                logger.warning("Dropping event %s with unreadable start: %s", event.uid, e)
                dropped += 1
                continue
            if first_day <= day <= last_day:
                by_uid.setdefault(event.uid, event)

        logger.debug(
            "Filtered %d events to %d between %s and %s (%d unreadable)",
            len(calendar),
            len(by_uid),
            first_day,
            last_day,
            dropped,
        )
        return MergedCalendar.from_events(by_uid.values())
