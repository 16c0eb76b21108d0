"""Read-side views of the persisted merged artifact."""

from __future__ import annotations

import logging
import threading
from datetime import date
from pathlib import Path
from typing import Optional

from icalmerger.calendar.date_filter import DateRangeFilter
from icalmerger.calendar.models import MergedCalendar
from icalmerger.calendar.parser import IcsRecoveryParser
from icalmerger.calendar.serializer import DEFAULT_CALENDAR_NAME, CompatibilitySerializer
from icalmerger.calendar.structured import StructuredCalendar, build_structured_calendar
from icalmerger.core.timezone_utils import now_utc, today_in

logger = logging.getLogger(__name__)

SUMMARY_CALENDAR_NAME = "Summary Calendar"


class CalendarRenderer:
    """Render the merged artifact in full, filtered or structured form.

    The artifact is re-parsed only when its modification time or size
    changes.
    """

    def __init__(
        self,
        artifact_path: Path,
        time_zone_id: str,
        parser: Optional[IcsRecoveryParser] = None,
        serializer: Optional[CompatibilitySerializer] = None,
    ) -> None:
        self.artifact_path = Path(artifact_path)
        self.time_zone_id = time_zone_id
        self.parser = parser or IcsRecoveryParser()
        self.serializer = serializer or CompatibilitySerializer()
        self._cache_key: Optional[tuple[int, int]] = None
        self._cached: Optional[MergedCalendar] = None
        self._cache_lock = threading.Lock()

    def load(self) -> MergedCalendar:
        """Parse the artifact into a calendar.

        Raises:
            FileNotFoundError: If no merge cycle has written the artifact yet
        """
        stat = self.artifact_path.stat()
        key = (stat.st_mtime_ns, stat.st_size)
        with self._cache_lock:
            if self._cached is not None and self._cache_key == key:
                return self._cached

            text = self.artifact_path.read_text(encoding="utf-8")
            document = self.parser.parse_text(text, self.artifact_path.stem)
            if document.tier.is_degraded:
                logger.warning(
                    "Artifact %s parsed in %s mode", self.artifact_path, document.tier.name.lower()
                )
            self._cached = MergedCalendar.from_document(document)
            self._cache_key = key
            return self._cached

    def render_full(self, calendar_name: str = DEFAULT_CALENDAR_NAME) -> str:
        """Re-serialize the whole artifact."""
        return self.serializer.render(self.load(), self.time_zone_id, calendar_name)

    def render_filtered(
        self,
        days_back: int,
        days_forward: int,
        time_zone_id: Optional[str] = None,
        calendar_name: str = SUMMARY_CALENDAR_NAME,
        today: Optional[date] = None,
    ) -> str:
        """Serialize only events inside the day window.

        Args:
            days_back: Days before today to include
            days_forward: Days after today to include
            time_zone_id: Output zone (defaults to the renderer's zone)
            calendar_name: X-WR-CALNAME of the result
            today: Reference day (defaults to today in the output zone)
        """
        zone = time_zone_id or self.time_zone_id
        filtered = DateRangeFilter(zone).filter(self.load(), days_back, days_forward, today)
        return self.serializer.render(filtered, zone, calendar_name)

    def render_structured(
        self,
        days_back: int,
        days_forward: int,
        today: Optional[date] = None,
    ) -> StructuredCalendar:
        """Day-grouped event records for the window."""
        date_filter = DateRangeFilter(self.time_zone_id)
        anchor = today or today_in(self.time_zone_id)
        window = date_filter.window(days_back, days_forward, anchor)
        filtered = date_filter.filter(self.load(), days_back, days_forward, anchor)
        return build_structured_calendar(
            filtered,
            self.time_zone_id,
            window=window,
            today=anchor,
            generated_at=now_utc(),
        )
