"""Merge and deduplicate events from several parsed sources."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta

from .models import CalendarEvent, MergedCalendar, StructuredDocument, TemporalValue, utc_now_floor

logger = logging.getLogger(__name__)

EMPTY_MERGE_SUMMARY = "Calendar Merger Info"
EMPTY_MERGE_DESCRIPTION = "No valid events were found in any of the source calendars"


def provenance_summary(summary: str, source_names: frozenset[str]) -> str:
    """Prefix `summary` with "[name] " when exactly one source contributed it."""
    if len(source_names) == 1:
        (name,) = source_names
        return f"[{name}] {summary}"
    return summary


class EventMerger:
    """Fold per-source documents into one MergedCalendar.

    Sources are folded in lexicographic order of their names, and events within
    a source keep document order, so "first seen" is deterministic and repeated
    merges of the same input produce identical results.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now_floor) -> None:
        self._clock = clock

    def merge(self, documents: Mapping[str, StructuredDocument]) -> MergedCalendar:
        """Merge parsed source documents.

        Events sharing a (uid, start) key are unioned: the first-seen event's
        fields are kept and `source_names` accumulates every contributor.
        Events unique to a single source get a "[source] " summary prefix.

        Args:
            documents: Parsed documents keyed by source name

        Returns:
            MergedCalendar, never empty (a placeholder is injected when no
            event survives)
        """
        folded: dict[tuple[str, str], CalendarEvent] = {}
        sources: dict[tuple[str, str], set[str]] = {}
        rejected = 0

        for source_name in sorted(documents):
            for event in documents[source_name].events:
                if not self._is_mergeable(event, source_name):
                    rejected += 1
                    continue
                key = event.composite_key
                if key not in folded:
                    folded[key] = event
                    sources[key] = set()
                sources[key].add(source_name)

        merged = {
            key: event.model_copy(
                update={
                    "source_names": frozenset(sources[key]),
                    "summary": provenance_summary(event.summary, frozenset(sources[key])),
                }
            )
            for key, event in folded.items()
        }

        logger.info(
            "Merged %d sources into %d events (%d rejected)",
            len(documents),
            len(merged),
            rejected,
        )

        if not merged:
            placeholder = self._empty_merge_placeholder()
            logger.warning("No events survived merge; injecting %s", placeholder.uid)
            merged = {placeholder.composite_key: placeholder}

        return MergedCalendar(events=merged)

    @staticmethod
    def _is_mergeable(event: CalendarEvent, source_name: str) -> bool:
        if not event.uid.strip():
            logger.debug("Skipping event without UID from %s", source_name)
            return False
        if not event.summary.strip():
            logger.debug("Skipping event %s from %s: no summary", event.uid, source_name)
            return False
        if event.start is None:
            logger.debug("Skipping event %s from %s: no start", event.uid, source_name)
            return False
        return True

    def _empty_merge_placeholder(self) -> CalendarEvent:
        now = self._clock()
        start = TemporalValue.zoned(now, "UTC")
        return CalendarEvent(
            uid=f"merge-info-{now:%Y%m%dT%H%M%SZ}",
            summary=EMPTY_MERGE_SUMMARY,
            description=EMPTY_MERGE_DESCRIPTION,
            start=start,
            end=start.shifted(timedelta(hours=1)),
        )
