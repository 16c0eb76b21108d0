"""The merge cycle: fetch every source, parse, merge and persist the artifact.

Runs are single-flight: a scheduled refresh and an on-demand request never
write the artifact concurrently, and the artifact is replaced atomically so
readers only ever see a complete file.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import stat
import tempfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from icalmerger.calendar.fetcher import FetchResult, IcsFetcher
from icalmerger.calendar.merger import EventMerger
from icalmerger.calendar.models import FidelityTier, IcsSource, StructuredDocument
from icalmerger.calendar.normalizer import decode_ics_bytes
from icalmerger.calendar.parser import IcsRecoveryParser
from icalmerger.calendar.serializer import CompatibilitySerializer
from icalmerger.core.config_manager import MergerConfig
from icalmerger.core.exceptions import ArtifactWriteError, NoUsableSourceError
from icalmerger.core.timezone_utils import now_utc

logger = logging.getLogger(__name__)

ARTIFACT_FILE_MODE = 0o644


@dataclass
class SourceReport:
    """What happened to one source during a cycle."""

    name: str
    fetched: bool
    tier: Optional[FidelityTier] = None
    event_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "fetched": self.fetched,
            "tier": self.tier.name.lower() if self.tier is not None else None,
            "event_count": self.event_count,
            "error": self.error,
        }


@dataclass
class CycleReport:
    """Summary of the last successful merge cycle."""

    artifact_path: Path
    total_events: int
    finished_at: datetime
    sources: list[SourceReport] = field(default_factory=list)


def write_artifact_atomic(path: Path, text: str) -> None:
    """Replace `path` with `text` via a temp file in the same directory.

    Raises:
        ArtifactWriteError: If the directory or file cannot be written
    """
    tmp_name: Optional[str] = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        # mkstemp creates 0600; keep the replaced file's mode, else world-readable
        try:
            mode = stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            mode = ARTIFACT_FILE_MODE
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
        raise ArtifactWriteError(f"Cannot write artifact {path}: {e}", path=str(path)) from e


class MergeCycle:
    """Single-flight merge pipeline bound to one configuration."""

    def __init__(
        self,
        config: MergerConfig,
        fetcher_factory: Optional[Callable[[], IcsFetcher]] = None,
        parser: Optional[IcsRecoveryParser] = None,
        merger: Optional[EventMerger] = None,
        serializer: Optional[CompatibilitySerializer] = None,
    ) -> None:
        """Initialize merge cycle.

        Args:
            config: Service configuration (sources, output path, time zone)
            fetcher_factory: Builds the fetcher used for each run
            parser: Recovery parser
            merger: Event merger
            serializer: Artifact serializer
        """
        self.config = config
        self._fetcher_factory = fetcher_factory or (
            lambda: IcsFetcher(request_timeout=config.request_timeout)
        )
        self.parser = parser or IcsRecoveryParser()
        self.merger = merger or EventMerger()
        self.serializer = serializer or CompatibilitySerializer()
        self._lock = asyncio.Lock()
        self.last_report: Optional[CycleReport] = None
        self.last_error: Optional[str] = None

    @property
    def artifact_path(self) -> Path:
        return Path(self.config.output_path)

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self, sources: Optional[Sequence[IcsSource]] = None) -> Path:
        """Run one full cycle; concurrent callers wait for the running one.

        Args:
            sources: Sources to merge (defaults to the configured calendars)

        Returns:
            Path of the written artifact

        Raises:
            NoUsableSourceError: Nothing usable was fetched; artifact untouched
            ArtifactWriteError: Artifact could not be written; previous one kept
        """
        async with self._lock:
            try:
                return await self._run_locked(
                    list(sources) if sources is not None else self.config.calendars
                )
            except (NoUsableSourceError, ArtifactWriteError) as e:
                self.last_error = str(e)
                raise

    async def _run_locked(self, sources: Sequence[IcsSource]) -> Path:
        logger.info("Starting merge cycle for %d sources", len(sources))
        async with self._fetcher_factory() as fetcher:
            results = await fetcher.fetch_many(sources, self.config.max_concurrent_fetches)

        documents, reports = await asyncio.to_thread(self._parse_all, results)

        if not any(document.has_usable_events for document in documents.values()):
            raise NoUsableSourceError(
                f"No usable events from {len(sources)} sources; keeping previous artifact"
            )

        text, total_events = await asyncio.to_thread(self._merge_and_render, documents)
        path = self.artifact_path
        await asyncio.to_thread(write_artifact_atomic, path, text)

        self.last_report = CycleReport(
            artifact_path=path,
            total_events=total_events,
            finished_at=now_utc(),
            sources=reports,
        )
        self.last_error = None
        logger.info("Merge cycle wrote %d events to %s", total_events, path)
        return path

    def _parse_all(
        self, results: Sequence[FetchResult]
    ) -> tuple[dict[str, StructuredDocument], list[SourceReport]]:
        documents: dict[str, StructuredDocument] = {}
        reports: list[SourceReport] = []
        for result in results:
            name = result.source.name
            if not result.success or result.content is None:
                reports.append(SourceReport(name=name, fetched=False, error=str(result.error)))
                continue

            document = self.parser.parse_text(decode_ics_bytes(result.content), name)
            documents[name] = document
            reports.append(
                SourceReport(
                    name=name,
                    fetched=True,
                    tier=document.tier,
                    event_count=len(document.events),
                )
            )
        return documents, reports

    def _merge_and_render(self, documents: dict[str, StructuredDocument]) -> tuple[str, int]:
        merged = self.merger.merge(documents)
        return self.serializer.render(merged, self.config.output_timezone), len(merged)
