"""Calendar feed, summary, structured JSON and health routes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from aiohttp import web

from icalmerger import __version__
from icalmerger.calendar.datetime_utils import to_rfc3339
from icalmerger.calendar.serializer import DEFAULT_CALENDAR_NAME
from icalmerger.core.config_manager import MergerConfig
from icalmerger.core.exceptions import ArtifactWriteError, NoUsableSourceError
from icalmerger.core.timezone_utils import now_utc
from icalmerger.domain.merge_cycle import MergeCycle
from icalmerger.domain.renderer import SUMMARY_CALENDAR_NAME, CalendarRenderer

logger = logging.getLogger(__name__)

DEFAULT_API_DAYS_BACK = 1
DEFAULT_API_DAYS_FORWARD = 30
SUMMARY_FILENAME = "summary.ics"


class QueryParamError(ValueError):
    """Query parameter is not a non-negative integer."""


def _non_negative_int(request: web.Request, name: str, default: int) -> int:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise QueryParamError(f"{name} must be an integer, got {raw!r}") from e
    if value < 0:
        raise QueryParamError(f"{name} must be non-negative, got {value}")
    return value


def register_calendar_routes(
    app: web.Application,
    config: MergerConfig,
    cycle: MergeCycle,
    renderer: CalendarRenderer,
    time_provider: Callable[[], datetime] = now_utc,
) -> None:
    """Register calendar routes.

    Args:
        app: aiohttp web application
        config: Service configuration (cache lifetime, summary window)
        cycle: Merge cycle used for on-demand refreshes and health
        renderer: Reader for the persisted artifact
        time_provider: Clock used in health responses
    """
    cache_control = f"max-age={config.sync_interval_minutes * 60}, public"
    artifact_filename = renderer.artifact_path.name or "calendar.ics"

    def _calendar_response(body: str, filename: str, calendar_name: str) -> web.Response:
        return web.Response(
            text=body,
            content_type="text/calendar",
            charset="utf-8",
            headers={
                "Content-Disposition": f"attachment; filename={filename}",
                "X-WR-CALNAME": calendar_name,
                "Cache-Control": cache_control,
            },
        )

    def _artifact_missing() -> web.Response:
        return web.Response(
            status=503,
            text="Calendar not available yet; no merge cycle has completed\n",
        )

    async def index(_request: web.Request) -> web.Response:
        """Plain-text banner listing the available routes."""
        lines = [
            f"icalmerger {__version__}",
            f"{len(config.calendars)} calendars, refreshed every "
            f"{config.sync_interval_minutes} minutes",
            "",
            "/calendar        merged feed (?nocache to refresh first)",
            "/summary         merged feed limited to the summary window",
            "/api/calendar    day-grouped JSON (days_back, days_forward)",
            "/health          service status",
        ]
        return web.Response(text="\n".join(lines) + "\n")

    async def health(request: web.Request) -> web.Response:
        """Health check: 503 until the first successful merge cycle."""
        report = cycle.last_report
        healthy = report is not None
        status = 200 if healthy else 503

        if "plain" in request.query:
            return web.Response(text="OK" if healthy else "UNAVAILABLE", status=status)

        body: dict[str, Any] = {
            "status": "ok" if healthy else "starting",
            "server_time": to_rfc3339(time_provider()),
            "merge_running": cycle.running,
            "last_error": cycle.last_error,
            "last_cycle": None,
        }
        if report is not None:
            if cycle.last_error:
                body["status"] = "degraded"
            body["last_cycle"] = {
                "finished_at": to_rfc3339(report.finished_at),
                "total_events": report.total_events,
                "artifact_path": str(report.artifact_path),
                "sources": [source.to_dict() for source in report.sources],
            }
        return web.json_response(body, status=status)

    async def calendar(request: web.Request) -> web.Response:
        """Serve the full merged feed, optionally refreshing it first."""
        if "nocache" in request.query:
            try:
                await cycle.run()
            except NoUsableSourceError as e:
                logger.warning("On-demand merge produced nothing usable, serving previous: %s", e)
            except ArtifactWriteError:
                logger.exception("On-demand merge failed to write the artifact")
                return web.Response(status=500, text="Failed to write merged calendar\n")

        try:
            body = await asyncio.to_thread(renderer.render_full, DEFAULT_CALENDAR_NAME)
        except FileNotFoundError:
            return _artifact_missing()
        return _calendar_response(body, artifact_filename, DEFAULT_CALENDAR_NAME)

    async def summary(_request: web.Request) -> web.Response:
        """Serve the feed limited to the configured summary window."""
        try:
            body = await asyncio.to_thread(
                renderer.render_filtered,
                config.summary_days_back,
                config.summary_days_forward,
                config.output_timezone,
                SUMMARY_CALENDAR_NAME,
            )
        except FileNotFoundError:
            return _artifact_missing()
        return _calendar_response(body, SUMMARY_FILENAME, SUMMARY_CALENDAR_NAME)

    async def api_calendar(request: web.Request) -> web.Response:
        """Day-grouped JSON view of the merged feed."""
        try:
            days_back = _non_negative_int(request, "days_back", DEFAULT_API_DAYS_BACK)
            days_forward = _non_negative_int(request, "days_forward", DEFAULT_API_DAYS_FORWARD)
        except QueryParamError as e:
            return web.json_response({"error": str(e)}, status=400)

        try:
            structured = await asyncio.to_thread(
                renderer.render_structured, days_back, days_forward
            )
        except FileNotFoundError:
            return web.json_response({"error": "calendar not available yet"}, status=503)
        return web.json_response(structured.model_dump(mode="json"))

    app.router.add_get("/", index)
    app.router.add_get("/health", health)
    app.router.add_get("/calendar", calendar)
    app.router.add_get("/summary", summary)
    app.router.add_get("/api/calendar", api_calendar)
