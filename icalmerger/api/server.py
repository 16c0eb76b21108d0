"""aiohttp server and background refresh loop for the merged feed.

`start_server` blocks until SIGINT/SIGTERM. `run_loop` runs only the periodic
merge cycle (no HTTP), and `run_once` runs a single cycle for cron-style use.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Optional

from aiohttp import web

from icalmerger.core.config_manager import MergerConfig
from icalmerger.core.exceptions import ArtifactWriteError, NoUsableSourceError
from icalmerger.core.http_client import close_all_clients
from icalmerger.domain.merge_cycle import MergeCycle
from icalmerger.domain.renderer import CalendarRenderer

from .routes import register_calendar_routes

logger = logging.getLogger(__name__)


async def _run_cycle_logged(cycle: MergeCycle) -> bool:
    """Run one cycle; failures are logged and reported as False."""
    try:
        await cycle.run()
    except NoUsableSourceError as e:
        logger.warning("Merge cycle skipped: %s", e)
        return False
    except ArtifactWriteError:
        logger.exception("Merge cycle failed to write the artifact")
        return False
    return True


async def _refresh_loop(
    cycle: MergeCycle,
    interval_seconds: float,
    stop_event: asyncio.Event,
) -> None:
    """Background refresher: immediate cycle then one every `interval_seconds`."""
    initial = True
    while not stop_event.is_set():
        logger.log(logging.INFO if initial else logging.DEBUG, "Starting merge cycle")
        try:
            if await _run_cycle_logged(cycle) and initial:
                logger.info("Initial merge cycle completed, feed ready to serve")
        except Exception:
            # Keep the scheduler alive; the next tick retries
            logger.exception("Refresh loop unexpected error")
        initial = False

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass


def _make_app(
    config: MergerConfig,
    cycle: MergeCycle,
    renderer: CalendarRenderer,
) -> web.Application:
    """Create the aiohttp application with all routes registered."""
    app = web.Application()
    register_calendar_routes(app, config=config, cycle=cycle, renderer=renderer)

    async def _shutdown(_app: web.Application) -> None:
        logger.info("Application shutdown requested")

    app.on_shutdown.append(_shutdown)
    return app


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _on_signal() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _on_signal)


async def _stop_refresher(refresher: asyncio.Task[None]) -> None:
    refresher.cancel()
    try:
        await refresher
    except asyncio.CancelledError:
        pass


async def _serve(
    config: MergerConfig,
    external_stop_event: Optional[asyncio.Event] = None,
    serve_http: bool = True,
) -> None:
    """Run the refresh loop (and the HTTP server) until signalled to stop.

    Args:
        config: Service configuration
        external_stop_event: Optional event to signal shutdown. If provided,
            signal handlers are not registered (caller owns signal handling).
        serve_http: Whether to expose the HTTP routes
    """
    stop_event = external_stop_event or asyncio.Event()
    cycle = MergeCycle(config)
    renderer = CalendarRenderer(cycle.artifact_path, config.output_timezone)

    runner: Optional[web.AppRunner] = None
    if serve_http:
        runner = web.AppRunner(_make_app(config, cycle, renderer))
        await runner.setup()
        site = web.TCPSite(runner, host=config.server_bind, port=config.server_port)
        try:
            await site.start()
        except OSError:
            logger.exception(
                "Failed to start server on %s:%d", config.server_bind, config.server_port
            )
            await runner.cleanup()
            raise
        logger.info("Server started on %s:%d", config.server_bind, config.server_port)

    refresher = asyncio.create_task(
        _refresh_loop(cycle, config.sync_interval_minutes * 60, stop_event)
    )

    if external_stop_event is None:
        _install_signal_handlers(stop_event)
    else:
        logger.debug("Using external stop event - skipping signal handler registration")

    await stop_event.wait()
    logger.info("Stop event received, shutting down")

    await _stop_refresher(refresher)
    if runner is not None:
        await runner.cleanup()
    await close_all_clients()
    logger.info("Shutdown complete")


def start_server(config: MergerConfig) -> None:
    """Run the HTTP service with its background refresh loop (blocking)."""
    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


def run_loop(config: MergerConfig) -> None:
    """Run only the periodic merge cycle in the foreground (blocking)."""
    try:
        asyncio.run(_serve(config, serve_http=False))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


async def _run_once(config: MergerConfig) -> bool:
    try:
        return await _run_cycle_logged(MergeCycle(config))
    finally:
        await close_all_clients()


def run_once(config: MergerConfig) -> int:
    """Run a single merge cycle.

    Returns:
        Process exit code: 0 on success, 1 when nothing was written
    """
    return 0 if asyncio.run(_run_once(config)) else 1
