"""Command-line entry for icalmerger."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import NoReturn, Optional

from .core.config_manager import DEFAULT_CALENDAR_DIR, ConfigManager, MergerConfig
from .core.exceptions import ConfigError
from .core.logging_config import configure_logging

logger = logging.getLogger(__name__)


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the icalmerger CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="icalmerger",
        description="Merge several iCalendar feeds into one deduplicated feed",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  icalmerger --config config.json --once         # Merge once and exit
  icalmerger --config config.json --serve        # Serve the feed, refresh periodically
  icalmerger --local --calendar-dir ./calendars  # Read <dir>/<name>.ics instead of URLs
        """,
    )
    parser.add_argument("--config", metavar="PATH", help="Config file (YAML or JSON)")
    parser.add_argument("--output", metavar="PATH", help="Override the merged artifact path")
    parser.add_argument("--serve", action="store_true", help="Run the HTTP service")
    parser.add_argument("--host", help="Bind address for the HTTP service")
    parser.add_argument("--port", type=int, metavar="PORT", help="Port for the HTTP service")
    parser.add_argument(
        "--local", action="store_true", help="Read calendars from local .ics files"
    )
    parser.add_argument(
        "--calendar-dir",
        default=DEFAULT_CALENDAR_DIR,
        metavar="DIR",
        help=f"Directory for --local calendars (default: {DEFAULT_CALENDAR_DIR})",
    )
    parser.add_argument("--once", action="store_true", help="Run one merge cycle and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def build_config(
    args: argparse.Namespace, manager: Optional[ConfigManager] = None
) -> MergerConfig:
    """Load configuration and apply command-line overrides.

    Raises:
        ConfigError: When the configuration is invalid
    """
    config = (manager or ConfigManager()).load_full_config(args.config)

    updates: dict[str, object] = {}
    if args.output:
        updates["output_path"] = args.output
    if args.host:
        updates["server_bind"] = args.host
    if args.port is not None:
        if not 1 <= args.port <= 65535:
            raise ConfigError(f"Port out of range: {args.port}")
        updates["server_port"] = args.port
    if args.debug:
        updates["log_level"] = "DEBUG"
    if updates:
        config = config.model_copy(update=updates)

    if args.local:
        config = config.with_local_sources(args.calendar_dir)
    return config


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the icalmerger CLI."""
    args = _create_parser().parse_args(argv)
    configure_logging("DEBUG" if args.debug else None)

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(2)

    configure_logging(config.log_level)
    if not config.calendars:
        logger.warning("No calendars configured; merge cycles will be skipped")

    from . import run_server
    from .api.server import run_loop, run_once

    if args.once:
        sys.exit(run_once(config))
    if args.serve:
        run_server(config)
    else:
        run_loop(config)
    sys.exit(0)


if __name__ == "__main__":
    main()
