"""Logging setup for the merge service.

Console output goes through colorlog so warnings about degraded sources stand
out when running interactively. Third-party HTTP loggers are kept quiet unless
debug mode is requested.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

import colorlog

DEBUG_ENV = "ICALMERGER_DEBUG"
LEVEL_ENV = "ICALMERGER_LOG_LEVEL"

_NOISY_LOGGERS = ("httpx", "httpcore", "aiohttp.access", "asyncio")

_LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}


def _env_truthy(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def resolve_log_level(level_name: Optional[str]) -> int:
    """Map a level name to a logging level, honoring environment overrides.

    ICALMERGER_DEBUG wins over everything, then ICALMERGER_LOG_LEVEL, then the
    provided name. Unknown names fall back to INFO.
    """
    if _env_truthy(DEBUG_ENV):
        return logging.DEBUG

    name = os.environ.get(LEVEL_ENV) or level_name or "INFO"
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level_name: Optional[str] = None) -> int:
    """Configure root logging with a single colorized stderr handler.

    Safe to call more than once: the handler is only installed when the root
    logger has none, but the level is always re-applied.

    Args:
        level_name: Requested level name (e.g. "INFO", "debug")

    Returns:
        The effective numeric level
    """
    level = resolve_log_level(level_name)
    root = logging.getLogger()

    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(
            colorlog.ColoredFormatter(
                "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
                log_colors=_LOG_COLORS,
            )
        )
        root.addHandler(handler)

    root.setLevel(level)

    quiet_level = logging.DEBUG if level == logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )
    return level
