"""icalmerger - merge several iCalendar feeds into one deduplicated feed.

Keeps imports light so `python -m icalmerger --help` starts fast; the server
and merge machinery are imported on demand.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.3.0"

if TYPE_CHECKING:
    from .core.config_manager import MergerConfig


def run_server(config: MergerConfig) -> None:
    """Start the HTTP service with its background refresh loop.

    Args:
        config: Loaded service configuration
    """
    from .api.server import start_server

    start_server(config)
