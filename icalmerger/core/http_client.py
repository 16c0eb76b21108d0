"""Shared HTTP client manager.

One pooled `httpx.AsyncClient` per client id is reused across merge cycles so
periodic refreshes do not pay connection setup for every source. Clients that
keep failing are recreated.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

from icalmerger import __version__

logger = logging.getLogger(__name__)

_shared_clients: dict[str, httpx.AsyncClient] = {}
_client_health: dict[str, dict[str, float]] = {}
_client_lock = asyncio.Lock()

DEFAULT_LIMITS = httpx.Limits(max_connections=8, max_keepalive_connections=4)

DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=30.0)

DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": f"icalmerger/{__version__}",
    "Accept": "text/calendar, text/plain, application/octet-stream, */*",
    "Accept-Language": "en-US,en;q=0.9",
}

# Recreate a client after this many consecutive errors
HEALTH_ERROR_THRESHOLD = 3


def build_timeout(read_seconds: float) -> httpx.Timeout:
    """Return the default timeout with a custom read timeout."""
    return httpx.Timeout(connect=10.0, read=read_seconds, write=10.0, pool=30.0)


async def get_shared_client(
    client_id: str = "default",
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Get or create a shared HTTP client.

    Args:
        client_id: Identifier for the client
        timeout: Timeout used when the client has to be created

    Returns:
        Pooled httpx.AsyncClient
    """
    async with _client_lock:
        health = _client_health.get(client_id)
        if health and health["error_count"] >= HEALTH_ERROR_THRESHOLD:
            logger.warning(
                "Recreating unhealthy HTTP client '%s' after %d errors",
                client_id,
                int(health["error_count"]),
            )
            stale = _shared_clients.pop(client_id, None)
            if stale is not None and not stale.is_closed:
                await stale.aclose()

        client = _shared_clients.get(client_id)
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                limits=DEFAULT_LIMITS,
                timeout=timeout or DEFAULT_TIMEOUT,
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
            )
            _shared_clients[client_id] = client
            _client_health[client_id] = {"error_count": 0, "created_time": time.time()}
            logger.debug("Created shared HTTP client '%s'", client_id)

        return client


async def record_client_error(client_id: str = "default") -> None:
    """Count a failed request against the client's health."""
    async with _client_lock:
        health = _client_health.setdefault(
            client_id, {"error_count": 0, "created_time": time.time()}
        )
        health["error_count"] += 1
        logger.debug(
            "Recorded error for client '%s', total errors: %d",
            client_id,
            int(health["error_count"]),
        )


async def record_client_success(client_id: str = "default") -> None:
    """Reset the client's consecutive error count."""
    async with _client_lock:
        if client_id in _client_health:
            _client_health[client_id]["error_count"] = 0


async def close_all_clients() -> None:
    """Close all shared HTTP clients.

    Called on shutdown so open connections are released cleanly.
    """
    async with _client_lock:
        for client_id, client in _shared_clients.items():
            if not client.is_closed:
                try:
                    await client.aclose()
                except (httpx.HTTPError, RuntimeError) as e:
                    logger.warning("Error closing shared HTTP client '%s': %s", client_id, e)
        _shared_clients.clear()
        _client_health.clear()
        logger.debug("All shared HTTP clients closed")
