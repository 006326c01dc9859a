"""Shared HTTP client manager for the spacio API client.

Keeps one ``httpx.AsyncClient`` per client id so repeated API calls reuse
connections, and recreates a client after repeated consecutive failures.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

from spacio import __version__

logger = logging.getLogger(__name__)

# Global state for shared HTTP clients
_shared_clients: dict[str, httpx.AsyncClient] = {}
_client_health: dict[str, dict[str, float]] = {}
_client_lock = asyncio.Lock()

DEFAULT_LIMITS = httpx.Limits(max_connections=10, max_keepalive_connections=5)

DEFAULT_TIMEOUT = httpx.Timeout(
    connect=10.0,
    read=30.0,
    write=30.0,  # multipart uploads of meeting minutes
    pool=30.0,
)

DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": f"spacio-client/{__version__}",
    "Accept": "application/json, text/plain, */*",
    "Cache-Control": "no-cache",
}

# Health check thresholds
HEALTH_ERROR_THRESHOLD = 3  # Recreate client after 3 consecutive errors
HEALTH_TIMEOUT_SECONDS = 300  # ...when they happened within the last 5 minutes


def _new_health_record() -> dict[str, float]:
    return {"error_count": 0, "last_error_time": 0, "created_time": time.time()}


async def get_shared_client(
    client_id: str = "default",
    timeout: Optional[httpx.Timeout] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Get or create a shared HTTP client with connection pooling.

    Args:
        client_id: Identifier for the client (allows multiple clients if needed)
        timeout: Custom timeout configuration
        transport: Custom transport (tests inject ``httpx.MockTransport``)

    Returns:
        Shared httpx.AsyncClient

    Raises:
        RuntimeError: If client creation fails
    """
    async with _client_lock:
        await _recreate_client_if_unhealthy(client_id)

        if client_id not in _shared_clients or _shared_clients[client_id].is_closed:
            try:
                _shared_clients[client_id] = httpx.AsyncClient(
                    transport=transport,
                    limits=DEFAULT_LIMITS,
                    timeout=timeout or DEFAULT_TIMEOUT,
                    follow_redirects=True,
                    headers=DEFAULT_HEADERS,
                )
            except Exception as e:
                logger.exception("Failed to create shared HTTP client '%s'", client_id)
                raise RuntimeError(f"Failed to create shared HTTP client: {e}") from e

            _client_health[client_id] = _new_health_record()
            logger.debug("Created shared HTTP client '%s'", client_id)

        return _shared_clients[client_id]


async def close_all_clients() -> None:
    """Close all shared HTTP clients and clean up resources.

    Called during application shutdown and between tests.
    """
    async with _client_lock:
        for client_id, client in _shared_clients.items():
            try:
                if not client.is_closed:
                    await client.aclose()
                    logger.debug("Closed shared HTTP client '%s'", client_id)
            except Exception as e:
                logger.warning("Error closing shared HTTP client '%s': %s", client_id, e)

        _shared_clients.clear()
        _client_health.clear()


async def record_client_error(client_id: str = "default") -> None:
    """Record an error for health tracking.

    Args:
        client_id: Identifier of the client that encountered an error
    """
    async with _client_lock:
        health = _client_health.setdefault(client_id, _new_health_record())
        health["error_count"] += 1
        health["last_error_time"] = time.time()

        logger.debug(
            "Recorded error for client '%s', total errors: %d",
            client_id,
            health["error_count"],
        )


async def record_client_success(client_id: str = "default") -> None:
    """Record a successful operation for health tracking.

    Args:
        client_id: Identifier of the client that had a successful operation
    """
    async with _client_lock:
        if client_id in _client_health:
            _client_health[client_id]["error_count"] = 0


async def get_client_health(client_id: str = "default") -> dict[str, float]:
    """Return a copy of the health record for a client (empty if unknown)."""
    async with _client_lock:
        return dict(_client_health.get(client_id, {}))


async def _recreate_client_if_unhealthy(client_id: str) -> None:
    """Drop a client that failed repeatedly so the next acquire recreates it.

    Called with ``_client_lock`` held.
    """
    if client_id not in _client_health:
        return

    health = _client_health[client_id]
    should_recreate = (
        health["error_count"] >= HEALTH_ERROR_THRESHOLD
        and (time.time() - health["last_error_time"]) < HEALTH_TIMEOUT_SECONDS
    )

    if should_recreate and client_id in _shared_clients:
        logger.warning(
            "Recreating unhealthy client '%s' due to %d errors in last %d seconds",
            client_id,
            health["error_count"],
            HEALTH_TIMEOUT_SECONDS,
        )

        old_client = _shared_clients.pop(client_id)
        del _client_health[client_id]
        try:
            if not old_client.is_closed:
                await old_client.aclose()
        except Exception as e:
            logger.warning("Error closing unhealthy client '%s': %s", client_id, e)
