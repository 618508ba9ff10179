"""Pooled httpx clients for calendar downloads.

Periodic refreshes reuse one ``httpx.AsyncClient`` per pool name instead of
opening a new client per download. A pool that keeps failing within
``UNHEALTHY_WINDOW_SECONDS`` is closed and replaced on its next use.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

from . import __version__

logger = logging.getLogger(__name__)

# One calendar feed, fetched a few times per hour
DEFAULT_LIMITS = httpx.Limits(
    max_connections=4,
    max_keepalive_connections=2,
)

DEFAULT_TIMEOUT = httpx.Timeout(
    connect=10.0,
    read=60.0,  # Large school calendars can be slow to generate
    write=10.0,
    pool=30.0,
)

# Some school calendar hosts reject requests without a browser-like agent.
DEFAULT_HEADERS = {
    "User-Agent": f"Mozilla/5.0 (compatible; sectioncal-lite/{__version__})",
    "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.8",
}

HEALTH_ERROR_THRESHOLD = 3  # consecutive failures before a pool is replaced
UNHEALTHY_WINDOW_SECONDS = 300


@dataclass
class _ClientHealth:
    consecutive_errors: int = 0
    last_error_at: float = 0.0
    created_at: float = field(default_factory=time.time)

    def is_unhealthy(self, now: float) -> bool:
        return (
            self.consecutive_errors >= HEALTH_ERROR_THRESHOLD
            and now - self.last_error_at < UNHEALTHY_WINDOW_SECONDS
        )


_pools: dict[str, httpx.AsyncClient] = {}
_pool_health: dict[str, _ClientHealth] = {}
_pool_lock = asyncio.Lock()


async def get_shared_client(
    client_id: str = "default",
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Return the pooled client for ``client_id``, creating it on first use.

    Args:
        client_id: Pool name
        limits: Connection limits for a newly created client
        timeout: Timeouts for a newly created client

    Raises:
        RuntimeError: If the client cannot be constructed
    """
    async with _pool_lock:
        await _replace_if_unhealthy(client_id)

        client = _pools.get(client_id)
        if client is not None and not client.is_closed:
            return client

        effective_limits = limits or DEFAULT_LIMITS
        logger.debug(
            "Opening HTTP pool '%s' (max_connections=%d, keepalive=%d)",
            client_id,
            effective_limits.max_connections,
            effective_limits.max_keepalive_connections,
        )
        try:
            client = httpx.AsyncClient(
                limits=effective_limits,
                timeout=timeout or DEFAULT_TIMEOUT,
                headers=DEFAULT_HEADERS,
                follow_redirects=True,
            )
        except (httpx.HTTPError, OSError, ValueError) as e:
            logger.exception("Could not open HTTP pool '%s'", client_id)
            raise RuntimeError(f"Could not open HTTP pool {client_id!r}: {e}") from e

        _pools[client_id] = client
        _pool_health[client_id] = _ClientHealth()
        logger.info("Opened HTTP pool '%s'", client_id)
        return client


async def close_all_clients() -> None:
    """Close every pooled client. Called on shutdown and between tests."""
    async with _pool_lock:
        for client_id, client in _pools.items():
            await _close_quietly(client_id, client)
        _pools.clear()
        _pool_health.clear()


async def record_client_error(client_id: str = "default") -> None:
    """Count one failed download for ``client_id``."""
    async with _pool_lock:
        health = _pool_health.setdefault(client_id, _ClientHealth())
        health.consecutive_errors += 1
        health.last_error_at = time.time()
        logger.debug(
            "HTTP pool '%s' failure %d in a row", client_id, health.consecutive_errors
        )


async def record_client_success(client_id: str = "default") -> None:
    """Reset the failure streak of ``client_id``."""
    async with _pool_lock:
        health = _pool_health.get(client_id)
        if health is not None:
            health.consecutive_errors = 0


def get_client_error_count(client_id: str = "default") -> int:
    """Current failure streak of a pool (0 when unknown)."""
    health = _pool_health.get(client_id)
    return health.consecutive_errors if health else 0


async def _replace_if_unhealthy(client_id: str) -> None:
    # Caller holds _pool_lock.
    health = _pool_health.get(client_id)
    if health is None or not health.is_unhealthy(time.time()):
        return
    client = _pools.pop(client_id, None)
    if client is None:
        return

    logger.warning(
        "Replacing HTTP pool '%s' after %d consecutive failures",
        client_id,
        health.consecutive_errors,
    )
    del _pool_health[client_id]
    await _close_quietly(client_id, client)


async def _close_quietly(client_id: str, client: httpx.AsyncClient) -> None:
    if client.is_closed:
        return
    try:
        await client.aclose()
    except (httpx.HTTPError, OSError, RuntimeError) as e:
        logger.warning("Error closing HTTP pool '%s': %s", client_id, e)
    else:
        logger.debug("Closed HTTP pool '%s'", client_id)
