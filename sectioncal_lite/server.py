"""aiohttp server and background refresh for sectioncal_lite."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import Any, Optional

from aiohttp import web

from .config_manager import ConfigManager, LiteSettings, build_settings
from .health_tracker import HealthTracker
from .http_client import close_all_clients
from .lite_cache_store import CacheStore, CalendarSource
from .lite_fetcher import LiteICSFetcher
from .lite_logging import configure_lite_logging
from .middleware import correlation_id_middleware, cors_middleware
from .routes import register_api_routes
from .timezone_utils import now_utc

logger = logging.getLogger(__name__)

CACHE_STORE_KEY = web.AppKey("cache_store", CacheStore)
HEALTH_TRACKER_KEY = web.AppKey("health_tracker", HealthTracker)


def _build_default_config_from_env() -> dict[str, Any]:
    """Load .env defaults and build the configuration dict from the environment."""
    return ConfigManager().load_full_config()


def _make_app(
    cache_store: CacheStore,
    health_tracker: HealthTracker,
) -> web.Application:
    """Create aiohttp web application with routes wired to the cache store."""
    app = web.Application(middlewares=[correlation_id_middleware, cors_middleware])
    app[CACHE_STORE_KEY] = cache_store
    app[HEALTH_TRACKER_KEY] = health_tracker

    register_api_routes(
        app=app,
        cache_store=cache_store,
        health_tracker=health_tracker,
        time_provider=now_utc,
    )

    async def _shutdown(_app: web.Application) -> None:
        logger.info("Application shutdown requested")
        await cache_store.shutdown()

    app.on_shutdown.append(_shutdown)
    return app


def create_cache_store(
    settings: LiteSettings,
    health_tracker: HealthTracker,
    source: Optional[CalendarSource] = None,
) -> CacheStore:
    """Build the cache store, downloading over HTTP unless a source is given."""
    calendar_source = source if source is not None else LiteICSFetcher(settings)
    return CacheStore(
        calendar_source,
        settings,
        time_provider=now_utc,
        health_tracker=health_tracker,
    )


async def _serve(settings: LiteSettings) -> None:
    """Run server and periodic refresh until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()
    health_tracker = HealthTracker()
    cache_store = create_cache_store(settings, health_tracker)

    app = _make_app(cache_store, health_tracker)
    runner = web.AppRunner(app)
    await runner.setup()

    host = settings.server_bind
    port = settings.server_port

    site = web.TCPSite(runner, host=host, port=port)
    try:
        await site.start()
    except OSError:
        logger.exception("Failed to start server on %s:%d", host, port)
        await runner.cleanup()
        raise
    logger.info("Server started on %s:%d", host, port)

    refresher = asyncio.create_task(cache_store.run_periodic_refresh(stop_event))

    loop = asyncio.get_running_loop()

    def _on_signal() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    logger.info("Stop event received, shutting down")

    refresher.cancel()
    try:
        await refresher
    except asyncio.CancelledError:
        pass

    await runner.cleanup()
    await close_all_clients()

    logger.info(
        "Server shutdown complete (uptime %ds)", health_tracker.get_uptime_seconds()
    )


def start_server(config: Any) -> None:
    """Start the asyncio event loop and HTTP server.

    Args:
        config: dict or LiteSettings with keys:
            - ics_url: calendar feed URL (required)
            - timezone: service IANA timezone
            - window_days_ahead: days after today kept in the cache
            - refresh_interval_seconds: seconds between periodic rebuilds
            - stale_after_seconds: snapshot age that triggers a rebuild on read
            - request_timeout, max_retries, max_content_bytes: download limits
            - server_bind, server_port: listen address
            - debug_logging: enable debug logging for sectioncal_lite

    Blocks until a SIGINT/SIGTERM is received.
    """
    settings = build_settings(config)

    configure_lite_logging(debug_mode=settings.debug_logging)
    logger.info(
        "Starting SectionCal Lite (timezone=%s, window=%d days, refresh=%ds)",
        settings.timezone,
        settings.window_days_ahead,
        settings.refresh_interval_seconds,
    )

    try:
        asyncio.run(_serve(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
