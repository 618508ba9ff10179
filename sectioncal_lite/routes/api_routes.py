"""HTTP routes for sectioncal_lite."""

from __future__ import annotations

import datetime
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from ..health_tracker import HealthTracker
    from ..lite_cache_store import CacheStore

logger = logging.getLogger(__name__)

# Seconds clients should wait before retrying while the first build runs
NOT_READY_RETRY_AFTER_SECONDS = 30

_DATE_FORMAT = "%Y-%m-%d"


def parse_query_date(raw: Optional[str]) -> Optional[datetime.date]:
    """Parse a ``YYYY-MM-DD`` query parameter.

    Returns:
        The date, or None when the parameter is absent or empty

    Raises:
        ValueError: If the value is not a valid ``YYYY-MM-DD`` date
    """
    if raw is None or not raw.strip():
        return None
    return datetime.datetime.strptime(raw.strip(), _DATE_FORMAT).date()


def register_api_routes(
    app: Any,
    cache_store: CacheStore,
    health_tracker: HealthTracker,
    time_provider: Callable[[], datetime.datetime],
) -> None:
    """Register the service routes.

    Args:
        app: aiohttp web application
        cache_store: Occurrence cache serving all queries
        health_tracker: Health tracking instance
        time_provider: Returns the current aware UTC time
    """
    from aiohttp import web

    from ..lite_cache_store import LiteCacheNotReadyError

    def _not_ready_response() -> Any:
        return web.json_response(
            {"error": "calendar not ready, retry later"},
            status=503,
            headers={"Retry-After": str(NOT_READY_RETRY_AFTER_SECONDS)},
        )

    def _bad_date_response(raw: str) -> Any:
        return web.json_response(
            {"error": f"invalid date {raw!r}, expected YYYY-MM-DD"}, status=400
        )

    async def health(_request: Any) -> Any:
        """Liveness probe."""
        return web.Response(text="ok")

    async def events(request: Any) -> Any:
        """Occurrences of the recent window, optionally filtered by section and date."""
        section = request.query.get("section", "").strip() or None
        raw_date = request.query.get("date")

        try:
            day = parse_query_date(raw_date)
        except ValueError:
            return _bad_date_response(raw_date or "")

        try:
            occurrences = cache_store.query(section=section, day=day)
        except LiteCacheNotReadyError:
            return _not_ready_response()

        logger.debug(
            "/events section=%r date=%s -> %d occurrences", section, day, len(occurrences)
        )
        return web.json_response([o.model_dump(mode="json") for o in occurrences])

    async def status(_request: Any) -> Any:
        """Cache state and refresh health."""
        cache_status = cache_store.status()
        return web.json_response(
            {
                "server_time_iso": time_provider().isoformat(),
                "cache": cache_status.model_dump(mode="json"),
                "health": health_tracker.get_health_status().to_dict(),
            }
        )

    async def day_digest(request: Any) -> Any:
        """Occurrences of one day with their section, class and professor tokens."""
        raw_date = request.query.get("date")
        try:
            day = parse_query_date(raw_date)
        except ValueError:
            return _bad_date_response(raw_date or "")

        try:
            entries = cache_store.day_digest(day)
        except LiteCacheNotReadyError:
            return _not_ready_response()

        return web.json_response([entry.model_dump(mode="json") for entry in entries])

    async def refresh(_request: Any) -> Any:
        """Rebuild the cache now and report the outcome."""
        result = await cache_store.rebuild()
        http_status = {"success": 200, "skipped": 202}.get(result.outcome, 502)
        return web.json_response(result.model_dump(mode="json"), status=http_status)

    app.router.add_get("/health", health)
    app.router.add_get("/events", events)
    app.router.add_get("/api/status", status)
    app.router.add_get("/api/day-digest", day_digest)
    app.router.add_post("/api/refresh", refresh)
