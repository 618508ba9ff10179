"""
Logging levels and request correlation for sectioncal_lite.

The console handler itself is installed by ``sectioncal_lite._init_logging``
(colorlog). This module only adjusts levels and tags records with the
request id of the HTTP request being served.
"""

import logging
import os
from typing import Optional

from .config_manager import is_truthy
from .middleware import get_request_id

_ROOT_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR")

# Chatty third-party loggers and the level they are held at.
QUIET_LOGGERS: dict[str, int] = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.server": logging.WARNING,
    "aiohttp.web": logging.INFO,
    "aiohttp.web_log": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
}

PACKAGE_LOGGER = "sectioncal_lite"


class CorrelationIdFilter(logging.Filter):
    """Stamp ``record.request_id`` with the current request correlation ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def _debug_requested(debug_mode: bool, force_debug: Optional[bool]) -> bool:
    if force_debug is not None:
        return force_debug
    if is_truthy(os.getenv("SECTIONCAL_DEBUG")):
        return True
    return debug_mode


def _attach_correlation_filter(root: logging.Logger, level: int) -> None:
    if not root.handlers:
        # Running without _init_logging (e.g. embedded); add a plain handler.
        fallback = logging.StreamHandler()
        fallback.setLevel(level)
        fallback.setFormatter(
            logging.Formatter("%(asctime)s [%(request_id)s] %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(fallback)

    for handler in root.handlers:
        if not any(isinstance(f, CorrelationIdFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdFilter())


def configure_lite_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Apply sectioncal_lite logging levels.

    Args:
        debug_mode: Enable DEBUG for sectioncal_lite modules
        force_debug: Overrides both ``debug_mode`` and SECTIONCAL_DEBUG when set

    Environment:
        SECTIONCAL_DEBUG: "1", "true", "yes" or "on" enables debug logging
        SECTIONCAL_LOG_LEVEL: root level override (DEBUG, INFO, WARNING, ERROR)
    """
    debug = _debug_requested(debug_mode, force_debug)

    root_level = logging.DEBUG if debug else logging.INFO
    env_level = os.getenv("SECTIONCAL_LOG_LEVEL", "").upper()
    if env_level in _ROOT_LEVEL_NAMES:
        root_level = getattr(logging, env_level)

    root = logging.getLogger()
    root.setLevel(root_level)
    _attach_correlation_filter(root, root_level)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if debug else logging.INFO)

    if debug:
        root.info("Debug logging enabled for sectioncal_lite modules")


def get_logging_status() -> dict[str, str]:
    """Level names of the root, package and main third-party loggers."""
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for name in (PACKAGE_LOGGER, "aiohttp.access", "httpx", "asyncio"):
        status[name] = logging.getLevelName(logging.getLogger(name).level)
    return status
