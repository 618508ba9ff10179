"""sectioncal_lite - school calendar section lookup service.

Downloads an ICS feed, expands it over a short window and serves today's
events by class section. Imports are kept light so the package can be
inspected without starting the server.
"""

__version__ = "0.1.0"

import logging
import os
import sys
from typing import Any, Optional

logger = logging.getLogger(__name__)


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Honors SECTIONCAL_DEBUG (truthy values: "1", "true", "yes", "on"), which
    forces DEBUG verbosity for troubleshooting.
    """
    from colorlog import ColoredFormatter

    from .config_manager import is_truthy

    if is_truthy(os.environ.get("SECTIONCAL_DEBUG")):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure a handler if none is present to avoid duplicate output.
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message, only the level colorized
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)
    logger.debug("Logging initialized at level %s", logging.getLevelName(level))


def run_server(args: Optional[Any] = None) -> None:
    """Start the sectioncal_lite server.

    Loads configuration from the environment (and an optional .env file),
    applies command line overrides and blocks until shutdown.

    Args:
        args: Optional argparse namespace with ``port`` and ``ics_url``

    Raises:
        SystemExit: If no calendar URL is configured
    """
    _init_logging(os.environ.get("SECTIONCAL_LOG_LEVEL"))

    from .server import _build_default_config_from_env, start_server

    cfg: dict[str, Any] = _build_default_config_from_env()

    if args is not None:
        port = getattr(args, "port", None)
        if port is not None:
            cfg["server_port"] = int(port)
            logger.debug("Applied command line port override: %d", cfg["server_port"])

        ics_url = getattr(args, "ics_url", None)
        if ics_url:
            cfg["ics_url"] = ics_url

    cfg_level = cfg.get("log_level")
    if isinstance(cfg_level, str):
        logging.getLogger().setLevel(getattr(logging, cfg_level.upper(), logging.INFO))

    if not cfg.get("ics_url"):
        logger.error("No calendar URL configured")
        print(
            "\nError: set SECTIONCAL_ICS_URL (or ICS_URL) or pass --ics-url.",
            file=sys.stderr,
        )
        sys.exit(1)

    # Only surface non-secret keys; feed URLs often embed access tokens.
    logger.debug(
        "Resolved configuration (diagnostic): %s",
        {k: cfg.get(k) for k in ("timezone", "server_bind", "server_port", "log_level")},
    )

    start_server(cfg)
