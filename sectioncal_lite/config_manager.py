"""Configuration management for sectioncal_lite server."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .timezone_utils import DEFAULT_SERVICE_TIMEZONE

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTENT_BYTES = 5 * 1024 * 1024  # 5 MiB calendar download cap

TRUTHY_VALUES = frozenset({"1", "true", "yes", "on"})

# Environment variable -> integer setting
_INT_ENV_SETTINGS: tuple[tuple[str, str], ...] = (
    ("SECTIONCAL_WINDOW_DAYS", "window_days_ahead"),
    ("SECTIONCAL_REFRESH_INTERVAL", "refresh_interval_seconds"),
    ("SECTIONCAL_STALE_AFTER", "stale_after_seconds"),
    ("SECTIONCAL_REQUEST_TIMEOUT", "request_timeout"),
    ("SECTIONCAL_MAX_RETRIES", "max_retries"),
    ("SECTIONCAL_MAX_CONTENT_BYTES", "max_content_bytes"),
    ("SECTIONCAL_RRULE_TIME_BUDGET_MS", "expansion_time_budget_ms_per_rule"),
)


def is_truthy(value: Optional[str]) -> bool:
    """True for the boolean spellings accepted in environment flags."""
    return value is not None and value.strip().lower() in TRUTHY_VALUES


class LiteSettings(BaseModel):
    """Validated runtime settings for the SectionCal Lite service."""

    ics_url: Optional[str] = Field(default=None, description="Calendar feed URL")
    timezone: str = Field(default=DEFAULT_SERVICE_TIMEZONE, description="Service IANA timezone")
    window_days_ahead: int = Field(default=2, ge=0, description="Days after today in the window")
    refresh_interval_seconds: int = Field(default=900, gt=0, description="Periodic rebuild interval")
    stale_after_seconds: int = Field(default=900, gt=0, description="Snapshot staleness threshold")

    # HTTP fetcher
    request_timeout: int = Field(default=60, gt=0, description="Download timeout in seconds")
    max_retries: int = Field(default=2, ge=0, description="Retries after the first attempt")
    retry_backoff_factor: float = Field(default=2.0, gt=0, description="Exponential backoff base")
    max_content_bytes: int = Field(default=DEFAULT_MAX_CONTENT_BYTES, gt=0)

    # RRULE expansion
    max_occurrences_per_rule: int = Field(default=250, gt=0)
    expansion_time_budget_ms_per_rule: int = Field(
        default=200, gt=0, description="Wall-clock limit for expanding one rule"
    )
    enable_rrule_expansion: bool = Field(
        default=True, description="Expand RRULE series; off treats them as single events"
    )

    # Web server
    server_bind: str = Field(default="0.0.0.0", description="Bind address")  # nosec B104
    server_port: int = Field(default=10000, gt=0, lt=65536, description="Listen port")

    debug_logging: bool = False
    log_level: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class ConfigManager:
    """Manages application configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment to avoid
        surprising overrides of user's environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []

        try:
            content = self.env_file_path.read_text(encoding="utf-8")
        except OSError:
            logger.debug(
                "Failed to read .env file for defaults (continuing): %s",
                str(self.env_file_path),
                exc_info=True,
            )
            return []

        for raw_line in content.splitlines():
            line = raw_line.strip()

            # Skip empty lines and comments
            if not line or line.startswith("#"):
                continue

            if "=" not in line:
                continue

            key, val = line.split("=", 1)
            key = key.strip()
            val = val.strip().strip('"').strip("'")

            # Only set if not already in environment
            if key and key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build configuration dictionary from environment variables.

        Recognizes:
        - SECTIONCAL_ICS_URL or ICS_URL -> 'ics_url'
        - SECTIONCAL_TIMEZONE -> 'timezone'
        - SECTIONCAL_WINDOW_DAYS -> 'window_days_ahead' (int)
        - SECTIONCAL_REFRESH_INTERVAL -> 'refresh_interval_seconds' (int)
        - SECTIONCAL_STALE_AFTER -> 'stale_after_seconds' (int)
        - SECTIONCAL_REQUEST_TIMEOUT -> 'request_timeout' (int)
        - SECTIONCAL_MAX_RETRIES -> 'max_retries' (int)
        - SECTIONCAL_MAX_CONTENT_BYTES -> 'max_content_bytes' (int)
        - SECTIONCAL_RRULE_TIME_BUDGET_MS -> 'expansion_time_budget_ms_per_rule' (int)
        - SECTIONCAL_RRULE_EXPANSION -> 'enable_rrule_expansion' (bool)
        - SECTIONCAL_WEB_HOST -> 'server_bind'
        - SECTIONCAL_WEB_PORT or PORT -> 'server_port' (int)
        - SECTIONCAL_LOG_LEVEL -> 'log_level'

        Returns:
            Configuration dictionary compatible with start_server
        """
        cfg: dict[str, Any] = {}

        ics_url = os.environ.get("SECTIONCAL_ICS_URL") or os.environ.get("ICS_URL")
        if ics_url:
            cfg["ics_url"] = ics_url.strip()

        timezone = os.environ.get("SECTIONCAL_TIMEZONE")
        if timezone:
            cfg["timezone"] = get_default_timezone()

        for env_var, key in _INT_ENV_SETTINGS:
            raw = os.environ.get(env_var)
            if not raw:
                continue
            try:
                cfg[key] = int(raw)
            except ValueError:
                logger.warning("Invalid %s=%r; ignoring", env_var, raw)

        host = os.environ.get("SECTIONCAL_WEB_HOST")
        if host:
            cfg["server_bind"] = host

        port = os.environ.get("SECTIONCAL_WEB_PORT") or os.environ.get("PORT")
        if port:
            try:
                cfg["server_port"] = int(port)
            except ValueError:
                logger.warning("Invalid SECTIONCAL_WEB_PORT=%r; ignoring", port)

        log_level = os.environ.get("SECTIONCAL_LOG_LEVEL")
        if log_level:
            cfg["log_level"] = log_level.upper()

        rrule_flag = os.environ.get("SECTIONCAL_RRULE_EXPANSION")
        if rrule_flag:
            cfg["enable_rrule_expansion"] = is_truthy(rrule_flag)

        if is_truthy(os.environ.get("SECTIONCAL_DEBUG")):
            cfg["debug_logging"] = True

        return cfg

    def load_full_config(self) -> dict[str, Any]:
        """Load .env file and build configuration from environment.

        This is the main entry point for loading configuration.

        Returns:
            Configuration dictionary
        """
        self.load_env_file()
        return self.build_config_from_env()


def build_settings(config: dict[str, Any] | LiteSettings | None) -> LiteSettings:
    """Validate a configuration dict into ``LiteSettings``.

    Raises:
        pydantic.ValidationError: If a value is out of range
    """
    if isinstance(config, LiteSettings):
        return config
    return LiteSettings.model_validate(config or {})


def get_default_timezone(fallback: str = DEFAULT_SERVICE_TIMEZONE) -> str:
    """Get default timezone from environment with validation.

    Args:
        fallback: Fallback timezone if not configured or invalid

    Returns:
        Valid IANA timezone string
    """
    import zoneinfo

    timezone = os.environ.get("SECTIONCAL_TIMEZONE", fallback)

    try:
        zoneinfo.ZoneInfo(timezone)
        return timezone
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("Invalid timezone %r, falling back to %r", timezone, fallback)
        return fallback


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and attribute-style objects.

    Args:
        config: Configuration object (dict or object with attributes)
        key: Configuration key to retrieve
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    if config is None:
        return default
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
