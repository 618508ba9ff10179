"""Unit tests for sectioncal_lite.lite_logging."""

import logging
from collections.abc import Iterator

import pytest

from sectioncal_lite.lite_logging import (
    CorrelationIdFilter,
    configure_lite_logging,
    get_logging_status,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    """Restore root handlers and logger levels touched by configuration."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    filters = {h: list(h.filters) for h in handlers}
    names = ["", "sectioncal_lite", "httpx", "httpcore", "asyncio", "aiohttp.access"]
    levels = {name: logging.getLogger(name).level for name in names}
    yield
    root.handlers[:] = handlers
    for handler, saved in filters.items():
        handler.filters[:] = saved
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


def test_default_configuration_info_and_quiet_libraries() -> None:
    configure_lite_logging()

    status = get_logging_status()
    assert status["sectioncal_lite"] == "INFO"
    assert status["httpx"] == "WARNING"
    assert status["aiohttp.access"] == "WARNING"


def test_debug_mode_enables_package_debug() -> None:
    configure_lite_logging(debug_mode=True)

    assert get_logging_status()["sectioncal_lite"] == "DEBUG"


@pytest.mark.parametrize("flag", ["true", "on", "1"])
def test_env_debug_overrides_argument(monkeypatch: pytest.MonkeyPatch, flag: str) -> None:
    monkeypatch.setenv("SECTIONCAL_DEBUG", flag)

    configure_lite_logging(debug_mode=False)

    assert get_logging_status()["sectioncal_lite"] == "DEBUG"


def test_force_debug_wins_over_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SECTIONCAL_DEBUG", "true")

    configure_lite_logging(force_debug=False)

    assert get_logging_status()["sectioncal_lite"] == "INFO"


def test_log_level_env_sets_root(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SECTIONCAL_LOG_LEVEL", "warning")

    configure_lite_logging()

    assert get_logging_status()["root"] == "WARNING"


def test_correlation_filter_added_once() -> None:
    root = logging.getLogger()
    handler = logging.StreamHandler()
    root.addHandler(handler)

    configure_lite_logging()
    configure_lite_logging()

    assert sum(isinstance(f, CorrelationIdFilter) for f in handler.filters) == 1
