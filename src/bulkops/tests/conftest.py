"""Shared fixtures: silent logging and a fresh settings cache per test."""

import pytest

from bulkops.foundation.config import clear_settings_cache
from bulkops.runtime.observability import CaptureRenderer, BoundLogger, configure_logging


@pytest.fixture(autouse=True)
def quiet_logging() -> object:
    """Silence global logging output during tests."""
    configure_logging("none")
    yield
    configure_logging("none")


@pytest.fixture(autouse=True)
def fresh_settings() -> object:
    """Settings are cached process-wide; reload them around each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def capture() -> CaptureRenderer:
    return CaptureRenderer()


@pytest.fixture
def capture_logger(capture: CaptureRenderer) -> BoundLogger:
    """Logger that records every entry (DEBUG and up) into ``capture``."""
    return BoundLogger(context={"logger": "test"}, _renderer=capture)
