from __future__ import annotations

import logging
import time

import pytest

from schtask_inventory.logging_config import PACKAGE_LOGGER


@pytest.fixture(autouse=True)
def _restore_package_logger():
    """Undo setup_logging so caplog keeps seeing package records."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def host_timezone(monkeypatch):
    """Switch the process's local time zone (POSIX ``TZ`` syntax)."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")

    def _set(tz: str) -> None:
        monkeypatch.setenv("TZ", tz)
        time.tzset()

    yield _set
    monkeypatch.undo()
    time.tzset()
