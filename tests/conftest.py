# tests/conftest.py

"""Shared pytest fixtures for the supplywatch test-suite."""

import logging
from collections.abc import Generator
from unittest.mock import patch

import pytest


@pytest.fixture(autouse=True)
def mock_sleep() -> Generator[None, None, None]:
    """Make the blocking HTTP retry back-off instant."""
    with patch("time.sleep"):
        yield


@pytest.fixture(autouse=True)
def detach_run_log() -> Generator[None, None, None]:
    """Close any run-log handlers a test attached to ``supplywatch``."""
    project_logger = logging.getLogger("supplywatch")
    before = list(project_logger.handlers)
    yield
    for handler in list(project_logger.handlers):
        if handler not in before:
            handler.close()
            project_logger.removeHandler(handler)
