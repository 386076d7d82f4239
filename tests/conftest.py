"""Shared test fixtures."""

import pytest
from loguru import logger

from devtunnel.common.auth import SessionAuthority


@pytest.fixture(autouse=True)
def _reset_log_sinks():
    """Drop sinks added during a test so later tests never write to closed streams."""
    yield
    logger.remove()


@pytest.fixture
def authority() -> SessionAuthority:
    return SessionAuthority()
