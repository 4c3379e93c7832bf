"""Shared fixtures."""

import pytest
from loguru import logger


@pytest.fixture
def log_lines():
    """Collect messages logged at INFO and above while the test runs."""
    lines: list[str] = []
    handler_id = logger.add(
        lambda message: lines.append(message.record["message"]),
        level="INFO",
        format="{message}",
    )
    yield lines
    logger.remove(handler_id)
