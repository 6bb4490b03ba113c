"""
Pytest fixtures for scene pipeline tests.
"""
from unittest.mock import AsyncMock, patch

import pytest


@pytest.fixture(autouse=True)
def no_retry_sleep():
    with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep
