import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import logging
import pytest
import pytest_asyncio
from infra.http_client import HttpClient

BASE = "https://api.test-gym.local"

@pytest.fixture
def test_cfg():
    return {
        "api": {"base_url": BASE, "token": "test-token"},
        "timeouts": {"rest_ms": 2000},
        "retries": {"rest_max_attempts": 3, "backoff_ms": 10},
        "tracker": {"poll_interval": "10ms", "max_poll_duration": "50ms"},
    }


@pytest_asyncio.fixture
async def http_client(test_cfg):
    """
    HttpClient as an async context manager; the session is closed after each test.
    """
    logger = logging.getLogger("HttpClientTest")
    async with HttpClient(test_cfg, logger=logger) as client:
        yield client
