"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import fnmatch
from unittest.mock import AsyncMock, MagicMock

import pytest

from wa_agent.core.exceptions import CacheConnectionError
from wa_agent.core.observability.metrics import MetricsCollector


# ============================================================================
# Time Fixtures
# ============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    """Records requested backoff delays instead of sleeping."""
    return AsyncMock(return_value=None)


# ============================================================================
# Metrics Fixtures
# ============================================================================


@pytest.fixture
def metrics():
    """Fresh collector with its own registry per test."""
    return MetricsCollector()


# ============================================================================
# Mock Infrastructure Fixtures
# ============================================================================


class InMemoryRedis:
    """
    In-memory stand-in for ``RedisClient``.

    Implements the key/value and list commands the cache and queue use.
    Set ``down = True`` to make every command raise like an unreachable
    server.
    """

    def __init__(self):
        self.data: dict[str, object] = {}
        self.ttls: dict[str, int] = {}
        self.lists: dict[str, list] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise CacheConnectionError("Redis unavailable")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set_with_expiry(self, key, value, ttl):
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            removed += int(self.data.pop(key, None) is not None)
            removed += int(self.lists.pop(key, None) is not None)
            self.ttls.pop(key, None)
        return removed

    async def flush_all(self, match="*"):
        self._check()
        doomed = [key for key in self.data if fnmatch.fnmatchcase(key, match)]
        for key in doomed:
            del self.data[key]
            self.ttls.pop(key, None)
        return len(doomed)

    async def lpush(self, key, *values):
        self._check()
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def brpop(self, key, timeout):
        self._check()
        items = self.lists.get(key)
        if not items:
            return None
        return items.pop()

    async def llen(self, key):
        self._check()
        return len(self.lists.get(key, []))

    async def health_check(self):
        return {"status": "unhealthy" if self.down else "healthy", "type": "in_memory"}


@pytest.fixture
def in_memory_redis():
    return InMemoryRedis()


@pytest.fixture
def mock_redis_connection():
    """
    Mock ``redis.asyncio.Redis`` connection for RedisClient tests.

    Commands are AsyncMocks; ``scan_iter`` is an async generator over
    ``scan_keys``.
    """
    conn = MagicMock()
    conn.ping = AsyncMock(return_value=True)
    conn.get = AsyncMock(return_value=None)
    conn.set = AsyncMock(return_value=True)
    conn.setex = AsyncMock(return_value=True)
    conn.delete = AsyncMock(return_value=1)
    conn.lpush = AsyncMock(return_value=1)
    conn.brpop = AsyncMock(return_value=None)
    conn.llen = AsyncMock(return_value=0)
    conn.aclose = AsyncMock()
    conn.scan_keys = []

    async def scan_iter(match=None, count=None):
        for key in conn.scan_keys:
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    conn.scan_iter = scan_iter
    return conn
