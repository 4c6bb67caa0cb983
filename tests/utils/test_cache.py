import logging
from unittest.mock import AsyncMock

import pytest

from utils.cache import MetricsCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> MetricsCache:
    return MetricsCache(clock=clock)


def test_get_respects_ttl(cache, clock):
    cache.put("listings", [1, 2])
    clock.now = 59
    assert cache.get("listings", ttl_seconds=60) == [1, 2]
    clock.now = 60
    assert cache.get("listings", ttl_seconds=60) is None
    assert "listings" in cache


def test_invalidate(cache):
    cache.put("a", 1)
    cache.put("b", 2)
    cache.invalidate("a")
    assert "a" not in cache
    cache.invalidate()
    assert "b" not in cache


@pytest.mark.asyncio
async def test_get_or_fetch_caches_until_expiry(cache, clock):
    fetch = AsyncMock(side_effect=[["v1"], ["v2"]])

    assert await cache.get_or_fetch("series", 1800, fetch) == ["v1"]
    assert await cache.get_or_fetch("series", 1800, fetch) == ["v1"]
    clock.now = 1801
    assert await cache.get_or_fetch("series", 1800, fetch) == ["v2"]

    assert fetch.await_count == 2
    assert (cache.hits, cache.misses) == (1, 2)


@pytest.mark.asyncio
async def test_get_or_fetch_serves_stale_on_error(cache, clock, caplog):
    await cache.get_or_fetch("series", 10, AsyncMock(return_value=["old"]))
    clock.now = 100

    with caplog.at_level(logging.WARNING):
        value = await cache.get_or_fetch("series", 10, AsyncMock(side_effect=ConnectionError("503")))

    assert value == ["old"]
    assert "Refresh of 'series' failed (503); serving stale value" in caplog.text


@pytest.mark.asyncio
async def test_get_or_fetch_without_stale_value_raises(cache):
    with pytest.raises(ConnectionError):
        await cache.get_or_fetch("series", 10, AsyncMock(side_effect=ConnectionError("503")))
