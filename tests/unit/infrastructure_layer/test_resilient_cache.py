"""
Unit Tests for the ResilientCache facade

Failures are absorbed into (None, False); the breaker opens after the
configured number of consecutive failures and stops calling the backend.
"""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from chat_engine.core.config.constants import CircuitState
from chat_engine.core.exceptions import CacheConnectionError
from chat_engine.core.resilience.circuit_breaker import CircuitBreaker
from chat_engine.infrastructure.cache.resilient_cache import ResilientCache
from tests.test_fixtures import InMemoryRedis


class ManualClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def backend():
    return InMemoryRedis()


@pytest.fixture
def cache(backend, clock):
    breaker = CircuitBreaker("room_cache", failure_threshold=3, cooldown_seconds=30.0, clock=clock)
    return ResilientCache(backend, breaker, operation_timeout=0.2)


@pytest.mark.unit
class TestExecute:
    @pytest.mark.asyncio
    async def test_success_returns_result(self, cache, backend):
        await backend.set("k", "v")

        result, ok = await cache.execute(lambda c: c.get("k"), "get")

        assert (result, ok) == ("v", True)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [CacheConnectionError("down"), RedisConnectionError("reset"), OSError("refused")]
    )
    async def test_failure_is_absorbed(self, cache, backend, error):
        backend.fail(error)

        result, ok = await cache.execute(lambda c: c.get("k"), "get")

        assert (result, ok) == (None, False)
        assert cache.breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, cache):
        async def slow(c):
            await asyncio.sleep(1)

        result, ok = await cache.execute(slow, "slow")

        assert ok is False
        assert cache.breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_programming_error_propagates(self, cache):
        async def broken(c):
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await cache.execute(broken, "broken")
        assert cache.breaker.failure_count == 0


@pytest.mark.unit
class TestBreakerIntegration:
    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_skips_backend(self, cache, backend):
        backend.fail()
        for _ in range(3):
            await cache.execute(lambda c: c.get("k"), "get")
        calls_when_opened = len(backend.calls)

        result, ok = await cache.execute(lambda c: c.get("k"), "get")

        assert (result, ok) == (None, False)
        assert cache.breaker.state is CircuitState.OPEN
        assert cache.available is False
        assert len(backend.calls) == calls_when_opened

    @pytest.mark.asyncio
    async def test_cooldown_probe_success_closes(self, cache, backend, clock):
        backend.fail()
        for _ in range(3):
            await cache.execute(lambda c: c.get("k"), "get")
        backend.recover()
        await backend.set("k", "v")
        clock.now += 30.0

        result, ok = await cache.execute(lambda c: c.get("k"), "get")

        assert (result, ok) == ("v", True)
        assert cache.breaker.state is CircuitState.CLOSED
        assert cache.breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_probe_releases_slot(self, cache, backend, clock):
        backend.fail()
        for _ in range(3):
            await cache.execute(lambda c: c.get("k"), "get")
        backend.recover()
        clock.now += 30.0

        async def hang(c):
            await asyncio.sleep(10)

        task = asyncio.create_task(cache.execute(hang, "hang"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        _, ok = await cache.execute(lambda c: c.get("k"), "get")
        assert ok is True

    @pytest.mark.asyncio
    async def test_stale_call_error_keeps_probe_slot(self, cache, backend, clock):
        release = asyncio.Event()

        async def stale(c):
            await release.wait()
            raise KeyError("bug")

        stale_task = asyncio.create_task(cache.execute(stale, "stale"))
        await asyncio.sleep(0)

        backend.fail()
        for _ in range(3):
            await cache.execute(lambda c: c.get("k"), "get")
        backend.recover()
        clock.now += 30.0

        async def hang(c):
            await asyncio.sleep(10)

        probe_task = asyncio.create_task(cache.execute(hang, "probe"))
        await asyncio.sleep(0)

        release.set()
        with pytest.raises(KeyError):
            await stale_task
        calls_before = len(backend.calls)

        # the probe is still in flight, so this call must not reach the backend
        _, ok = await cache.execute(lambda c: c.get("k"), "get")

        assert ok is False
        assert len(backend.calls) == calls_before
        probe_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe_task

    def test_stats(self, cache):
        stats = cache.stats()
        assert stats["cache"] == "room_cache"
        assert stats["state"] == "closed"
