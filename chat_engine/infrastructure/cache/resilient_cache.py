"""
Resilient Cache Facade

Every cache call in the engine goes through ``ResilientCache.execute``. A
failing or unreachable cache degrades latency and freshness but never
surfaces as an error: the caller receives ``(None, False)`` and continues
without the cache.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from redis.exceptions import RedisError

from chat_engine.core.config.constants import CircuitState
from chat_engine.core.exceptions import CacheError
from chat_engine.core.interfaces.cache import CacheBackend
from chat_engine.core.logging.logger import get_logger, log_stage
from chat_engine.core.resilience.circuit_breaker import CircuitBreaker
from chat_engine.infrastructure.monitoring.metrics import get_metrics_collector

logger = get_logger(__name__)

T = TypeVar("T")

CacheOperation = Callable[[CacheBackend], Awaitable[T]]

# Failures that count against the breaker. Anything else is a programming
# error and propagates.
CACHE_FAILURES = (CacheError, RedisError, OSError, TimeoutError)


class ResilientCache:
    """
    Circuit-breaker guarded access to a CacheBackend.

    Usage:
        snapshot, ok = await cache.execute(lambda c: c.get(key), "get_snapshot")
        if not ok:
            # cache unavailable, fall back to durable storage
    """

    def __init__(
        self,
        backend: CacheBackend,
        breaker: CircuitBreaker,
        operation_timeout: float = 2.0,
        name: str = "room_cache",
    ):
        self._backend = backend
        self._breaker = breaker
        self._timeout = operation_timeout
        self._name = name
        self._metrics = get_metrics_collector()

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def available(self) -> bool:
        """False while the breaker is open and cooling down."""
        return self._breaker.state is not CircuitState.OPEN

    async def execute(self, operation: CacheOperation, op_name: str = "cache_op") -> tuple[Any, bool]:
        """
        Run one cache operation behind the breaker.

        Returns:
            (result, True) on success, (None, False) when the breaker is open
            or the call failed
        """
        allowed, is_probe = self._breaker.try_acquire()
        if not allowed:
            self._metrics.record_cache_operation(self._name, "short_circuited")
            log_stage(
                logger, "C.1", "Cache call short-circuited", level="debug", cache=self._name, operation=op_name
            )
            return None, False

        try:
            result = await asyncio.wait_for(operation(self._backend), timeout=self._timeout)
        except CACHE_FAILURES as exc:
            self._breaker.record_failure()
            self._metrics.record_cache_operation(self._name, "failed")
            self._metrics.set_circuit_state(self._name, self._breaker.state.value)
            logger.warning(
                "Cache operation failed, continuing without cache",
                stage="C.2",
                cache=self._name,
                operation=op_name,
                error=str(exc) or exc.__class__.__name__,
                breaker_state=self._breaker.state.value,
                failure_count=self._breaker.failure_count,
            )
            return None, False
        except BaseException:
            # cancelled or a programming error: no verdict on cache health
            if is_probe:
                self._breaker.release_probe()
            raise

        self._breaker.record_success()
        self._metrics.record_cache_operation(self._name, "ok")
        self._metrics.set_circuit_state(self._name, self._breaker.state.value)
        return result, True

    def stats(self) -> dict[str, Any]:
        return {"cache": self._name, **self._breaker.stats()}
