"""
Circuit Breaker for the Room Cache.

An explicit, process-local state machine guarding every cache call.

MECHANISM OF ACTION:
-------------------
- **CLOSED**: Calls are allowed.
  - On Success: failure counter resets to 0.
  - On Failure: counter increments; reaching ``failure_threshold`` opens the breaker.

- **OPEN**: Calls are skipped until ``cooldown_seconds`` have passed since it opened.

- **HALF-OPEN**: Cooldown elapsed. Exactly ONE probe call is let through;
  concurrent callers are still skipped while the probe is in flight.
  - Probe Success: breaker closes and the counter resets.
  - Probe Failure: breaker re-opens and the cooldown restarts.

The breaker lives in process memory rather than in Redis because the
dependency it protects is Redis itself.
"""

import time
from collections.abc import Callable
from typing import Any

from chat_engine.core.config.constants import CircuitState
from chat_engine.core.logging.logger import get_logger

logger = get_logger(__name__)


class CircuitBreaker:
    """
    Closed / open / half-open breaker with an injectable monotonic clock.

    Usage:
        breaker = CircuitBreaker("room_cache", failure_threshold=5, cooldown_seconds=30)
        if breaker.allow_request():
            try:
                result = await call()
            except CacheError:
                breaker.record_failure()
            else:
                breaker.record_success()
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self._failure_threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float | None = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current state; an OPEN breaker whose cooldown elapsed reports HALF_OPEN."""
        if self._state is CircuitState.OPEN and self._cooldown_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _cooldown_elapsed(self) -> bool:
        return self._opened_at is not None and self._clock() - self._opened_at >= self._cooldown

    def allow_request(self) -> bool:
        """Decide whether the next call may reach the dependency."""
        allowed, _ = self.try_acquire()
        return allowed

    def try_acquire(self) -> tuple[bool, bool]:
        """
        Admit or reject the next call, reporting whether it holds the probe slot.

        Transitions OPEN -> HALF_OPEN once the cooldown elapsed and claims the
        single probe slot for the caller.

        Returns:
            (allowed, is_probe): only a caller with ``is_probe`` may call
            ``release_probe``
        """
        if self._state is CircuitState.CLOSED:
            return True, False

        if self._state is CircuitState.OPEN:
            if not self._cooldown_elapsed():
                return False, False
            self._state = CircuitState.HALF_OPEN
            logger.info("Circuit half-open, probing", stage="CB.2", circuit=self.name)

        if self._probe_in_flight:
            return False, False
        self._probe_in_flight = True
        return True, True

    def record_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info(
                "Circuit closed",
                stage="CB.3",
                circuit=self.name,
                previous_state=self._state.value,
            )
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._probe_in_flight = False

    def record_failure(self) -> None:
        self._failure_count += 1

        if self._state is CircuitState.HALF_OPEN:
            self._open()
            return

        if self._state is CircuitState.CLOSED and self._failure_count >= self._failure_threshold:
            self._open()

    def release_probe(self) -> None:
        """Free the probe slot when the probe call ended without an outcome (cancelled, programming error)."""
        self._probe_in_flight = False

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._probe_in_flight = False

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._probe_in_flight = False
        logger.warning(
            "Circuit opened",
            stage="CB.1",
            circuit=self.name,
            failure_count=self._failure_count,
            cooldown_seconds=self._cooldown,
        )

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self._failure_threshold,
            "cooldown_seconds": self._cooldown,
            "opened_at": self._opened_at,
        }
