"""
Redis Streams Notification Dispatcher

Appends notification jobs (new chat, transfer and invitation events) to a
capped Redis stream that the notification workers consume.

Serialization:
    Redis stream fields must be strings, so the payload is orjson-encoded
    into a single ``payload`` field next to flat job metadata.
"""

from datetime import datetime, timezone
from typing import Any

import orjson
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from chat_engine.core.exceptions import CacheConnectionError, QueueError
from chat_engine.core.logging.logger import get_logger
from chat_engine.core.resilience.circuit_breaker import CircuitBreaker
from chat_engine.infrastructure.cache.redis_client import RedisClient

logger = get_logger(__name__)

# Failures that say the stream itself is unhealthy
STREAM_FAILURES = (QueueError, CacheConnectionError, RedisError, OSError, TimeoutError)


class NotificationSerializer:
    """Flattens a notification job into Redis stream fields."""

    @staticmethod
    def serialize(job_type: str, payload: dict[str, Any], priority: int, delay: float) -> dict[str, str]:
        return {
            "job_type": job_type,
            "priority": str(priority),
            "delay": str(delay),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "payload": orjson.dumps(payload).decode("utf-8"),
        }

    @staticmethod
    def deserialize(fields: dict[str, str]) -> dict[str, Any]:
        return {
            "job_type": fields["job_type"],
            "priority": int(fields.get("priority", "3")),
            "delay": float(fields.get("delay", "0")),
            "timestamp": fields.get("timestamp"),
            "payload": orjson.loads(fields["payload"]),
        }


class RedisStreamNotifier:
    """
    NotificationDispatcher backed by Redis Streams (XADD with approximate MAXLEN).

    Transient connection failures are retried with jittered exponential
    backoff; after ``max_retries`` attempts a QueueError is raised. With a
    ``breaker`` (normally the room cache breaker, since both live on the same
    Redis), publishing fails fast while the breaker is open and every
    exhausted publish counts as one failure.
    """

    def __init__(
        self,
        redis_client: RedisClient,
        maxlen: int = 10000,
        max_retries: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 1.0,
        breaker: CircuitBreaker | None = None,
    ):
        self._redis = redis_client
        self._maxlen = maxlen
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._breaker = breaker

    async def enqueue(
        self,
        queue_name: str,
        job_type: str,
        payload: dict[str, Any],
        priority: int = 3,
        delay: float = 0.0,
    ) -> str | None:
        """
        STAGE-N.1: Publish notification

        Raises:
            QueueError: If the breaker is open or the stream append keeps failing
        """
        is_probe = False
        if self._breaker is not None:
            allowed, is_probe = self._breaker.try_acquire()
            if not allowed:
                raise QueueError(
                    f"Notification stream {queue_name} unavailable, circuit open",
                    details={"job_type": job_type, "circuit": self._breaker.name},
                )

        try:
            message_id = await self._publish(queue_name, job_type, payload, priority, delay)
        except STREAM_FAILURES:
            if self._breaker is not None:
                self._breaker.record_failure()
            raise
        except BaseException:
            if is_probe:
                self._breaker.release_probe()
            raise

        if self._breaker is not None:
            self._breaker.record_success()
        logger.debug("Notification published", stage="N.1", stream=queue_name, job_type=job_type)
        return message_id

    async def _publish(
        self, queue_name: str, job_type: str, payload: dict[str, Any], priority: int, delay: float
    ) -> str | None:
        fields = NotificationSerializer.serialize(job_type, payload, priority, delay)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential_jitter(multiplier=self._base_delay, max=self._max_delay),
            retry=retry_if_exception_type(CacheConnectionError),
            before_sleep=lambda retry_state: logger.info(
                "Notification publish retry",
                stage="N.2",
                attempt=retry_state.attempt_number,
                stream=queue_name,
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    message_id = await self._redis.xadd(queue_name, fields, maxlen=self._maxlen)
        except RetryError as e:
            cause = e.last_attempt.exception()
            raise QueueError.from_exception(
                cause, message=f"Failed to publish notification to {queue_name}", job_type=job_type
            ) from cause
        return message_id
