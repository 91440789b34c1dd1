"""
Shared plumbing for engine services: bounded durable reads, write-job
enqueueing and fire-and-forget notifications.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from chat_engine.application.services.notification_outbox import NotificationOutbox
from chat_engine.core.config.constants import JobPriority, JobType, NotificationType
from chat_engine.core.exceptions import DurableTimeoutError
from chat_engine.core.interfaces.durable_store import DurableStore
from chat_engine.domain.models import utc_now
from chat_engine.infrastructure.cache.resilient_cache import ResilientCache
from chat_engine.infrastructure.persistence.write_queue import DurableWriteQueue, WriteJob

T = TypeVar("T")


class EngineService:
    """Base class wiring the collaborators every service talks to."""

    def __init__(
        self,
        cache: ResilientCache,
        store: DurableStore,
        write_queue: DurableWriteQueue,
        notifications: NotificationOutbox | None = None,
        durable_timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._cache = cache
        self._store = store
        self._write_queue = write_queue
        self._notifications = notifications
        self._durable_timeout = durable_timeout
        self._clock = clock

    async def _durable_read(self, call: Awaitable[T], operation: str) -> T:
        """
        Await a durable store read within the configured timeout.

        Raises:
            DurableTimeoutError: If the read exceeds the timeout
        """
        try:
            return await asyncio.wait_for(call, timeout=self._durable_timeout)
        except TimeoutError as e:
            raise DurableTimeoutError(
                f"Durable read '{operation}' timed out",
                details={"operation": operation, "timeout": self._durable_timeout},
            ) from e

    def _enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        idempotency_key: str,
        priority: JobPriority = JobPriority.NORMAL,
        best_effort: bool = False,
    ) -> WriteJob:
        return self._write_queue.enqueue(
            job_type,
            payload,
            idempotency_key=idempotency_key,
            priority=priority,
            best_effort=best_effort,
        )

    def _notify(
        self,
        notification_type: NotificationType,
        data: dict[str, Any],
        priority: JobPriority = JobPriority.NORMAL,
        dedupe_key: str | None = None,
    ) -> None:
        """Hand a notification to the outbox; never blocks on the dispatcher."""
        if self._notifications is not None:
            self._notifications.publish(notification_type, data, priority=priority, dedupe_key=dedupe_key)

    def _now_iso(self) -> str:
        return self._clock().isoformat()
