"""
Notification Outbox

Fire-and-forget publishing of agent-facing notifications. Every notification
is dispatched on its own background task, so a slow or unreachable stream
never holds up the room operation that raised it; dispatch failures are
logged, never raised.

Notifications carrying a ``dedupe_key`` are published at most once per
process while the key is among the most recent ``dedupe_window`` keys. The
key also travels in the payload so downstream consumers can drop repeats
that come from other processes.
"""

import asyncio
from collections import OrderedDict
from typing import Any

from chat_engine.core.config.constants import NOTIFICATION_QUEUE, JobPriority, NotificationType
from chat_engine.core.interfaces.notifications import NotificationDispatcher
from chat_engine.core.logging.logger import get_logger

logger = get_logger(__name__)


class NotificationOutbox:
    def __init__(self, dispatcher: NotificationDispatcher | None = None, dedupe_window: int = 10000):
        self._dispatcher = dispatcher
        self._dedupe_window = dedupe_window
        self._recent_keys: OrderedDict[str, None] = OrderedDict()
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def publish(
        self,
        notification_type: NotificationType,
        data: dict[str, Any],
        priority: JobPriority = JobPriority.NORMAL,
        dedupe_key: str | None = None,
    ) -> bool:
        """
        STAGE-N.1: Schedule a notification

        Returns:
            bool: True if a dispatch task was started
        """
        if self._dispatcher is None:
            return False
        if dedupe_key is not None and not self._remember(dedupe_key):
            logger.debug(
                "Duplicate notification skipped",
                stage="N.4",
                notification_type=notification_type.value,
                dedupe_key=dedupe_key,
            )
            return False

        payload: dict[str, Any] = {"type": notification_type.value, "data": data}
        if dedupe_key is not None:
            payload["dedupe_key"] = dedupe_key

        task = asyncio.create_task(
            self._dispatcher.enqueue(
                NOTIFICATION_QUEUE, notification_type.value, payload, priority=int(priority)
            ),
            name=f"notify-{notification_type.value}",
        )
        self._tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.warning(
                    "Notification dispatch failed",
                    stage="N.3",
                    notification_type=notification_type.value,
                    error=str(error),
                    error_type=type(error).__name__,
                )

        task.add_done_callback(_done)
        return True

    def _remember(self, dedupe_key: str) -> bool:
        if dedupe_key in self._recent_keys:
            self._recent_keys.move_to_end(dedupe_key)
            return False
        self._recent_keys[dedupe_key] = None
        if len(self._recent_keys) > self._dedupe_window:
            self._recent_keys.popitem(last=False)
        return True

    async def drain(self) -> None:
        """Wait for in-flight dispatches (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
