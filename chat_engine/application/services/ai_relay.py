"""
AI Relay

Fire-and-forget bridge between rooms and the external AI agent. An
``ai:active:{workspace}:{room}`` cache flag decides whether visitor messages
are relayed; bridge calls run as background tasks whose failures are logged.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from chat_engine.core.interfaces.notifications import AIBridge
from chat_engine.core.logging.logger import get_logger
from chat_engine.domain.models import Message
from chat_engine.infrastructure.cache import key_space as keys
from chat_engine.infrastructure.cache.resilient_cache import ResilientCache

logger = get_logger(__name__)


class AIRelay:
    def __init__(self, cache: ResilientCache, bridge: AIBridge | None = None):
        self._cache = cache
        self._bridge = bridge
        self._tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._bridge is not None

    async def activate(self, workspace_id: str, room_id: str, context: dict[str, Any] | None = None) -> None:
        flag = keys.ai_active(workspace_id, room_id)
        await self._cache.execute(lambda c: c.set(flag.key, "1", ttl=flag.ttl), "ai_activate")
        if self._bridge is not None:
            self._spawn(self._bridge.activate(workspace_id, room_id, context or {}), "activate", room_id)
        logger.info("AI activated for room", stage="AI.1", room_id=room_id, workspace_id=workspace_id)

    async def deactivate(self, workspace_id: str, room_id: str) -> None:
        flag = keys.ai_active(workspace_id, room_id)
        await self._cache.execute(lambda c: c.delete(flag.key), "ai_deactivate")
        if self._bridge is not None:
            self._spawn(self._bridge.deactivate(workspace_id, room_id), "deactivate", room_id)
        logger.info("AI deactivated for room", stage="AI.2", room_id=room_id, workspace_id=workspace_id)

    async def is_active(self, workspace_id: str, room_id: str) -> bool:
        flag = keys.ai_active(workspace_id, room_id)
        value, _ = await self._cache.execute(lambda c: c.get(flag.key), "ai_is_active")
        return value is not None

    async def relay_visitor_message(self, workspace_id: str, message: Message) -> bool:
        """
        Forward a visitor message when AI is active for its room.

        Returns:
            bool: True if a relay task was started
        """
        if self._bridge is None or not await self.is_active(workspace_id, message.room_id):
            return False
        self._spawn(
            self._bridge.visitor_message(workspace_id, message.room_id, message.model_dump(mode="json")),
            "visitor_message",
            message.room_id,
        )
        return True

    def _spawn(self, coro: Coroutine[Any, Any, Any], operation: str, room_id: str) -> None:
        task = asyncio.create_task(coro, name=f"ai-bridge-{operation}")
        self._tasks.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.warning(
                    "AI bridge call failed",
                    stage="AI.3",
                    operation=operation,
                    room_id=room_id,
                    error=str(error),
                    error_type=type(error).__name__,
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for in-flight bridge calls (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
