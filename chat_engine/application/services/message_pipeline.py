"""
Message Pipeline

Creates text and file messages. The cached window is updated before the call
returns, so a message is readable immediately; durable persistence and
analytics follow through the write queue.

Flow (CreateMessage):
    1. Validate payload into a Message
    2. LPUSH onto room:{id}:messages, LTRIM to the window size
    3. Invalidate the room snapshot, re-score the workspace index
    4. Enqueue persistence (+ response-time jobs for agent replies)
    5. Relay visitor text to the AI bridge when AI is active
"""

from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from chat_engine.application.services.ai_relay import AIRelay
from chat_engine.application.services.base import EngineService
from chat_engine.application.services.room_store import RoomStore
from chat_engine.core.config.constants import (
    DEFAULT_MESSAGE_PAGE_SIZE,
    VISITOR_VISIBLE_SENDERS,
    JobPriority,
    JobType,
    MessageType,
    RequesterType,
    SenderType,
)
from chat_engine.core.exceptions import DurablePersistenceError, InvalidMessageError
from chat_engine.core.logging.logger import get_logger
from chat_engine.domain.models import Attachment, Message
from chat_engine.infrastructure.cache import key_space as keys

logger = get_logger(__name__)


class MessagePage(BaseModel):
    model_config = {"frozen": True}

    room_id: str
    page: int
    limit: int
    messages: list[Message] = Field(default_factory=list)
    has_more: bool = False


class MessagePipeline(EngineService):
    def __init__(
        self,
        *args,
        rooms: RoomStore,
        ai_relay: AIRelay | None = None,
        window_size: int = 100,
        max_page_size: int = 100,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self._rooms = rooms
        self._ai_relay = ai_relay
        self._window_size = window_size
        self._max_page_size = max_page_size

    # =========================================================================
    # Create
    # =========================================================================

    async def create_message(
        self,
        room_id: str,
        workspace_id: str,
        sender_type: SenderType,
        content: str,
        sender_id: str | None = None,
        is_internal: bool = False,
        message_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """
        STAGE-MP.1: Text message creation

        Raises:
            InvalidMessageError: If content is empty
        """
        message = self._build(
            room_id=room_id,
            sender_type=sender_type,
            sender_id=sender_id,
            message_type=MessageType.TEXT,
            content=content,
            is_internal=is_internal,
            message_id=message_id,
            metadata=metadata,
        )
        await self._publish(message, workspace_id)
        return message

    async def create_file_message(
        self,
        room_id: str,
        workspace_id: str,
        sender_type: SenderType,
        attachment: Attachment | dict[str, Any],
        caption: str | None = None,
        sender_id: str | None = None,
        is_internal: bool = False,
        message_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """
        STAGE-MP.2: File message creation

        ``attachment`` is the descriptor returned by the storage adapter once
        the upload was finalized.
        """
        message = self._build(
            room_id=room_id,
            sender_type=sender_type,
            sender_id=sender_id,
            message_type=MessageType.FILE,
            content=caption,
            attachment=attachment,
            is_internal=is_internal,
            message_id=message_id,
            metadata=metadata,
        )
        await self._publish(message, workspace_id)
        return message

    def _build(self, message_id: str | None = None, metadata: dict[str, Any] | None = None, **fields) -> Message:
        if message_id is not None:
            fields["id"] = message_id
        try:
            return Message(metadata=metadata or {}, created_at=self._clock(), **fields)
        except PydanticValidationError as e:
            raise InvalidMessageError(
                "Invalid message payload",
                room_id=fields.get("room_id"),
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    async def _publish(self, message: Message, workspace_id: str) -> None:
        room_id = message.room_id
        messages_key = keys.room_messages(room_id)
        owner_key = keys.message_room(message.id)
        window = self._window_size
        encoded = message.model_dump_json()

        async def append(c):
            await c.lpush(messages_key.key, encoded)
            await c.ltrim(messages_key.key, 0, window - 1)
            await c.expire(messages_key.key, messages_key.ttl)
            await c.set(owner_key.key, room_id, ttl=owner_key.ttl)

        _, cached = await self._cache.execute(append, "append_message")
        if not cached:
            logger.warning(
                "Message not cached, durable write only", stage="MP.1", room_id=room_id, message_id=message.id
            )
        await self._rooms.invalidate_room(room_id)
        await self._drop_history_pages(room_id)
        await self._rooms.touch(room_id, workspace_id)

        self._enqueue(
            JobType.MESSAGE_CREATED,
            {
                "message": message.durable_record(),
                "room_activity": {"room_id": room_id, "last_activity_at": message.created_at.isoformat()},
                "analytics": self._analytics_delta(message),
            },
            idempotency_key=message.id,
            priority=JobPriority.NORMAL,
        )
        self._enqueue(
            JobType.MESSAGE_SENT,
            {
                "room_id": room_id,
                "workspace_id": workspace_id,
                "message_id": message.id,
                "sender_type": message.sender_type.value,
                "message_type": message.message_type.value,
            },
            idempotency_key=f"message_sent:{message.id}",
            priority=JobPriority.LOW,
            best_effort=True,
        )
        if message.is_agent_reply:
            for job_type in (JobType.FIRST_RESPONSE_TIME, JobType.AVERAGE_RESPONSE_TIME):
                self._enqueue(
                    job_type,
                    {
                        "room_id": room_id,
                        "agent_id": message.sender_id,
                        "message_id": message.id,
                        "responded_at": message.created_at.isoformat(),
                    },
                    idempotency_key=f"{job_type.value}:{message.id}",
                    priority=JobPriority.NORMAL,
                )

        if (
            self._ai_relay is not None
            and message.sender_type is SenderType.VISITOR
            and message.message_type is MessageType.TEXT
            and not message.is_internal
        ):
            await self._ai_relay.relay_visitor_message(workspace_id, message)

        logger.info(
            "Message created",
            stage="MP.1",
            room_id=room_id,
            message_id=message.id,
            sender_type=message.sender_type.value,
            message_type=message.message_type.value,
        )

    @staticmethod
    def _analytics_delta(message: Message) -> dict[str, int]:
        sender = message.sender_type
        delta = {"total_messages": 1}
        if sender is SenderType.VISITOR:
            delta["visitor_messages"] = 1
        elif sender is SenderType.AGENT:
            delta["agent_messages"] = 1
            if message.is_internal:
                delta["internal_messages"] = 1
        elif sender in (SenderType.VISITOR_SYSTEM, SenderType.AGENT_SYSTEM, SenderType.TRIGGERED_MESSAGE):
            delta["system_messages"] = 1
        else:
            raise ValueError(f"unknown sender type: {sender}")
        return delta

    # =========================================================================
    # Read
    # =========================================================================

    async def get_recent_messages(
        self, room_id: str, requester: RequesterType, limit: int = DEFAULT_MESSAGE_PAGE_SIZE
    ) -> list[Message]:
        """
        Newest-first messages from the cached window, durable fallback on miss.

        STAGE-MP.3: Recent messages
        """
        limit = min(max(1, limit), self._window_size)
        messages_key = keys.room_messages(room_id)
        raw, ok = await self._cache.execute(lambda c: c.lrange(messages_key.key, 0, limit - 1), "get_window")
        if ok and raw:
            messages = [Message.model_validate_json(item) for item in raw]
        else:
            messages = await self._durable_read(
                self._store.find_messages(room_id, offset=0, limit=limit), "find_messages"
            )
        return [m for m in messages if m.visible_to(requester)]

    async def get_messages(
        self,
        room_id: str,
        requester: RequesterType,
        page: int = 1,
        limit: int = DEFAULT_MESSAGE_PAGE_SIZE,
    ) -> MessagePage:
        """
        Paged durable history. ``page`` is clamped to >= 1 and ``limit`` to
        1..max_page_size; visitors only see visitor-facing, non-internal messages.

        STAGE-MP.4: Message history
        """
        page = max(1, page)
        limit = min(max(1, limit), self._max_page_size)
        offset = (page - 1) * limit

        if requester is RequesterType.VISITOR:
            sender_types, include_internal = VISITOR_VISIBLE_SENDERS, False
        elif requester is RequesterType.AGENT:
            sender_types, include_internal = None, True
        else:
            raise ValueError(f"unknown requester type: {requester}")

        page_key = keys.room_history_page(room_id, requester.value, page, limit)
        cached, _ = await self._cache.execute(lambda c: c.get(page_key.key), "get_history_page")
        if cached:
            try:
                return MessagePage.model_validate_json(cached)
            except PydanticValidationError:
                logger.warning("Discarding unreadable history page", stage="MP.4", room_id=room_id, page=page)

        try:
            fetched = await self._durable_read(
                self._store.find_messages(
                    room_id,
                    offset=offset,
                    limit=limit + 1,
                    sender_types=sender_types,
                    include_internal=include_internal,
                ),
                "find_messages",
            )
        except DurablePersistenceError:
            logger.error("Message history unavailable", stage="MP.4", room_id=room_id, page=page)
            raise

        result = MessagePage(
            room_id=room_id,
            page=page,
            limit=limit,
            messages=fetched[:limit],
            has_more=len(fetched) > limit,
        )
        # Pages read while writes are still queued may miss them.
        if self._write_queue.depth:
            return result

        index_key = keys.room_history_pages(room_id)
        encoded = result.model_dump_json()

        async def store_page(c):
            await c.set(page_key.key, encoded, ttl=page_key.ttl)
            await c.sadd(index_key.key, page_key.key)
            await c.expire(index_key.key, index_key.ttl)

        await self._cache.execute(store_page, "set_history_page")
        return result

    async def _drop_history_pages(self, room_id: str) -> None:
        index_key = keys.room_history_pages(room_id)

        async def drop(c):
            pages = await c.smembers(index_key.key)
            await c.delete(index_key.key, *pages)

        await self._cache.execute(drop, "drop_history_pages")
