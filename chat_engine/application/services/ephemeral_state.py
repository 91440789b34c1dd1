"""
Ephemeral State Tracker

Typing indicators and delivery/read receipts. These live only in the cache
with short-to-medium TTLs; the durable audit events enqueued alongside are
best-effort telemetry and may be dropped.

Absence of ``typing:{room}:{participant}`` is the canonical "not typing"
signal, so nothing has to clean typing state up.
"""

from chat_engine.application.services.base import EngineService
from chat_engine.application.services.room_store import RoomStore
from chat_engine.core.config.constants import JobPriority, JobType
from chat_engine.core.exceptions import InvalidMessageError, ParticipantNotInRoomError
from chat_engine.core.logging.logger import get_logger
from chat_engine.domain.models import DeliveryReceipt, ReadReceipt, ReadResult, TypingStatus
from chat_engine.infrastructure.cache import key_space as keys

logger = get_logger(__name__)


class EphemeralStateTracker(EngineService):
    def __init__(self, *args, rooms: RoomStore, **kwargs):
        super().__init__(*args, **kwargs)
        self._rooms = rooms

    # =========================================================================
    # Typing
    # =========================================================================

    async def set_typing(self, room_id: str, participant: str, is_typing: bool) -> TypingStatus:
        """
        STAGE-ES.1: Typing indicator

        Raises:
            ParticipantNotInRoomError: If the cached participant set does not
                contain ``participant``
        """
        participants = await self._rooms.cached_participants(room_id)
        if participants is not None and participant not in participants:
            raise ParticipantNotInRoomError(
                "Participant is not in this room", room_id=room_id, details={"participant": participant}
            )

        typing_key = keys.typing(room_id, participant)
        now = self._clock()
        if is_typing:
            await self._cache.execute(
                lambda c: c.set(typing_key.key, now.isoformat(), ttl=typing_key.ttl), "set_typing"
            )
        else:
            await self._cache.execute(lambda c: c.delete(typing_key.key), "clear_typing")

        self._enqueue(
            JobType.TYPING_EVENT,
            {"room_id": room_id, "participant": participant, "is_typing": is_typing, "at": now.isoformat()},
            idempotency_key=f"typing:{room_id}:{participant}:{now.timestamp()}",
            priority=JobPriority.LOW,
            best_effort=True,
        )
        logger.debug("Typing updated", stage="ES.1", room_id=room_id, participant=participant, is_typing=is_typing)
        return TypingStatus(room_id=room_id, participant=participant, is_typing=is_typing, updated_at=now)

    async def is_typing(self, room_id: str, participant: str) -> bool:
        typing_key = keys.typing(room_id, participant)
        found, _ = await self._cache.execute(lambda c: c.exists(typing_key.key), "is_typing")
        return bool(found)

    async def typing_participants(self, room_id: str) -> list[str]:
        participants = await self._rooms.cached_participants(room_id)
        if not participants:
            return []
        candidates = sorted(participants)

        async def probe(c):
            return [actor for actor in candidates if await c.exists(keys.typing(room_id, actor).key)]

        typing, _ = await self._cache.execute(probe, "typing_participants")
        return typing or []

    # =========================================================================
    # Receipts
    # =========================================================================

    async def mark_delivered(self, room_id: str, message_id: str, recipient: str) -> DeliveryReceipt:
        """
        STAGE-ES.2: Delivery receipt

        Raises:
            InvalidMessageError: If the message belongs to another room
        """
        owner_key = keys.message_room(message_id)
        owner, _ = await self._cache.execute(lambda c: c.get(owner_key.key), "get_message_room")
        if owner is not None and owner != room_id:
            raise InvalidMessageError(
                "Message does not belong to this room",
                room_id=room_id,
                details={"message_id": message_id, "owner_room_id": owner},
            )

        now = self._clock()
        delivery_key = keys.message_delivery(message_id)

        async def record(c):
            await c.hset(delivery_key.key, {recipient: now.isoformat()})
            await c.expire(delivery_key.key, delivery_key.ttl)

        await self._cache.execute(record, "mark_delivered")
        self._enqueue(
            JobType.MESSAGE_DELIVERED,
            {"room_id": room_id, "message_id": message_id, "recipient": recipient, "delivered_at": now.isoformat()},
            idempotency_key=f"delivered:{message_id}:{recipient}",
            priority=JobPriority.LOW,
            best_effort=True,
        )
        logger.debug("Message delivered", stage="ES.2", room_id=room_id, message_id=message_id, recipient=recipient)
        return await self.get_delivery_receipt(message_id, room_id=room_id)

    async def mark_read(self, room_id: str, reader: str, message_ids: list[str]) -> ReadResult:
        """
        Mark messages read by ``reader`` and clear the reader's cached unread count.

        Duplicate ids are collapsed and ids known to belong to another room are
        skipped.

        STAGE-ES.3: Read receipt
        """
        unique_ids = list(dict.fromkeys(message_ids))
        if not unique_ids:
            return ReadResult(room_id=room_id, reader=reader, marked_count=0)

        async def owners(c):
            return [await c.get(keys.message_room(mid).key) for mid in unique_ids]

        owned_by, _ = await self._cache.execute(owners, "get_message_rooms")
        if owned_by is None:
            owned_by = [None] * len(unique_ids)
        accepted = [mid for mid, owner in zip(unique_ids, owned_by) if owner is None or owner == room_id]
        skipped = len(unique_ids) - len(accepted)
        if skipped:
            logger.warning("Skipping messages from other rooms", stage="ES.3", room_id=room_id, skipped=skipped)
        if not accepted:
            return ReadResult(room_id=room_id, reader=reader, marked_count=0)

        now = self._clock()
        status_key = keys.room_read_status(room_id, reader)
        unread_key = keys.unread_count(room_id, reader)

        async def record(c):
            for mid in accepted:
                read_key = keys.message_read(mid)
                await c.hset(read_key.key, {reader: now.isoformat()})
                await c.expire(read_key.key, read_key.ttl)
            await c.hset(status_key.key, {"last_read_message_id": accepted[0], "last_read_at": now.isoformat()})
            await c.expire(status_key.key, status_key.ttl)
            await c.delete(unread_key.key)

        await self._cache.execute(record, "mark_read")
        self._enqueue(
            JobType.MESSAGE_READ,
            {"room_id": room_id, "reader": reader, "message_ids": accepted, "read_at": now.isoformat()},
            idempotency_key=f"read:{room_id}:{reader}:{now.timestamp()}",
            priority=JobPriority.LOW,
            best_effort=True,
        )
        logger.debug("Messages read", stage="ES.3", room_id=room_id, reader=reader, count=len(accepted))
        return ReadResult(room_id=room_id, reader=reader, marked_count=len(accepted), message_ids=accepted)

    async def get_delivery_receipt(self, message_id: str, room_id: str | None = None) -> DeliveryReceipt:
        acknowledged = await self._read_acks(keys.message_delivery(message_id), "get_delivery_receipt")
        return DeliveryReceipt(message_id=message_id, room_id=room_id, acknowledged_by=acknowledged)

    async def get_read_receipt(self, message_id: str, room_id: str | None = None) -> ReadReceipt:
        acknowledged = await self._read_acks(keys.message_read(message_id), "get_read_receipt")
        return ReadReceipt(message_id=message_id, room_id=room_id, acknowledged_by=acknowledged)

    async def _read_acks(self, key: keys.CacheKey, op_name: str) -> dict[str, str]:
        acks, _ = await self._cache.execute(lambda c: c.hgetall(key.key), op_name)
        return dict(acks or {})
