"""
Room Store

Cache-first room CRUD. Snapshots are served from ``room:{id}:data``; a miss
rebuilds the projection from the durable store overlaid with the cached
collections (which may be ahead of durable storage) and repopulates the
cache.

Every participant or department change goes through this class so the
snapshot is always invalidated and the workspace activity index re-scored.
"""

import uuid
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from chat_engine.application.services.base import EngineService
from chat_engine.core.config.constants import JobPriority, JobType, NotificationType, SessionStatus
from chat_engine.core.exceptions import DurablePersistenceError, RoomNotFoundError
from chat_engine.core.logging.logger import bind_room_context, get_logger
from chat_engine.domain.models import Message, Room, visitor_actor
from chat_engine.infrastructure.cache import key_space as keys

logger = get_logger(__name__)

ROOM_ID_NAMESPACE = uuid.UUID("6f1d7c52-3f0e-4d8e-9a51-2c1b7e0f4a90")


def room_id_for_session(workspace_id: str, visitor_session_id: str) -> str:
    """Deterministic room id: retries of CreateRoom upsert the same durable row."""
    return str(uuid.uuid5(ROOM_ID_NAMESPACE, f"{workspace_id}:{visitor_session_id}"))


def room_from_creation_payload(payload: dict[str, Any]) -> Room:
    """Projection of a room whose ROOM_CREATED job has not reached durable storage yet."""
    return Room(
        **payload["room"],
        participants=payload.get("participants", []),
        departments=payload.get("departments", []),
    )


class RoomStore(EngineService):
    """
    Usage:
        room = await rooms.create_room("v-1", "ws-1", "session-1")
        same = await rooms.create_room("v-1", "ws-1", "session-1")   # same room, no side effects
        room = await rooms.get_room(room.room_id, "ws-1")
    """

    # =========================================================================
    # Create
    # =========================================================================

    async def create_room(
        self,
        visitor_id: str,
        workspace_id: str,
        visitor_session_id: str,
        serving_department_id: str | None = None,
    ) -> Room:
        """
        Create the room for a visitor session, or return the existing one.

        STAGE-RS.1: Room creation
        """
        room_id = room_id_for_session(workspace_id, visitor_session_id)
        bind_room_context(room_id, workspace_id)
        session_key = keys.session_room(workspace_id, visitor_session_id)

        existing = await self._find_existing(workspace_id, visitor_session_id, session_key)
        if existing is not None:
            logger.info("Room already exists for session", stage="RS.1", room_id=existing.room_id)
            return existing

        queued = self._write_queue.pending_job(JobType.ROOM_CREATED, room_id)
        if queued is not None:
            logger.info("Room creation still queued for session", stage="RS.1", room_id=room_id)
            return room_from_creation_payload(queued.payload)

        now = self._clock()
        room = Room(
            room_id=room_id,
            workspace_id=workspace_id,
            visitor_id=visitor_id,
            visitor_session_id=visitor_session_id,
            current_department_id=serving_department_id,
            departments=[serving_department_id] if serving_department_id else [],
            participants=[visitor_actor(visitor_id)],
            created_at=now,
            last_activity_at=now,
        )

        # Claim the session. A lost race means another request is creating
        # this very room id, so hand back the same projection without writing.
        claimed, ok = await self._cache.execute(
            lambda c: c.set(session_key.key, room_id, ttl=session_key.ttl, nx=True), "claim_session"
        )
        if ok and not claimed:
            logger.info("Concurrent room creation detected", stage="RS.1", room_id=room_id)
            return room

        await self._mark_other_sessions_away(room)
        await self._write_room_cache(room)

        self._enqueue(
            JobType.ROOM_CREATED,
            {
                "room": room.durable_record(),
                "participants": list(room.participants),
                "departments": list(room.departments),
            },
            idempotency_key=room_id,
            priority=JobPriority.CRITICAL,
        )
        self._notify(
            NotificationType.NEW_CHAT_REQUEST,
            {
                "room_id": room_id,
                "workspace_id": workspace_id,
                "visitor_id": visitor_id,
                "department_id": serving_department_id,
            },
            priority=JobPriority.HIGH,
            dedupe_key=f"new_chat:{room_id}",
        )
        logger.info("Room created", stage="RS.1", room_id=room_id, visitor_id=visitor_id)
        return room

    async def _find_existing(
        self, workspace_id: str, visitor_session_id: str, session_key: keys.CacheKey
    ) -> Room | None:
        cached_id, _ = await self._cache.execute(lambda c: c.get(session_key.key), "get_session_room")
        if cached_id:
            try:
                return await self.get_room(cached_id, workspace_id)
            except RoomNotFoundError:
                logger.warning("Session claim without room, recreating", stage="RS.1", room_id=cached_id)
                await self._cache.execute(lambda c: c.delete(session_key.key), "drop_stale_claim")

        try:
            durable = await self._durable_read(
                self._store.find_room_by_session(workspace_id, visitor_session_id), "find_room_by_session"
            )
        except DurablePersistenceError as e:
            logger.warning("Durable session lookup failed, relying on deterministic id", stage="RS.1", error=str(e))
            return None

        if durable is not None:
            await self._cache.execute(
                lambda c: c.set(session_key.key, durable.room_id, ttl=session_key.ttl), "warm_session_room"
            )
        return durable

    async def _mark_other_sessions_away(self, room: Room) -> None:
        """Enforce one live room per visitor: other ACTIVE sessions become AWAY."""
        active_key = keys.visitor_active_rooms(room.visitor_id, room.workspace_id)
        cached, _ = await self._cache.execute(lambda c: c.smembers(active_key.key), "get_visitor_rooms")
        others = set(cached or ())

        try:
            others.update(
                await self._durable_read(
                    self._store.find_visitor_active_rooms(room.workspace_id, room.visitor_id),
                    "find_visitor_active_rooms",
                )
            )
        except DurablePersistenceError as e:
            logger.warning("Durable visitor lookup failed", stage="RS.1", error=str(e))

        others.discard(room.room_id)
        if others:
            self._enqueue(
                JobType.SESSION_MARKED_AWAY,
                {
                    "workspace_id": room.workspace_id,
                    "visitor_id": room.visitor_id,
                    "room_ids": sorted(others),
                    "status": SessionStatus.AWAY.value,
                },
                idempotency_key=f"session_away:{room.room_id}",
                priority=JobPriority.HIGH,
            )
            for other_id in others:
                await self.invalidate_room(other_id)
            logger.info("Other visitor sessions marked away", stage="RS.1", room_ids=sorted(others))

        async def replace_active(c):
            await c.delete(active_key.key)
            await c.sadd(active_key.key, room.room_id)
            await c.expire(active_key.key, active_key.ttl)

        await self._cache.execute(replace_active, "set_visitor_rooms")

    # =========================================================================
    # Read
    # =========================================================================

    async def get_room(self, room_id: str, workspace_id: str) -> Room:
        """
        STAGE-RS.2: Room read

        Raises:
            RoomNotFoundError: If the room does not exist in the workspace
        """
        snapshot_key = keys.room_data(room_id)
        snapshot, _ = await self._cache.execute(lambda c: c.get(snapshot_key.key), "get_snapshot")
        if snapshot:
            try:
                room = Room.model_validate_json(snapshot)
            except PydanticValidationError:
                logger.warning("Discarding unreadable room snapshot", stage="RS.2", room_id=room_id)
                await self.invalidate_room(room_id)
            else:
                if room.workspace_id != workspace_id:
                    raise RoomNotFoundError("Room not found", room_id=room_id)
                return room

        room = await self._rebuild(room_id)
        if room is None or room.workspace_id != workspace_id:
            raise RoomNotFoundError(
                "Room not found", room_id=room_id, details={"workspace_id": workspace_id}
            )

        await self._cache.execute(
            lambda c: c.set(snapshot_key.key, room.model_dump_json(), ttl=snapshot_key.ttl), "set_snapshot"
        )
        return room

    async def _rebuild(self, room_id: str) -> Room | None:
        durable_room = None
        try:
            durable_room = await self._durable_read(self._store.find_room(room_id), "find_room")
        except DurablePersistenceError as e:
            logger.warning("Durable room read failed, rebuilding from cache", stage="RS.2", error=str(e))

        cached = await self._read_cached_state(room_id)
        if cached is None or not cached["meta"]:
            # Cached collections are unreliable without the meta hash.
            if durable_room is not None:
                await self._write_room_cache(durable_room, include_snapshot=False)
            return durable_room

        meta = cached["meta"]
        if durable_room is not None:
            room = durable_room.model_copy()
        else:
            room = Room(
                room_id=room_id,
                workspace_id=meta["workspace_id"],
                visitor_id=meta["visitor_id"],
                visitor_session_id=meta["visitor_session_id"],
                created_at=meta["created_at"],
                last_activity_at=meta.get("last_activity_at") or meta["created_at"],
            )

        # Cache is allowed to be ahead of durable storage.
        room.participants = sorted(cached["participants"])
        room.departments = sorted(cached["departments"])
        room.current_department_id = cached["current_department"].get("department_id") or None
        if cached["messages"]:
            room.messages = [Message.model_validate_json(raw) for raw in cached["messages"]]
        return room

    async def _read_cached_state(self, room_id: str) -> dict[str, Any] | None:
        async def read(c):
            return {
                "meta": await c.hgetall(keys.room_meta(room_id).key),
                "participants": await c.smembers(keys.room_participants(room_id).key),
                "departments": await c.smembers(keys.room_departments(room_id).key),
                "current_department": await c.hgetall(keys.room_current_department(room_id).key),
                "messages": await c.lrange(keys.room_messages(room_id).key, 0, -1),
            }

        state, _ = await self._cache.execute(read, "read_room_state")
        return state

    async def _write_room_cache(self, room: Room, include_snapshot: bool = True) -> None:
        room_id = room.room_id
        meta_key = keys.room_meta(room_id)
        participants_key = keys.room_participants(room_id)
        departments_key = keys.room_departments(room_id)
        current_key = keys.room_current_department(room_id)
        messages_key = keys.room_messages(room_id)
        snapshot_key = keys.room_data(room_id)
        index_key = keys.workspace_rooms(room.workspace_id)

        async def write(c):
            await c.hset(
                meta_key.key,
                {
                    "workspace_id": room.workspace_id,
                    "visitor_id": room.visitor_id,
                    "visitor_session_id": room.visitor_session_id,
                    "created_at": room.created_at.isoformat(),
                    "last_activity_at": room.last_activity_at.isoformat(),
                },
            )
            await c.expire(meta_key.key, meta_key.ttl)
            if room.participants:
                await c.sadd(participants_key.key, *room.participants)
                await c.expire(participants_key.key, participants_key.ttl)
            if room.departments:
                await c.sadd(departments_key.key, *room.departments)
                await c.expire(departments_key.key, departments_key.ttl)
            if room.current_department_id:
                await c.hset(current_key.key, {"department_id": room.current_department_id})
                await c.expire(current_key.key, current_key.ttl)
            if room.messages:
                await c.delete(messages_key.key)
                await c.lpush(messages_key.key, *[m.model_dump_json() for m in reversed(room.messages)])
                await c.expire(messages_key.key, messages_key.ttl)
            if include_snapshot:
                await c.set(snapshot_key.key, room.model_dump_json(), ttl=snapshot_key.ttl)
            await c.zadd(index_key.key, {room_id: room.last_activity_at.timestamp()})
            await c.expire(index_key.key, index_key.ttl)

        await self._cache.execute(write, "write_room")

    async def get_participants(self, room_id: str) -> set[str]:
        """Active actor ids, from cache or (on miss) durable storage."""
        cached = await self.cached_participants(room_id)
        if cached:
            return cached

        participants = set(
            await self._durable_read(self._store.find_active_participants(room_id), "find_active_participants")
        )
        if participants:
            participants_key = keys.room_participants(room_id)

            async def repopulate(c):
                await c.sadd(participants_key.key, *participants)
                await c.expire(participants_key.key, participants_key.ttl)

            await self._cache.execute(repopulate, "repopulate_participants")
        return participants

    async def cached_participants(self, room_id: str) -> set[str] | None:
        """Cached participant set; None when the cache is unavailable or has no entry."""
        members, ok = await self._cache.execute(
            lambda c: c.smembers(keys.room_participants(room_id).key), "get_participants"
        )
        if not ok or not members:
            return None
        return set(members)

    async def list_workspace_rooms(self, workspace_id: str, limit: int = 50, offset: int = 0) -> list[str]:
        """Room ids, most recently active first. Empty when the cache is unavailable."""
        limit = max(1, limit)
        offset = max(0, offset)
        index_key = keys.workspace_rooms(workspace_id)
        room_ids, ok = await self._cache.execute(
            lambda c: c.zrevrange(index_key.key, offset, offset + limit - 1), "list_workspace_rooms"
        )
        if not ok:
            logger.warning("Workspace room index unavailable", stage="RS.3", workspace_id=workspace_id)
            return []
        return list(room_ids or [])

    # =========================================================================
    # Invalidation and activity
    # =========================================================================

    async def invalidate_room(self, room_id: str) -> None:
        await self._cache.execute(lambda c: c.delete(keys.room_data(room_id).key), "invalidate_room")

    async def touch(self, room_id: str, workspace_id: str) -> None:
        """Re-score the room in the workspace activity index."""
        now = self._clock()
        index_key = keys.workspace_rooms(workspace_id)
        meta_key = keys.room_meta(room_id)

        async def rescore(c):
            await c.zadd(index_key.key, {room_id: now.timestamp()})
            await c.expire(index_key.key, index_key.ttl)
            await c.hset(meta_key.key, {"last_activity_at": now.isoformat()})
            await c.expire(meta_key.key, meta_key.ttl)

        await self._cache.execute(rescore, "touch_room")

    async def _mutated(self, room_id: str, workspace_id: str) -> None:
        await self.invalidate_room(room_id)
        await self.touch(room_id, workspace_id)

    # =========================================================================
    # Participant and department mutators
    # =========================================================================

    async def add_participant(self, room_id: str, workspace_id: str, actor: str) -> None:
        participants_key = keys.room_participants(room_id)

        async def add(c):
            await c.sadd(participants_key.key, actor)
            await c.expire(participants_key.key, participants_key.ttl)

        await self._cache.execute(add, "add_participant")
        await self._mutated(room_id, workspace_id)

    async def remove_participant(self, room_id: str, workspace_id: str, actor: str) -> None:
        participants_key = keys.room_participants(room_id)
        await self._cache.execute(lambda c: c.srem(participants_key.key, actor), "remove_participant")
        await self._mutated(room_id, workspace_id)

    async def add_department(self, room_id: str, workspace_id: str, department_id: str) -> None:
        departments_key = keys.room_departments(room_id)

        async def add(c):
            await c.sadd(departments_key.key, department_id)
            await c.expire(departments_key.key, departments_key.ttl)

        await self._cache.execute(add, "add_department")
        await self._mutated(room_id, workspace_id)

    async def remove_department(self, room_id: str, workspace_id: str, department_id: str) -> None:
        departments_key = keys.room_departments(room_id)
        await self._cache.execute(lambda c: c.srem(departments_key.key, department_id), "remove_department")
        await self._mutated(room_id, workspace_id)

    async def set_current_department(self, room_id: str, workspace_id: str, department_id: str) -> None:
        current_key = keys.room_current_department(room_id)

        async def assign(c):
            await c.hset(
                current_key.key,
                {"department_id": department_id, "updated_at": self._now_iso()},
            )
            await c.expire(current_key.key, current_key.ttl)

        await self._cache.execute(assign, "set_current_department")
        await self._mutated(room_id, workspace_id)
