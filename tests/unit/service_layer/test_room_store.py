"""
Unit Tests for RoomStore

Tests idempotent room creation, snapshot reads and rebuilds, the visitor
one-live-room rule and the workspace activity index.
"""

import asyncio

import pytest

from chat_engine.core.config.constants import JobType, NotificationType, SenderType, SessionStatus
from chat_engine.core.exceptions import RoomNotFoundError
from chat_engine.application.services.room_store import room_id_for_session
from chat_engine.infrastructure.cache import key_space as keys


def created_jobs(store) -> list:
    return [job for batch in store.batches for job in batch if job.job_type is JobType.ROOM_CREATED]


@pytest.mark.unit
class TestCreateRoom:
    @pytest.mark.asyncio
    async def test_room_is_cached_and_indexed(self, engine, redis_backend):
        room = await engine.rooms.create_room("v-1", "ws-1", "session-1", serving_department_id="dept-x")

        assert room.participants == ["visitor:v-1"]
        assert room.departments == ["dept-x"]
        assert room.current_department_id == "dept-x"
        assert keys.room_data(room.room_id).key in redis_backend.strings
        assert room.room_id in redis_backend.zsets[keys.workspace_rooms("ws-1").key]

    @pytest.mark.asyncio
    async def test_create_is_idempotent_per_session(self, engine, durable_store, notifier):
        first = await engine.rooms.create_room("v-1", "ws-1", "session-1")
        second = await engine.rooms.create_room("v-1", "ws-1", "session-1")
        await engine.write_queue.flush_now()

        assert second.room_id == first.room_id
        assert len(durable_store.rooms) == 1
        assert len(created_jobs(durable_store)) == 1
        await engine.notifications.drain()
        assert notifier.types().count(NotificationType.NEW_CHAT_REQUEST.value) == 1

    @pytest.mark.asyncio
    async def test_concurrent_creates_share_one_room(self, engine, durable_store):
        results = await asyncio.gather(
            engine.rooms.create_room("v-1", "ws-1", "session-1"),
            engine.rooms.create_room("v-1", "ws-1", "session-1"),
        )
        await engine.write_queue.flush_now()

        assert results[0].room_id == results[1].room_id
        assert len(created_jobs(durable_store)) == 1

    @pytest.mark.asyncio
    async def test_room_id_is_deterministic(self, engine):
        room = await engine.rooms.create_room("v-1", "ws-1", "session-1")

        assert room.room_id == room_id_for_session("ws-1", "session-1")
        assert room_id_for_session("ws-2", "session-1") != room.room_id

    @pytest.mark.asyncio
    async def test_existing_durable_room_returned_after_cache_loss(self, engine, redis_backend, durable_store):
        first = await engine.rooms.create_room("v-1", "ws-1", "session-1")
        await engine.write_queue.flush_now()
        redis_backend.flushall()

        again = await engine.rooms.create_room("v-1", "ws-1", "session-1")
        await engine.write_queue.flush_now()

        assert again.room_id == first.room_id
        assert len(created_jobs(durable_store)) == 1

    @pytest.mark.asyncio
    async def test_stale_session_claim_is_replaced(self, engine, redis_backend):
        claim = keys.session_room("ws-1", "session-1")
        redis_backend.strings[claim.key] = "ghost-room"

        room = await engine.rooms.create_room("v-1", "ws-1", "session-1")

        assert room.room_id != "ghost-room"
        assert redis_backend.strings[claim.key] == room.room_id

    @pytest.mark.asyncio
    async def test_other_active_session_marked_away(self, engine, durable_store):
        first = await engine.rooms.create_room("v-1", "ws-1", "session-1")
        second = await engine.rooms.create_room("v-1", "ws-1", "session-2")
        await engine.write_queue.flush_now()

        [job] = durable_store.jobs_of(JobType.SESSION_MARKED_AWAY)
        assert job.payload["room_ids"] == [first.room_id]
        assert durable_store.rooms[first.room_id].session_status is SessionStatus.AWAY
        assert durable_store.rooms[second.room_id].session_status is SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_create_survives_durable_read_outage(self, engine, durable_store):
        durable_store.fail_reads()

        room = await engine.rooms.create_room("v-1", "ws-1", "session-1")

        assert room.visitor_id == "v-1"

    @pytest.mark.asyncio
    async def test_create_survives_cache_outage(self, engine, redis_backend, durable_store, notifier):
        redis_backend.fail()

        room = await engine.rooms.create_room("v-1", "ws-1", "session-1")
        await engine.write_queue.flush_now()

        assert room.room_id in durable_store.rooms
        await engine.notifications.drain()
        assert NotificationType.NEW_CHAT_REQUEST.value in notifier.types()

    @pytest.mark.asyncio
    async def test_repeat_create_during_outage_reuses_queued_creation(
        self, engine, redis_backend, durable_store, notifier
    ):
        redis_backend.fail()
        durable_store.fail_reads()

        first = await engine.rooms.create_room("v-1", "ws-1", "session-1", serving_department_id="dept-x")
        second = await engine.rooms.create_room("v-1", "ws-1", "session-1", serving_department_id="dept-x")

        assert second.room_id == first.room_id
        assert second.created_at == first.created_at
        assert second.departments == ["dept-x"]

        durable_store.recover()
        await engine.write_queue.flush_now()
        await engine.notifications.drain()
        assert len(created_jobs(durable_store)) == 1
        assert durable_store.rooms[first.room_id].created_at == first.created_at
        assert notifier.types().count(NotificationType.NEW_CHAT_REQUEST.value) == 1

    @pytest.mark.asyncio
    async def test_replayed_creation_keeps_original_row(self, engine, redis_backend, durable_store, notifier):
        redis_backend.fail()
        durable_store.fail_reads()
        first = await engine.rooms.create_room("v-1", "ws-1", "session-1")
        durable_store.recover()
        await engine.write_queue.flush_now()

        # flushed, and the durable lookup fails again: a second creation job is written
        durable_store.fail_reads()
        await engine.rooms.create_room("v-1", "ws-1", "session-1")
        durable_store.recover()
        await engine.write_queue.flush_now()
        await engine.notifications.drain()

        assert len(created_jobs(durable_store)) == 2
        assert durable_store.rooms[first.room_id].created_at == first.created_at
        assert notifier.types().count(NotificationType.NEW_CHAT_REQUEST.value) == 1

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_create(self, engine, notifier):
        notifier.fail_with = ConnectionResetError("stream down")

        room = await engine.rooms.create_room("v-1", "ws-1", "session-1")

        assert room.room_id == room_id_for_session("ws-1", "session-1")


@pytest.mark.unit
class TestGetRoom:
    @pytest.mark.asyncio
    async def test_snapshot_hit(self, engine, room, redis_backend):
        calls_before = len(redis_backend.calls)

        fetched = await engine.rooms.get_room(room.room_id, "ws-1")

        assert fetched.room_id == room.room_id
        assert redis_backend.calls[calls_before:] == ["get"]

    @pytest.mark.asyncio
    async def test_unknown_room(self, engine):
        with pytest.raises(RoomNotFoundError):
            await engine.rooms.get_room("missing", "ws-1")

    @pytest.mark.asyncio
    async def test_room_scoped_to_workspace(self, engine, room):
        with pytest.raises(RoomNotFoundError):
            await engine.rooms.get_room(room.room_id, "ws-other")

    @pytest.mark.asyncio
    async def test_rebuild_from_durable_repopulates_cache(self, engine, room, redis_backend):
        await engine.write_queue.flush_now()
        redis_backend.flushall()

        fetched = await engine.rooms.get_room(room.room_id, "ws-1")

        assert fetched.participants == ["visitor:v-1"]
        assert fetched.departments == ["dept-x"]
        assert keys.room_data(room.room_id).key in redis_backend.strings
        assert redis_backend.sets[keys.room_participants(room.room_id).key] == {"visitor:v-1"}

    @pytest.mark.asyncio
    async def test_cache_collections_win_over_durable(self, engine, room, durable_store):
        await engine.write_queue.flush_now()
        durable_store.fail_batches()

        await engine.rooms.add_participant(room.room_id, "ws-1", "agent:a-1")
        fetched = await engine.rooms.get_room(room.room_id, "ws-1")

        assert "agent:a-1" in fetched.participants
        assert "agent:a-1" not in durable_store.participants[room.room_id]

    @pytest.mark.asyncio
    async def test_rebuild_from_cache_when_durable_unreachable(self, engine, room, durable_store):
        await engine.rooms.invalidate_room(room.room_id)
        durable_store.fail_reads()

        fetched = await engine.rooms.get_room(room.room_id, "ws-1")

        assert fetched.visitor_id == "v-1"
        assert fetched.participants == ["visitor:v-1"]

    @pytest.mark.asyncio
    async def test_unreadable_snapshot_is_discarded(self, engine, room, redis_backend):
        redis_backend.strings[keys.room_data(room.room_id).key] = "{not json"

        fetched = await engine.rooms.get_room(room.room_id, "ws-1")

        assert fetched.room_id == room.room_id

    @pytest.mark.asyncio
    async def test_reads_durable_when_cache_down(self, engine, room, redis_backend):
        await engine.write_queue.flush_now()
        redis_backend.fail()

        fetched = await engine.rooms.get_room(room.room_id, "ws-1")

        assert fetched.visitor_session_id == "session-1"


@pytest.mark.unit
class TestMutatorsAndIndex:
    @pytest.mark.asyncio
    async def test_mutation_invalidates_snapshot(self, engine, room, redis_backend):
        await engine.rooms.add_department(room.room_id, "ws-1", "dept-y")

        assert keys.room_data(room.room_id).key not in redis_backend.strings
        fetched = await engine.rooms.get_room(room.room_id, "ws-1")
        assert fetched.departments == ["dept-x", "dept-y"]

    @pytest.mark.asyncio
    async def test_set_current_department(self, engine, room):
        await engine.rooms.set_current_department(room.room_id, "ws-1", "dept-y")

        fetched = await engine.rooms.get_room(room.room_id, "ws-1")
        assert fetched.current_department_id == "dept-y"

    @pytest.mark.asyncio
    async def test_get_participants_falls_back_to_durable(self, engine, room, redis_backend):
        await engine.write_queue.flush_now()
        redis_backend.flushall()

        participants = await engine.rooms.get_participants(room.room_id)

        assert participants == {"visitor:v-1"}
        assert redis_backend.sets[keys.room_participants(room.room_id).key] == {"visitor:v-1"}

    @pytest.mark.asyncio
    async def test_most_recently_active_first(self, engine):
        first = await engine.rooms.create_room("v-1", "ws-1", "session-1")
        second = await engine.rooms.create_room("v-2", "ws-1", "session-2")
        assert await engine.rooms.list_workspace_rooms("ws-1") == [second.room_id, first.room_id]

        await engine.messages.create_message(first.room_id, "ws-1", SenderType.VISITOR, "hello?")

        assert await engine.rooms.list_workspace_rooms("ws-1") == [first.room_id, second.room_id]

    @pytest.mark.asyncio
    async def test_workspace_listing_paginates(self, engine):
        for n in range(3):
            await engine.rooms.create_room(f"v-{n}", "ws-1", f"session-{n}")

        page = await engine.rooms.list_workspace_rooms("ws-1", limit=2, offset=1)

        assert len(page) == 2
        assert page[-1] == room_id_for_session("ws-1", "session-0")

    @pytest.mark.asyncio
    async def test_workspace_listing_empty_when_cache_down(self, engine, room, redis_backend):
        redis_backend.fail()

        assert await engine.rooms.list_workspace_rooms("ws-1") == []
