"""
Unit Tests for ParticipantManager and CapacityGuard

Tests the primary-agent join rules, capacity rejection order, agent leave
and the one-OPEN-window-per-agent transaction.
"""

import asyncio
from contextlib import asynccontextmanager

import pytest

from chat_engine.core.config.constants import AgentOnlineStatus, ChatWindowStatus, JobType
from chat_engine.core.exceptions import (
    AgentAlreadyActiveError,
    AgentCapacityExceededError,
    AgentNotFoundError,
    AgentNotParticipantError,
    AgentOfflineError,
    AnotherAgentActiveError,
    DurablePersistenceError,
    DurableTimeoutError,
    ValidationError,
)
from chat_engine.infrastructure.cache import key_space as keys


@pytest.mark.unit
class TestCapacityGuard:
    @pytest.mark.asyncio
    async def test_available_agent(self, engine, durable_store):
        durable_store.add_capacity("a-9", current_chats=2, max_concurrent_chats=3)

        capacity = await engine.capacity.ensure_available("a-9")

        assert capacity.current_chats == 2

    @pytest.mark.asyncio
    async def test_unknown_agent(self, engine):
        with pytest.raises(AgentNotFoundError):
            await engine.capacity.ensure_available("ghost")

    @pytest.mark.asyncio
    async def test_offline_checked_before_capacity(self, engine, durable_store):
        durable_store.add_capacity(
            "a-9", current_chats=5, max_concurrent_chats=5, online_status=AgentOnlineStatus.OFFLINE
        )

        with pytest.raises(AgentOfflineError):
            await engine.capacity.ensure_available("a-9")

    @pytest.mark.asyncio
    async def test_at_capacity(self, engine, durable_store):
        durable_store.add_capacity("a-9", current_chats=5, max_concurrent_chats=5)

        with pytest.raises(AgentCapacityExceededError) as exc_info:
            await engine.capacity.ensure_available("a-9", room_id="r-1")

        assert exc_info.value.details["current_chats"] == 5
        assert exc_info.value.details["max_concurrent_chats"] == 5
        assert exc_info.value.room_id == "r-1"

    @pytest.mark.asyncio
    async def test_busy_agent_with_free_slot_allowed(self, engine, durable_store):
        durable_store.add_capacity("a-9", online_status=AgentOnlineStatus.BUSY)

        capacity = await engine.capacity.ensure_available("a-9")

        assert capacity.online_status is AgentOnlineStatus.BUSY


@pytest.mark.unit
class TestAddAgent:
    @pytest.mark.asyncio
    async def test_join_empty_room(self, engine, room, durable_store):
        await engine.participants.add_agent(room.room_id, "ws-1", "a-1")
        await engine.write_queue.flush_now()

        fetched = await engine.rooms.get_room(room.room_id, "ws-1")
        assert fetched.active_agent_ids == ["a-1"]
        [job] = durable_store.jobs_of(JobType.AGENT_JOINED)
        assert job.payload["participant_updates"] == [
            {"action": "add", "actor": "agent:a-1", "reason": "joined"}
        ]
        assert job.payload["session_history"][0]["action"] == "joined"
        assert "agent:a-1" in durable_store.participants[room.room_id]

    @pytest.mark.asyncio
    async def test_same_agent_rejected(self, engine, room):
        await engine.participants.add_agent(room.room_id, "ws-1", "a-1")

        with pytest.raises(AgentAlreadyActiveError):
            await engine.participants.add_agent(room.room_id, "ws-1", "a-1")

    @pytest.mark.asyncio
    async def test_different_agent_rejected(self, engine, room):
        await engine.participants.add_agent(room.room_id, "ws-1", "a-1")

        with pytest.raises(AnotherAgentActiveError) as exc_info:
            await engine.participants.add_agent(room.room_id, "ws-1", "a-2")

        assert exc_info.value.details["active_agent_ids"] == ["a-1"]

    @pytest.mark.asyncio
    async def test_rejections_are_distinct_validation_errors(self, engine, room):
        await engine.participants.add_agent(room.room_id, "ws-1", "a-1")
        errors = []
        for agent_id in ("a-1", "a-2"):
            with pytest.raises(ValidationError) as exc_info:
                await engine.participants.add_agent(room.room_id, "ws-1", agent_id)
            errors.append(type(exc_info.value))

        assert errors[0] is not errors[1]

    @pytest.mark.asyncio
    async def test_capacity_rejection_leaves_room_unchanged(self, engine, room, durable_store, redis_backend):
        durable_store.add_capacity("a-3", current_chats=5, max_concurrent_chats=5)

        with pytest.raises(AgentCapacityExceededError):
            await engine.participants.add_agent(room.room_id, "ws-1", "a-3")

        assert redis_backend.sets[keys.room_participants(room.room_id).key] == {"visitor:v-1"}

    @pytest.mark.asyncio
    async def test_join_invalidates_snapshot(self, engine, room, redis_backend):
        await engine.participants.add_agent(room.room_id, "ws-1", "a-1")

        assert keys.room_data(room.room_id).key not in redis_backend.strings


@pytest.mark.unit
class TestRemoveAgent:
    @pytest.mark.asyncio
    async def test_leave(self, engine, room, durable_store):
        await engine.participants.add_agent(room.room_id, "ws-1", "a-1")

        await engine.participants.remove_agent(room.room_id, "ws-1", "a-1")
        await engine.write_queue.flush_now()

        fetched = await engine.rooms.get_room(room.room_id, "ws-1")
        assert fetched.active_agent_ids == []
        [job] = durable_store.jobs_of(JobType.AGENT_LEFT)
        assert job.payload["participant_updates"][0]["action"] == "remove"
        assert "agent:a-1" not in durable_store.participants[room.room_id]

    @pytest.mark.asyncio
    async def test_non_participant_rejected(self, engine, room):
        with pytest.raises(AgentNotParticipantError):
            await engine.participants.remove_agent(room.room_id, "ws-1", "a-1")

    @pytest.mark.asyncio
    async def test_leave_when_capacity_unreadable(self, engine, room, durable_store):
        await engine.participants.add_agent(room.room_id, "ws-1", "a-1")
        durable_store.fail_reads()

        await engine.participants.remove_agent(room.room_id, "ws-1", "a-1")

        assert "agent:a-1" not in await engine.rooms.get_participants(room.room_id)


@pytest.mark.unit
class TestChatWindowStatus:
    @pytest.mark.asyncio
    async def test_open_demotes_other_open_rooms(self, engine, durable_store):
        durable_store.set_window("room-a", "a-1", ChatWindowStatus.CLOSED)
        durable_store.set_window("room-b", "a-1", ChatWindowStatus.OPEN)
        durable_store.set_window("room-c", "a-2", ChatWindowStatus.OPEN)

        result = await engine.participants.update_chat_window_status("a-1", "room-a", ChatWindowStatus.OPEN)

        assert durable_store.window_status("room-a") is ChatWindowStatus.OPEN
        assert durable_store.window_status("room-b") is ChatWindowStatus.IN_BACKGROUND
        assert durable_store.window_status("room-c") is ChatWindowStatus.OPEN
        assert result["affected_room_ids"] == ["room-b"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [ChatWindowStatus.CLOSED, ChatWindowStatus.MINIMIZED])
    async def test_close_promotes_room_in_focus(self, engine, durable_store, status):
        durable_store.set_window("room-a", "a-1", ChatWindowStatus.OPEN)
        durable_store.set_window("room-b", "a-1", ChatWindowStatus.IN_BACKGROUND)

        await engine.participants.update_chat_window_status("a-1", "room-a", status, room_in_focus="room-b")

        assert durable_store.window_status("room-a") is status
        assert durable_store.window_status("room-b") is ChatWindowStatus.OPEN

    @pytest.mark.asyncio
    async def test_close_without_focus_touches_only_room(self, engine, durable_store):
        durable_store.set_window("room-a", "a-1", ChatWindowStatus.OPEN)
        durable_store.set_window("room-b", "a-1", ChatWindowStatus.IN_BACKGROUND)

        result = await engine.participants.update_chat_window_status("a-1", "room-a", ChatWindowStatus.CLOSED)

        assert result["affected_room_ids"] == []
        assert durable_store.window_status("room-b") is ChatWindowStatus.IN_BACKGROUND

    @pytest.mark.asyncio
    async def test_failed_commit_is_all_or_nothing(self, engine, durable_store):
        durable_store.set_window("room-a", "a-1", ChatWindowStatus.CLOSED)
        durable_store.set_window("room-b", "a-1", ChatWindowStatus.OPEN)
        durable_store.fail_transaction_after_writes = True

        with pytest.raises(DurablePersistenceError):
            await engine.participants.update_chat_window_status("a-1", "room-a", ChatWindowStatus.OPEN)

        assert durable_store.window_status("room-a") is ChatWindowStatus.CLOSED
        assert durable_store.window_status("room-b") is ChatWindowStatus.OPEN

    @pytest.mark.asyncio
    async def test_affected_rooms_invalidated(self, engine, durable_store, redis_backend):
        first = await engine.rooms.create_room("v-1", "ws-1", "session-1")
        second = await engine.rooms.create_room("v-2", "ws-1", "session-2")
        durable_store.set_window(first.room_id, "a-1", ChatWindowStatus.OPEN)

        await engine.participants.update_chat_window_status("a-1", second.room_id, ChatWindowStatus.OPEN)

        assert keys.room_data(first.room_id).key not in redis_backend.strings
        assert keys.room_data(second.room_id).key not in redis_backend.strings

    @pytest.mark.asyncio
    async def test_transaction_timeout(self, engine, durable_store, monkeypatch):
        original = durable_store.transaction

        @asynccontextmanager
        async def slow_transaction():
            await asyncio.sleep(5)
            async with original() as tx:
                yield tx

        monkeypatch.setattr(durable_store, "transaction", slow_transaction)

        with pytest.raises(DurableTimeoutError):
            await engine.participants.update_chat_window_status("a-1", "room-a", ChatWindowStatus.OPEN)
