"""
Participant & Capacity Manager

Tracks which agents are active in a room and enforces per-agent capacity.

``add_agent`` is the entry point for the room's *primary* agent and refuses
to admit a second concurrent agent; secondary agents join through the
invitation and transfer workflows in ``handoff_workflows``.
"""

import asyncio
from datetime import datetime
from typing import Any

from chat_engine.application.services.base import EngineService
from chat_engine.application.services.room_store import RoomStore
from chat_engine.core.config.constants import (
    AgentOnlineStatus,
    ChatWindowStatus,
    JobPriority,
    JobType,
    ParticipantReason,
)
from chat_engine.core.exceptions import (
    AgentAlreadyActiveError,
    AgentCapacityExceededError,
    AgentNotFoundError,
    AgentNotParticipantError,
    AgentOfflineError,
    AnotherAgentActiveError,
    DurablePersistenceError,
    DurableTimeoutError,
)
from chat_engine.core.logging.logger import get_logger
from chat_engine.domain.models import AgentCapacity, agent_actor, agent_ids

logger = get_logger(__name__)


def participant_update(action: str, actor: str, reason: ParticipantReason) -> dict[str, str]:
    """Explicit participant add/remove instruction for the durable writer."""
    return {"action": action, "actor": actor, "reason": reason.value}


def session_history_entry(agent_id: str, action: str, reason: ParticipantReason, at: datetime) -> dict[str, str]:
    return {"agent_id": agent_id, "action": action, "reason": reason.value, "at": at.isoformat()}


class CapacityGuard(EngineService):
    """
    Reads the durable capacity record and rejects unavailable agents.

    Rejection order: missing record, OFFLINE, then currentChats >= maxConcurrentChats.
    """

    async def ensure_available(self, agent_id: str, room_id: str | None = None) -> AgentCapacity:
        """
        Raises:
            AgentNotFoundError: No capacity record for the agent
            AgentOfflineError: Agent is OFFLINE
            AgentCapacityExceededError: Agent is at or above maxConcurrentChats
        """
        capacity = await self._durable_read(self._store.find_agent_capacity(agent_id), "find_agent_capacity")
        if capacity is None:
            raise AgentNotFoundError("Agent not found", room_id=room_id, details={"agent_id": agent_id})

        if capacity.online_status is AgentOnlineStatus.OFFLINE:
            raise AgentOfflineError("Agent is offline", room_id=room_id, details={"agent_id": agent_id})

        if not capacity.has_free_slot:
            raise AgentCapacityExceededError(
                "Agent has reached maximum concurrent chats",
                room_id=room_id,
                details={
                    "agent_id": agent_id,
                    "current_chats": capacity.current_chats,
                    "max_concurrent_chats": capacity.max_concurrent_chats,
                },
            )
        return capacity


class ParticipantManager(EngineService):
    def __init__(self, *args, rooms: RoomStore, capacity: CapacityGuard, **kwargs):
        super().__init__(*args, **kwargs)
        self._rooms = rooms
        self._capacity = capacity

    async def add_agent(self, room_id: str, workspace_id: str, agent_id: str) -> None:
        """
        Admit the room's primary agent.

        STAGE-PM.1: Agent join

        Raises:
            AgentAlreadyActiveError: The agent is already active in the room
            AnotherAgentActiveError: A different agent is active in the room
            AgentNotFoundError / AgentOfflineError / AgentCapacityExceededError
        """
        participants = await self._rooms.get_participants(room_id)
        active_agents = agent_ids(participants)

        if agent_id in active_agents:
            raise AgentAlreadyActiveError(
                "Agent is already active in this room", room_id=room_id, details={"agent_id": agent_id}
            )
        if active_agents:
            raise AnotherAgentActiveError(
                "Another agent is already active in this room",
                room_id=room_id,
                details={"agent_id": agent_id, "active_agent_ids": active_agents},
            )
        await self._capacity.ensure_available(agent_id, room_id=room_id)

        actor = agent_actor(agent_id)
        await self._rooms.add_participant(room_id, workspace_id, actor)
        now = self._clock()
        self._enqueue(
            JobType.AGENT_JOINED,
            {
                "room_id": room_id,
                "workspace_id": workspace_id,
                "agent_id": agent_id,
                "participant_updates": [participant_update("add", actor, ParticipantReason.JOINED)],
                "session_history": [session_history_entry(agent_id, "joined", ParticipantReason.JOINED, now)],
            },
            idempotency_key=f"agent_joined:{room_id}:{agent_id}:{now.timestamp()}",
            priority=JobPriority.HIGH,
        )
        logger.info("Agent joined room", stage="PM.1", room_id=room_id, agent_id=agent_id)

    async def remove_agent(self, room_id: str, workspace_id: str, agent_id: str) -> None:
        """
        STAGE-PM.2: Agent leave

        Raises:
            AgentNotParticipantError: The agent is not active in the room
        """
        actor = agent_actor(agent_id)
        participants = await self._rooms.get_participants(room_id)
        if actor not in participants:
            raise AgentNotParticipantError(
                "Agent is not an active participant of this room",
                room_id=room_id,
                details={"agent_id": agent_id},
            )

        # Capacity is decremented durably; the record is read for the audit log only.
        capacity = None
        try:
            capacity = await self._durable_read(self._store.find_agent_capacity(agent_id), "find_agent_capacity")
        except DurablePersistenceError as e:
            logger.warning("Agent capacity unavailable on leave", stage="PM.2", agent_id=agent_id, error=str(e))

        await self._rooms.remove_participant(room_id, workspace_id, actor)
        now = self._clock()
        self._enqueue(
            JobType.AGENT_LEFT,
            {
                "room_id": room_id,
                "workspace_id": workspace_id,
                "agent_id": agent_id,
                "participant_updates": [participant_update("remove", actor, ParticipantReason.LEFT)],
                "session_history": [session_history_entry(agent_id, "left", ParticipantReason.LEFT, now)],
            },
            idempotency_key=f"agent_left:{room_id}:{agent_id}:{now.timestamp()}",
            priority=JobPriority.HIGH,
        )
        logger.info(
            "Agent left room",
            stage="PM.2",
            room_id=room_id,
            agent_id=agent_id,
            current_chats=capacity.current_chats if capacity else None,
            max_concurrent_chats=capacity.max_concurrent_chats if capacity else None,
        )

    async def update_chat_window_status(
        self,
        agent_id: str,
        room_id: str,
        status: ChatWindowStatus,
        room_in_focus: str | None = None,
    ) -> dict[str, Any]:
        """
        Transactionally update an agent's chat windows.

        OPEN demotes the agent's other OPEN rooms to IN_BACKGROUND; CLOSED or
        MINIMIZED with ``room_in_focus`` promotes that room to OPEN. Every
        affected room's snapshot is invalidated after commit.

        STAGE-PM.3: Chat window status
        """
        try:
            async with asyncio.timeout(self._durable_timeout):
                async with self._store.transaction() as tx:
                    await tx.set_chat_window_status([room_id], status)
                    if status is ChatWindowStatus.OPEN:
                        affected = await tx.find_open_rooms_for_agent(agent_id, room_id)
                        if affected:
                            await tx.set_chat_window_status(affected, ChatWindowStatus.IN_BACKGROUND)
                    elif status in (ChatWindowStatus.CLOSED, ChatWindowStatus.MINIMIZED) and room_in_focus:
                        affected = [room_in_focus]
                        await tx.set_chat_window_status(affected, ChatWindowStatus.OPEN)
                    else:
                        affected = []
        except TimeoutError as e:
            raise DurableTimeoutError(
                "Chat window status transaction timed out",
                room_id=room_id,
                details={"agent_id": agent_id, "timeout": self._durable_timeout},
            ) from e

        await self._rooms.invalidate_room(room_id)
        for other_id in affected:
            await self._rooms.invalidate_room(other_id)

        logger.info(
            "Chat window status updated",
            stage="PM.3",
            room_id=room_id,
            agent_id=agent_id,
            status=status.value,
            affected_room_ids=affected,
        )
        return {"room_id": room_id, "status": status, "affected_room_ids": list(affected)}
