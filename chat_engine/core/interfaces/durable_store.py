"""
Durable Store Protocol

The relational source of truth. Its schema and query engine are external;
the engine only needs the reads below plus batched upserts.

Author: System Architect
Date: 2025-12-08
"""

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from chat_engine.core.config.constants import ChatWindowStatus, SenderType
from chat_engine.domain.models import AgentCapacity, Message, Room

if TYPE_CHECKING:
    from chat_engine.infrastructure.persistence.write_queue import WriteJob


@runtime_checkable
class DurableTransaction(Protocol):
    """Operations available inside an all-or-nothing durable transaction."""

    async def set_chat_window_status(self, room_ids: Sequence[str], status: ChatWindowStatus) -> None:
        ...

    async def find_open_rooms_for_agent(self, agent_id: str, exclude_room_id: str) -> list[str]:
        """Rooms other than ``exclude_room_id`` where the agent participates and the window is OPEN."""
        ...


@runtime_checkable
class DurableStore(Protocol):
    """
    Protocol for the durable store.

    Implementations must apply write jobs as upserts keyed by
    ``WriteJob.idempotency_key`` so a retried batch never duplicates state.
    """

    async def find_room(self, room_id: str) -> Room | None:
        """Full projection: participants, recent messages, analytics, tags."""
        ...

    async def find_room_by_session(self, workspace_id: str, visitor_session_id: str) -> Room | None:
        ...

    async def find_visitor_active_rooms(self, workspace_id: str, visitor_id: str) -> list[str]:
        """Rooms of this visitor whose session is ACTIVE."""
        ...

    async def find_active_participants(self, room_id: str) -> list[str]:
        """Actor ids (``visitor:<id>`` / ``agent:<id>``) currently active in the room."""
        ...

    async def find_agent_capacity(self, agent_id: str) -> AgentCapacity | None:
        ...

    async def find_messages(
        self,
        room_id: str,
        offset: int,
        limit: int,
        sender_types: frozenset[SenderType] | None = None,
        include_internal: bool = True,
    ) -> list[Message]:
        """Messages newest first, without the cache window cap."""
        ...

    async def apply_batch(self, jobs: "Sequence[WriteJob]") -> None:
        """Apply every job in one transaction; raise on failure so nothing is applied."""
        ...

    def transaction(self) -> AbstractAsyncContextManager[DurableTransaction]:
        ...
