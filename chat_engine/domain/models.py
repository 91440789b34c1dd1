"""
Domain Models

Pydantic models for rooms, messages, participants, capacity records,
ephemeral receipts and handoff requests.

Actor ids are plain strings of the form ``visitor:<id>`` or ``agent:<id>`` so
participant sets can live in Redis sets unchanged.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, model_validator

from chat_engine.core.config.constants import (
    VISITOR_VISIBLE_SENDERS,
    ActorKind,
    AgentOnlineStatus,
    ChatWindowStatus,
    MessageType,
    RequesterType,
    SenderType,
    SessionStatus,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Actor ids
# ============================================================================

def visitor_actor(visitor_id: str) -> str:
    return f"{ActorKind.VISITOR.value}:{visitor_id}"


def agent_actor(agent_id: str) -> str:
    return f"{ActorKind.AGENT.value}:{agent_id}"


def parse_actor(actor: str) -> tuple[ActorKind, str]:
    """
    Split an actor id into its kind and raw id.

    Raises:
        ValueError: If the prefix is not a known actor kind
    """
    kind, sep, raw_id = actor.partition(":")
    if not sep or not raw_id:
        raise ValueError(f"Malformed actor id: {actor!r}")
    return ActorKind(kind), raw_id


def agent_ids(actors: set[str] | list[str]) -> list[str]:
    """Raw agent ids contained in a participant set, sorted for stable output."""
    found = []
    for actor in actors:
        kind, raw_id = parse_actor(actor)
        if kind is ActorKind.AGENT:
            found.append(raw_id)
    return sorted(found)


# ============================================================================
# Messages
# ============================================================================

class Attachment(BaseModel):
    """File attachment descriptor returned by the storage adapter."""
    model_config = {"frozen": True}

    url: str = Field(..., min_length=1, description="Public URL of the stored object")
    filename: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1)
    size: int = Field(..., ge=0, description="Size in bytes")
    storage_key: str | None = Field(default=None, description="Opaque storage adapter key")
    preview_url: str | None = None
    width: int | None = Field(default=None, ge=0)
    height: int | None = Field(default=None, ge=0)


class Message(BaseModel):
    """
    A chat message.

    Immutable once created; delivery and read state are tracked separately
    by the ephemeral state tracker.
    """
    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    room_id: str
    sender_type: SenderType
    sender_id: str | None = Field(default=None, description="Visitor or agent id of the author")
    message_type: MessageType = MessageType.TEXT
    content: str | None = None
    attachment: Attachment | None = None
    is_internal: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_payload(self):
        """Text messages carry content, file messages carry an attachment."""
        if self.message_type is MessageType.TEXT:
            if not self.content or not self.content.strip():
                raise ValueError("text message requires non-empty content")
        elif self.message_type is MessageType.FILE:
            if self.attachment is None:
                raise ValueError("file message requires an attachment")
        else:
            raise ValueError(f"unsupported message type: {self.message_type}")
        return self

    @property
    def is_agent_reply(self) -> bool:
        """Non-internal agent messages count towards response-time analytics."""
        return self.sender_type is SenderType.AGENT and not self.is_internal

    def sender_display_name(self, visitor_name: str | None = None, agent_name: str | None = None) -> str:
        sender = self.sender_type
        if sender is SenderType.VISITOR:
            return visitor_name or "Visitor"
        elif sender is SenderType.AGENT:
            return agent_name or "Agent"
        elif sender is SenderType.VISITOR_SYSTEM or sender is SenderType.AGENT_SYSTEM:
            return "System"
        elif sender is SenderType.TRIGGERED_MESSAGE:
            return agent_name or "Automated Message"
        raise ValueError(f"unknown sender type: {sender}")

    def visible_to(self, requester: RequesterType) -> bool:
        if requester is RequesterType.AGENT:
            return True
        elif requester is RequesterType.VISITOR:
            return self.sender_type in VISITOR_VISIBLE_SENDERS and not self.is_internal
        raise ValueError(f"unknown requester type: {requester}")

    def durable_record(self) -> dict[str, Any]:
        """
        Row shape for the durable messages table.

        Text and file messages map to different column sets.
        """
        record: dict[str, Any] = {
            "id": self.id,
            "room_id": self.room_id,
            "sender_type": self.sender_type.value,
            "sender_id": self.sender_id,
            "message_type": self.message_type.value,
            "is_internal": self.is_internal,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }
        if self.message_type is MessageType.TEXT:
            record["content"] = self.content
        elif self.message_type is MessageType.FILE:
            record["content"] = self.content or self.attachment.filename
            record["attachment"] = self.attachment.model_dump(mode="json")
        else:
            raise ValueError(f"unsupported message type: {self.message_type}")
        return record


# ============================================================================
# Rooms
# ============================================================================

class Room(BaseModel):
    """
    Room projection as served to readers.

    The cached snapshot (``room:{id}:data``) is this model serialized as JSON.
    """

    room_id: str
    workspace_id: str
    visitor_id: str
    visitor_session_id: str
    session_status: SessionStatus = SessionStatus.ACTIVE
    current_department_id: str | None = None
    departments: list[str] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list, description="Active actor ids")
    messages: list[Message] = Field(default_factory=list, description="Recent window, newest first")
    chat_window_status: ChatWindowStatus | None = None
    analytics: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_activity_at: datetime = Field(default_factory=utc_now)

    @property
    def active_agent_ids(self) -> list[str]:
        return agent_ids(self.participants)

    def durable_record(self) -> dict[str, Any]:
        """Row shape for the durable rooms table (collections are written by their own jobs)."""
        return self.model_dump(
            mode="json", exclude={"participants", "messages", "analytics", "tags", "departments"}
        )


class AgentCapacity(BaseModel):
    """Per-agent capacity record, authoritative in durable storage."""
    model_config = {"frozen": True}

    agent_id: str
    current_chats: int = Field(default=0, ge=0)
    max_concurrent_chats: int = Field(default=5, ge=0)
    online_status: AgentOnlineStatus = AgentOnlineStatus.ONLINE

    @property
    def has_free_slot(self) -> bool:
        return self.current_chats < self.max_concurrent_chats


# ============================================================================
# Ephemeral state
# ============================================================================

class TypingStatus(BaseModel):
    model_config = {"frozen": True}

    room_id: str
    participant: str
    is_typing: bool
    updated_at: datetime = Field(default_factory=utc_now)


class Receipt(BaseModel):
    """Actors that acknowledged a message, with the time of each acknowledgement."""
    model_config = {"frozen": True}

    message_id: str
    room_id: str | None = None
    acknowledged_by: dict[str, datetime] = Field(default_factory=dict)

    def has_acknowledged(self, actor: str) -> bool:
        return actor in self.acknowledged_by


class DeliveryReceipt(Receipt):
    pass


class ReadReceipt(Receipt):
    pass


class ReadResult(BaseModel):
    model_config = {"frozen": True}

    room_id: str
    reader: str
    marked_count: int
    message_ids: list[str] = Field(default_factory=list)


# ============================================================================
# Handoff requests
# ============================================================================

class TransferRequest(BaseModel):
    """Agent-to-agent transfer of a room."""
    model_config = {"frozen": True}

    room_id: str
    workspace_id: str
    from_agent_id: str | None = Field(default=None, description="Primary agent handing the room over")
    to_agent_id: str
    reason: str | None = None
    requested_at: datetime = Field(default_factory=utc_now)


class InvitationRequest(BaseModel):
    """Invitation of a secondary agent into a room."""
    model_config = {"frozen": True}

    room_id: str
    workspace_id: str
    inviter_agent_id: str | None = None
    invitee_agent_id: str
    reason: str | None = None
    requested_at: datetime = Field(default_factory=utc_now)


class DepartmentTransferRequest(BaseModel):
    model_config = {"frozen": True}

    room_id: str
    workspace_id: str
    from_department_id: str
    to_department_id: str
    requested_by: str | None = Field(default=None, description="Agent id that issued the request")
    reason: str | None = None
    requested_at: datetime = Field(default_factory=utc_now)


class DepartmentInvitation(BaseModel):
    model_config = {"frozen": True}

    room_id: str
    workspace_id: str
    department_id: str
    invited_by: str | None = None
    reason: str | None = None
    requested_at: datetime = Field(default_factory=utc_now)
