"""Domain models for rooms, messages, participants and handoff requests."""

from chat_engine.domain.models import (
    AgentCapacity,
    Attachment,
    DeliveryReceipt,
    DepartmentInvitation,
    DepartmentTransferRequest,
    InvitationRequest,
    Message,
    ReadReceipt,
    ReadResult,
    Room,
    TransferRequest,
    TypingStatus,
    agent_actor,
    parse_actor,
    utc_now,
    visitor_actor,
)

__all__ = [
    "AgentCapacity",
    "Attachment",
    "DeliveryReceipt",
    "DepartmentInvitation",
    "DepartmentTransferRequest",
    "InvitationRequest",
    "Message",
    "ReadReceipt",
    "ReadResult",
    "Room",
    "TransferRequest",
    "TypingStatus",
    "agent_actor",
    "parse_actor",
    "utc_now",
    "visitor_actor",
]
