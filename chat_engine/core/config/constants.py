#!/usr/bin/env python3
"""
System Constants and Enumerations

System-wide constants and enumerations for the chat-room engine.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers and cache TTLs
- Type-safe enums for sender, window and session states

Author: System Architect
Date: 2025-12-05
"""

from enum import Enum, IntEnum

# ============================================================================
# Circuit Breaker States
# ============================================================================

class CircuitState(str, Enum):
    """
    Circuit breaker states.

    CLOSED: Normal operation, cache calls allowed
    OPEN: Failing fast, cache calls skipped
    HALF_OPEN: Cooldown elapsed, one probe call allowed
    """
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# ============================================================================
# Room and Message Enumerations
# ============================================================================

class SenderType(str, Enum):
    """Who authored a message."""
    VISITOR = "visitor"
    AGENT = "agent"
    VISITOR_SYSTEM = "visitor-system"
    AGENT_SYSTEM = "agent-system"
    TRIGGERED_MESSAGE = "triggered-message"


class MessageType(str, Enum):
    """Message payload kind."""
    TEXT = "text"
    FILE = "file"


class RequesterType(str, Enum):
    """Who is reading a room's messages."""
    VISITOR = "visitor"
    AGENT = "agent"


class ChatWindowStatus(str, Enum):
    """
    State of a room's chat window in an agent's console.

    At most one room per agent is OPEN at a time.
    """
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MINIMIZED = "MINIMIZED"
    IN_BACKGROUND = "IN_BACKGROUND"


class AgentOnlineStatus(str, Enum):
    """Agent presence as recorded in durable storage."""
    ONLINE = "ONLINE"
    AWAY = "AWAY"
    BUSY = "BUSY"
    OFFLINE = "OFFLINE"


class SessionStatus(str, Enum):
    """Visitor session status."""
    ACTIVE = "ACTIVE"
    AWAY = "AWAY"
    CLOSED = "CLOSED"


class ActorKind(str, Enum):
    """Prefix of a participant actor id (``visitor:<id>`` / ``agent:<id>``)."""
    VISITOR = "visitor"
    AGENT = "agent"


class ParticipantReason(str, Enum):
    """Reason codes attached to participant add/remove instructions."""
    JOINED = "joined"
    LEFT = "left"
    TRANSFERRED_IN = "transferred_in"
    TRANSFERRED_OUT = "transferred_out"
    INVITATION_ACCEPTED = "invitation_accepted"
    DEPARTMENT_INVITATION_ACCEPTED = "department_invitation_accepted"


# ============================================================================
# Durable Write Jobs
# ============================================================================

class JobType(str, Enum):
    """
    Durable write and audit job types.

    Every job is applied by the durable store as an upsert keyed by the job's
    idempotency key.
    """
    ROOM_CREATED = "room_created"
    SESSION_MARKED_AWAY = "session_marked_away"
    MESSAGE_CREATED = "message_created"
    MESSAGE_SENT = "message_sent"
    FIRST_RESPONSE_TIME = "calculate_first_response_time"
    AVERAGE_RESPONSE_TIME = "calculate_average_response_time"
    AGENT_JOINED = "agent_joined"
    AGENT_LEFT = "agent_left"
    TYPING_EVENT = "typing_event"
    MESSAGE_DELIVERED = "message_delivered"
    MESSAGE_READ = "message_read"
    CHAT_TRANSFER_ACCEPTED = "chat_transfer_accepted"
    CHAT_INVITATION_ACCEPTED = "chat_invitation_accepted"
    DEPARTMENT_TRANSFER = "department_transfer"
    DEPARTMENT_TRANSFER_ACCEPTED = "department_transfer_accepted"
    DEPARTMENT_TRANSFER_CANCELLED = "department_transfer_cancelled"
    DEPARTMENT_INVITATION = "department_invitation"
    DEPARTMENT_INVITATION_ACCEPTED = "department_invitation_accepted"
    DEPARTMENT_INVITATION_REJECTED = "department_invitation_rejected"


class JobPriority(IntEnum):
    """Lower value flushes first within a batch."""
    CRITICAL = 1
    HIGH = 2
    NORMAL = 3
    LOW = 4


class NotificationType(str, Enum):
    """Events pushed to the notification dispatcher."""
    NEW_CHAT_REQUEST = "new_chat_request"
    CHAT_TRANSFER_ACCEPTED = "chat_transfer_accepted"
    CHAT_INVITATION_ACCEPTED = "chat_invitation_accepted"
    DEPARTMENT_TRANSFER_REQUESTED = "department_transfer_requested"
    DEPARTMENT_TRANSFER_ACCEPTED = "department_transfer_accepted"
    DEPARTMENT_TRANSFER_CANCELLED = "department_transfer_cancelled"
    DEPARTMENT_INVITATION = "department_invitation"
    DEPARTMENT_INVITATION_ACCEPTED = "department_invitation_accepted"
    DEPARTMENT_INVITATION_REJECTED = "department_invitation_rejected"


# ============================================================================
# Cache TTLs (seconds)
# ============================================================================

class CacheTTL(IntEnum):
    """
    Cache TTLs by data volatility.

    Room snapshots and participant sets live for hours, paginated and
    cross-room views for minutes, typing state for a few minutes at most.
    """
    ROOM_DATA = 86400
    PARTICIPANTS = 86400
    MESSAGES = 86400
    DEPARTMENTS = 86400
    CURRENT_DEPARTMENT = 86400
    ROOM_META = 86400
    SESSION_ROOM = 86400
    WORKSPACE_ROOMS = 86400
    ROOM_HISTORY = 300
    ACTIVE_ROOMS = 1800
    MESSAGE_DELIVERY = 86400
    MESSAGE_READ = 86400
    MESSAGE_ROOM = 3600
    ROOM_READ_STATUS = 86400
    UNREAD_COUNT = 60
    TYPING = 300
    AI_ACTIVE = 86400


NOTIFICATION_QUEUE = "chat_notification"
DEFAULT_MESSAGE_PAGE_SIZE = 50
VISITOR_VISIBLE_SENDERS = frozenset(
    {
        SenderType.VISITOR,
        SenderType.AGENT,
        SenderType.AGENT_SYSTEM,
        SenderType.TRIGGERED_MESSAGE,
    }
)
