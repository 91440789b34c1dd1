"""
Room Key Space

Pure functions deriving namespaced cache keys and their TTLs.

Every key is prefixed by its entity type and scoped by the identifiers it
belongs to, so invalidating one room never touches another room's keys.
"""

from dataclasses import dataclass

from chat_engine.core.config.constants import CacheTTL


@dataclass(frozen=True)
class CacheKey:
    key: str
    ttl: int | None

    def __str__(self) -> str:
        return self.key


# ============================================================================
# Room keys
# ============================================================================

def room_data(room_id: str) -> CacheKey:
    """Serialized room snapshot, deleted on every mutation."""
    return CacheKey(f"room:{room_id}:data", CacheTTL.ROOM_DATA)


def room_meta(room_id: str) -> CacheKey:
    """Hash of the room's immutable identity fields."""
    return CacheKey(f"room:{room_id}:meta", CacheTTL.ROOM_META)


def room_participants(room_id: str) -> CacheKey:
    return CacheKey(f"room:{room_id}:participants", CacheTTL.PARTICIPANTS)


def room_messages(room_id: str) -> CacheKey:
    """Newest-first capped message window."""
    return CacheKey(f"room:{room_id}:messages", CacheTTL.MESSAGES)


def room_departments(room_id: str) -> CacheKey:
    return CacheKey(f"room:{room_id}:departments", CacheTTL.DEPARTMENTS)


def room_current_department(room_id: str) -> CacheKey:
    return CacheKey(f"room:{room_id}:current_department", CacheTTL.CURRENT_DEPARTMENT)


def room_history_page(room_id: str, requester: str, page: int, limit: int) -> CacheKey:
    """One page of durable history as seen by a requester type."""
    return CacheKey(f"room:{room_id}:history:{requester}:{page}:{limit}", CacheTTL.ROOM_HISTORY)


def room_history_pages(room_id: str) -> CacheKey:
    """Set of cached history page keys, dropped when a new message lands."""
    return CacheKey(f"room:{room_id}:history_pages", CacheTTL.ROOM_HISTORY)


def session_room(workspace_id: str, visitor_session_id: str) -> CacheKey:
    """Visitor session -> room id claim (SET NX)."""
    return CacheKey(f"session:{workspace_id}:{visitor_session_id}:room", CacheTTL.SESSION_ROOM)


# ============================================================================
# Cross-room indexes
# ============================================================================

def workspace_rooms(workspace_id: str) -> CacheKey:
    """Sorted set of room ids scored by last-activity epoch."""
    return CacheKey(f"workspace:{workspace_id}:rooms", CacheTTL.WORKSPACE_ROOMS)


def visitor_active_rooms(visitor_id: str, workspace_id: str) -> CacheKey:
    return CacheKey(f"visitor:{visitor_id}:{workspace_id}:active_rooms", CacheTTL.ACTIVE_ROOMS)


# ============================================================================
# Message and ephemeral keys
# ============================================================================

def message_delivery(message_id: str) -> CacheKey:
    return CacheKey(f"message:{message_id}:delivery", CacheTTL.MESSAGE_DELIVERY)


def message_read(message_id: str) -> CacheKey:
    return CacheKey(f"message:{message_id}:read", CacheTTL.MESSAGE_READ)


def message_room(message_id: str) -> CacheKey:
    """Owning room of a message, used to reject cross-room receipts."""
    return CacheKey(f"message:{message_id}:room", CacheTTL.MESSAGE_ROOM)


def room_read_status(room_id: str, reader: str) -> CacheKey:
    return CacheKey(f"room:{room_id}:read:{reader}", CacheTTL.ROOM_READ_STATUS)


def unread_count(room_id: str, reader: str) -> CacheKey:
    return CacheKey(f"room:{room_id}:unread_count:{reader}", CacheTTL.UNREAD_COUNT)


def typing(room_id: str, participant: str) -> CacheKey:
    return CacheKey(f"typing:{room_id}:{participant}", CacheTTL.TYPING)


def ai_active(workspace_id: str, room_id: str) -> CacheKey:
    return CacheKey(f"ai:active:{workspace_id}:{room_id}", CacheTTL.AI_ACTIVE)


def room_keys(room_id: str) -> list[CacheKey]:
    """Every per-room collection key (snapshot excluded)."""
    return [
        room_meta(room_id),
        room_participants(room_id),
        room_messages(room_id),
        room_departments(room_id),
        room_current_department(room_id),
    ]
