"""
Engine services. Each one owns a slice of room state and talks to the cache
through the resilient facade and to durable storage through the write queue.
"""

from chat_engine.application.services.ai_relay import AIRelay
from chat_engine.application.services.ephemeral_state import EphemeralStateTracker
from chat_engine.application.services.handoff_workflows import HandoffWorkflows
from chat_engine.application.services.message_pipeline import MessagePage, MessagePipeline
from chat_engine.application.services.notification_outbox import NotificationOutbox
from chat_engine.application.services.participant_manager import CapacityGuard, ParticipantManager
from chat_engine.application.services.room_store import RoomStore, room_id_for_session

__all__ = [
    "AIRelay",
    "CapacityGuard",
    "EphemeralStateTracker",
    "HandoffWorkflows",
    "MessagePage",
    "MessagePipeline",
    "NotificationOutbox",
    "ParticipantManager",
    "RoomStore",
    "room_id_for_session",
]
