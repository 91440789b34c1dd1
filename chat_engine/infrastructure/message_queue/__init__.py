"""Notification dispatch over Redis Streams."""

from chat_engine.infrastructure.message_queue.redis_stream_notifier import (
    NotificationSerializer,
    RedisStreamNotifier,
)

__all__ = ["NotificationSerializer", "RedisStreamNotifier"]
