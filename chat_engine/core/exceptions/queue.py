"""
Write Queue Exceptions

Author: System Architect
Date: 2025-12-08
"""

from chat_engine.core.exceptions.base import ChatEngineError


class QueueError(ChatEngineError):
    """Base exception for write queue errors."""
    pass


class WriteQueueClosedError(QueueError):
    """Raised when a job is enqueued after the queue worker was stopped."""
    pass
