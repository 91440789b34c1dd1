"""
Not Found Exceptions

Author: System Architect
Date: 2025-12-08
"""

from chat_engine.core.exceptions.base import ChatEngineError


class NotFoundError(ChatEngineError):
    """Raised when a lookup required by a precondition finds nothing."""
    pass


class RoomNotFoundError(NotFoundError):
    """Raised when a room does not exist in the requested workspace."""
    pass


class AgentNotFoundError(NotFoundError):
    """Raised when no capacity record exists for an agent."""
    pass
