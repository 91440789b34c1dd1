"""
Validation Exceptions

Caller-visible rejections. They are raised before any cache or durable
mutation takes place and are never retried.

Author: System Architect
Date: 2025-12-08
"""

from chat_engine.core.exceptions.base import ChatEngineError


class ValidationError(ChatEngineError):
    """
    Raised when a request is rejected by a precondition check.

    This is the base class for all validation-related errors.
    """
    pass


class AgentAlreadyActiveError(ValidationError):
    """Raised when the agent is already an active participant of the room."""
    pass


class AnotherAgentActiveError(ValidationError):
    """Raised when a different agent is already active in the room."""
    pass


class AgentNotParticipantError(ValidationError):
    """Raised when removing an agent that is not an active participant."""
    pass


class ParticipantNotInRoomError(ValidationError):
    """Raised when an ephemeral update names an actor outside the room."""
    pass


class AgentOfflineError(ValidationError):
    """Raised when the target agent is offline."""
    pass


class AgentCapacityExceededError(ValidationError):
    """
    Raised when the target agent is at or above maxConcurrentChats.

    details carry current_chats and max_concurrent_chats.
    """
    pass


class DepartmentMismatchError(ValidationError):
    """
    Raised when a department workflow names a department the room is not in.

    Covers both a wrong current serving department on transfer and a
    department invitation that was never issued.
    """
    pass


class InvalidMessageError(ValidationError):
    """Raised when a message payload is malformed (empty content, bad attachment)."""
    pass
