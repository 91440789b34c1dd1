"""
Base Exception Class

This module contains ONLY the base exception class that all other exceptions inherit from.
All specialized exceptions are in their respective themed modules.

Author: System Architect
Date: 2025-12-08
"""

from typing import Any


class ChatEngineError(Exception):
    """
    Base exception for all chat engine errors.

    Attributes:
        message: Error message
        room_id: Room the failing operation targeted (if any)
        details: Additional error details (dict)

    Example:
        raise AgentCapacityExceededError(
            "Agent has reached maximum concurrent chats",
            room_id="r-1",
            details={"agent_id": "a-1", "current_chats": 5, "max_concurrent_chats": 5}
        )
    """

    def __init__(
        self, message: str, room_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.room_id = room_id
        self.details = (details or {}).copy()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging/API responses.

        Returns:
            Dict with error_type, message, room_id, and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "room_id": self.room_id,
            "details": self.details,
        }

    def with_context(self, **context) -> "ChatEngineError":
        """
        Add additional context to the error details.

        Returns:
            Self (for method chaining)
        """
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        room_id_str = f", room_id='{self.room_id}'" if self.room_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{room_id_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        message: str | None = None,
        room_id: str | None = None,
        **details
    ) -> "ChatEngineError":
        """
        Create an engine error from another exception.

        Useful for wrapping third-party exceptions with additional context.

        Example:
            >>> try:
            ...     await redis.ping()
            ... except redis.ConnectionError as e:
            ...     raise CacheConnectionError.from_exception(e, host="localhost")
        """
        error_message = message or str(exc) or exc.__class__.__name__
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, room_id=room_id, details=error_details)
