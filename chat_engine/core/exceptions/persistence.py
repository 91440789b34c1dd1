"""
Durable Persistence Exceptions

Raised inside the write queue when a batch transaction fails. They drive the
retry path and are never surfaced to the caller of a mutating operation.

Author: System Architect
Date: 2025-12-08
"""

from chat_engine.core.exceptions.base import ChatEngineError


class DurablePersistenceError(ChatEngineError):
    """Raised when the durable store rejects or fails a write."""
    pass


class DurableTimeoutError(DurablePersistenceError):
    """Raised when a durable call exceeds its timeout."""
    pass
