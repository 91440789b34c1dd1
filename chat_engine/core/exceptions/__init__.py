"""
Exception Module

Structured exception hierarchy for the chat-room engine, organized by theme.

Module Structure:
-----------------
- **base.py**: ChatEngineError base class
- **cache.py**: Redis errors (absorbed by the resilient cache facade)
- **validation.py**: Caller-visible precondition failures
- **not_found.py**: Missing rooms and agents
- **persistence.py**: Durable store failures (retried by the write queue)
- **queue.py**: Write queue lifecycle errors

Usage:
------
```python
from chat_engine.core.exceptions import AgentAlreadyActiveError, RoomNotFoundError
```
"""

from chat_engine.core.exceptions.base import ChatEngineError
from chat_engine.core.exceptions.cache import CacheConnectionError, CacheError, CacheKeyError
from chat_engine.core.exceptions.not_found import (
    AgentNotFoundError,
    NotFoundError,
    RoomNotFoundError,
)
from chat_engine.core.exceptions.persistence import DurablePersistenceError, DurableTimeoutError
from chat_engine.core.exceptions.queue import QueueError, WriteQueueClosedError
from chat_engine.core.exceptions.validation import (
    AgentAlreadyActiveError,
    AgentCapacityExceededError,
    AgentNotParticipantError,
    AgentOfflineError,
    AnotherAgentActiveError,
    DepartmentMismatchError,
    InvalidMessageError,
    ParticipantNotInRoomError,
    ValidationError,
)

__all__ = [
    # Base
    "ChatEngineError",
    # Cache
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    # Not found
    "NotFoundError",
    "RoomNotFoundError",
    "AgentNotFoundError",
    # Persistence
    "DurablePersistenceError",
    "DurableTimeoutError",
    # Queue
    "QueueError",
    "WriteQueueClosedError",
    # Validation
    "ValidationError",
    "AgentAlreadyActiveError",
    "AnotherAgentActiveError",
    "AgentNotParticipantError",
    "ParticipantNotInRoomError",
    "AgentOfflineError",
    "AgentCapacityExceededError",
    "DepartmentMismatchError",
    "InvalidMessageError",
]
