"""
Test Fixtures Package

In-memory collaborators for testing the engine without Redis or a database.
"""

from .collaborators import FakeAIBridge, RecordingNotifier
from .durable_store import InMemoryDurableStore, InMemoryTransaction, seed_room
from .in_memory_redis import InMemoryRedis

__all__ = [
    "FakeAIBridge",
    "InMemoryDurableStore",
    "InMemoryRedis",
    "InMemoryTransaction",
    "RecordingNotifier",
    "seed_room",
]
