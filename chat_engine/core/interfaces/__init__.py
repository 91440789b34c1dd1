"""
Collaborator protocols.

- **cache.py**: CacheBackend (Redis)
- **durable_store.py**: DurableStore / DurableTransaction
- **notifications.py**: NotificationDispatcher and AIBridge
"""

from chat_engine.core.interfaces.cache import CacheBackend
from chat_engine.core.interfaces.durable_store import DurableStore, DurableTransaction
from chat_engine.core.interfaces.notifications import AIBridge, NotificationDispatcher

__all__ = ["AIBridge", "CacheBackend", "DurableStore", "DurableTransaction", "NotificationDispatcher"]
