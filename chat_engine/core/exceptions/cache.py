"""
Cache-Related Exceptions

Raised by the Redis client. The resilient cache facade absorbs them and
reports "cache unavailable" instead of surfacing them to callers.

Author: System Architect
Date: 2025-12-08
"""

from chat_engine.core.exceptions.base import ChatEngineError


class CacheError(ChatEngineError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when unable to connect to the cache (Redis).

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Authentication failure
    """
    pass


class CacheKeyError(CacheError):
    """
    Raised when a cache key operation fails.

    Common causes:
    - Wrong value type stored under the key
    - Operation timeout
    - Memory limit exceeded
    """
    pass
