"""
Cache Backend Protocol

Abstract protocol for the room cache, enabling dependency injection and
in-memory fakes in tests.

Architectural Decision: Protocol-based abstraction
- RedisClient is the production implementation
- Services never talk to a backend directly; they go through ResilientCache

Author: System Architect
Date: 2025-12-08
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """
    Protocol defining the operations the engine needs from its cache.

    All operations may raise CacheError (or a redis error); the resilient
    cache facade converts those into a "cache unavailable" result.
    """

    async def connect(self) -> None:
        """Establish connection to the cache backend."""
        ...

    async def disconnect(self) -> None:
        """Close connection to the cache backend."""
        ...

    async def ping(self) -> bool:
        """Check if cache backend is healthy."""
        ...

    # Strings
    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl: int | None = None, nx: bool = False) -> bool:
        """
        Set value in cache.

        Returns:
            bool: False only when ``nx`` was requested and the key existed
        """
        ...

    async def delete(self, *keys: str) -> int:
        ...

    async def exists(self, *keys: str) -> int:
        ...

    async def expire(self, key: str, ttl: int) -> bool:
        ...

    # Sets
    async def sadd(self, key: str, *members: str) -> int:
        ...

    async def srem(self, key: str, *members: str) -> int:
        ...

    async def smembers(self, key: str) -> set[str]:
        ...

    # Lists (newest first)
    async def lpush(self, key: str, *values: str) -> int:
        ...

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        ...

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        ...

    # Sorted sets
    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        ...

    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        ...

    # Hashes
    async def hset(self, name: str, mapping: dict[str, Any]) -> int:
        ...

    async def hgetall(self, name: str) -> dict[str, str]:
        ...
