"""
Redis Client with Connection Pooling

Architecture:
    RedisClient (Public API, implements CacheBackend)
        ├── ConnectionManager (Connection lifecycle)
        ├── OperationExecutor (Command execution with error translation)
        └── HealthMonitor (Health checks and pool metrics)

Every Redis failure leaves this module as a CacheError subclass; the
resilient cache facade decides what an outage means for the caller.

Author: Refactored for clarity and maintainability
Date: 2025-12-13
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from chat_engine.core.config.settings import Settings, get_settings
from chat_engine.core.exceptions import CacheConnectionError, CacheKeyError
from chat_engine.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# LAYER 1: CONNECTION MANAGEMENT
# =============================================================================


class ConnectionManager:
    """
    Manages Redis connection lifecycle and pooling.

    Pool Configuration:
    - Max connections: REDIS_MAX_CONNECTIONS
    - Socket timeout: REDIS_SOCKET_TIMEOUT
    - Health check interval: REDIS_HEALTH_CHECK_INTERVAL
    - Decode responses: True (returns strings, not bytes)
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = None
        self._is_connected = False

    async def connect(self) -> redis.Redis:
        """
        Establish connection to Redis with connection pooling.

        STAGE-REDIS.2: Connection establishment

        Raises:
            CacheConnectionError: If connection fails
        """
        if self._is_connected and self._client:
            return self._client

        redis_settings = self._settings.redis
        try:
            self._pool = ConnectionPool(
                host=redis_settings.REDIS_HOST,
                port=redis_settings.REDIS_PORT,
                db=redis_settings.REDIS_DB,
                password=redis_settings.REDIS_PASSWORD,
                max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=redis_settings.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=redis_settings.REDIS_SOCKET_TIMEOUT,
                retry_on_timeout=True,
                health_check_interval=redis_settings.REDIS_HEALTH_CHECK_INTERVAL,
                decode_responses=True,
            )
            self._client = redis.Redis(connection_pool=self._pool)
            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Redis connected successfully",
                stage="REDIS.2",
                host=redis_settings.REDIS_HOST,
                port=redis_settings.REDIS_PORT,
                max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
            )
            return self._client

        except (ConnectionError, TimeoutError, OSError) as e:
            logger.error("Failed to connect to Redis", stage="REDIS.2", error=str(e))
            # the next connect builds a fresh pool
            await self.disconnect()
            raise CacheConnectionError.from_exception(
                e,
                message=f"Failed to connect to Redis: {e}",
                host=redis_settings.REDIS_HOST,
                port=redis_settings.REDIS_PORT,
            ) from e

    async def disconnect(self) -> None:
        """
        Close Redis connection and pool.

        STAGE-REDIS.3: Connection cleanup
        """
        if self._client:
            await self._client.aclose()
        if self._pool:
            await self._pool.disconnect()

        self._client = None
        self._pool = None
        self._is_connected = False
        logger.info("Redis disconnected", stage="REDIS.3")

    def get_client(self) -> redis.Redis | None:
        return self._client

    def get_pool(self) -> ConnectionPool | None:
        return self._pool

    def is_connected(self) -> bool:
        return self._is_connected


# =============================================================================
# LAYER 2: OPERATION EXECUTION
# =============================================================================


class OperationExecutor:
    """
    Executes Redis operations with consistent error handling.

    Error Handling Strategy:
    - Catch RedisError exceptions
    - Log with stage, command and key
    - Raise CacheKeyError (CacheConnectionError for connection loss)
    """

    def __init__(self, redis_client: redis.Redis):
        self._redis = redis_client

    async def _run(self, command: str, key: Any, call: Awaitable[T]) -> T:
        try:
            return await call
        except (ConnectionError, TimeoutError) as e:
            logger.warning(f"Redis {command} connection failure", stage=f"REDIS.{command}", key=key, error=str(e))
            raise CacheConnectionError.from_exception(
                e, message=f"Redis {command} failed: {e}", key=key
            ) from e
        except RedisError as e:
            logger.error(f"Redis {command} failed", stage=f"REDIS.{command}", key=key, error=str(e))
            raise CacheKeyError.from_exception(e, message=f"Redis {command} failed: {e}", key=key) from e

    # -------------------------------------------------------------------------
    # Strings and keys
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> str | None:
        return await self._run("GET", key, self._redis.get(key))

    async def set(self, key: str, value: str, ttl: int | None = None, nx: bool = False) -> bool:
        result = await self._run("SET", key, self._redis.set(key, value, ex=ttl, nx=nx))
        return bool(result)

    async def delete(self, *keys: str) -> int:
        return await self._run("DEL", keys, self._redis.delete(*keys))

    async def exists(self, *keys: str) -> int:
        return await self._run("EXISTS", keys, self._redis.exists(*keys))

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._run("EXPIRE", key, self._redis.expire(key, ttl)))

    # -------------------------------------------------------------------------
    # Sets (participants, departments)
    # -------------------------------------------------------------------------

    async def sadd(self, key: str, *members: str) -> int:
        return await self._run("SADD", key, self._redis.sadd(key, *members))

    async def srem(self, key: str, *members: str) -> int:
        return await self._run("SREM", key, self._redis.srem(key, *members))

    async def smembers(self, key: str) -> set[str]:
        return set(await self._run("SMEMBERS", key, self._redis.smembers(key)))

    # -------------------------------------------------------------------------
    # Lists (message window)
    # -------------------------------------------------------------------------

    async def lpush(self, key: str, *values: str) -> int:
        return await self._run("LPUSH", key, self._redis.lpush(key, *values))

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        return bool(await self._run("LTRIM", key, self._redis.ltrim(key, start, end)))

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        return list(await self._run("LRANGE", key, self._redis.lrange(key, start, end)))

    # -------------------------------------------------------------------------
    # Sorted sets (workspace activity index)
    # -------------------------------------------------------------------------

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        return await self._run("ZADD", key, self._redis.zadd(key, mapping))

    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        return list(await self._run("ZREVRANGE", key, self._redis.zrevrange(key, start, end)))

    # -------------------------------------------------------------------------
    # Hashes (room meta, receipts)
    # -------------------------------------------------------------------------

    async def hset(self, name: str, mapping: dict[str, Any]) -> int:
        return await self._run("HSET", name, self._redis.hset(name, mapping=mapping))

    async def hgetall(self, name: str) -> dict[str, str]:
        return dict(await self._run("HGETALL", name, self._redis.hgetall(name)))

    # -------------------------------------------------------------------------
    # Streams (notifications)
    # -------------------------------------------------------------------------

    async def xadd(self, name: str, fields: dict[str, Any], maxlen: int | None = None) -> str:
        return await self._run(
            "XADD", name, self._redis.xadd(name, fields, maxlen=maxlen, approximate=True)
        )


# =============================================================================
# LAYER 3: HEALTH MONITORING
# =============================================================================


class HealthMonitor:
    """
    Monitors Redis health and connection pool metrics.

    Metrics Tracked:
    - Connection status
    - Ping latency
    - Pool size
    """

    def __init__(self, connection_manager: ConnectionManager, settings: Settings):
        self._conn_mgr = connection_manager
        self._settings = settings

    async def health_check(self) -> dict[str, Any]:
        """
        Perform health check on Redis connection.

        STAGE-REDIS.HEALTH: Redis health check
        """
        health = {
            "status": "healthy",
            "connected": self._conn_mgr.is_connected(),
            "host": self._settings.redis.REDIS_HOST,
            "port": self._settings.redis.REDIS_PORT,
            "pool_size": 0,
            "ping_latency_ms": None,
        }

        client = self._conn_mgr.get_client()
        if not client:
            health["status"] = "unhealthy"
            health["error"] = "Client not initialized"
            return health

        try:
            start = time.perf_counter()
            await client.ping()
            health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
        except (RedisError, OSError) as e:
            health["status"] = "unhealthy"
            health["error"] = str(e)
            return health

        pool = self._conn_mgr.get_pool()
        if pool:
            health["pool_size"] = pool.max_connections
        return health


# =============================================================================
# LAYER 4: PUBLIC API
# =============================================================================


class RedisClient:
    """
    Async Redis client with connection pooling and health checks.

    Usage:
        client = RedisClient()
        await client.connect()
        await client.sadd("room:r-1:participants", "visitor:v-1")
        members = await client.smembers("room:r-1:participants")
        await client.disconnect()
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize Redis client.

        STAGE-REDIS.1: Client initialization
        """
        self._settings = settings or get_settings()
        self._conn_mgr = ConnectionManager(self._settings)
        self._executor: OperationExecutor | None = None
        self._connect_lock = asyncio.Lock()
        self._health_monitor = HealthMonitor(self._conn_mgr, self._settings)

        logger.info(
            "Redis client initialized",
            stage="REDIS.1",
            host=self._settings.redis.REDIS_HOST,
            port=self._settings.redis.REDIS_PORT,
        )

    async def connect(self) -> None:
        """
        Raises:
            CacheConnectionError: If connection fails
        """
        client = await self._conn_mgr.connect()
        self._executor = OperationExecutor(client)

    async def disconnect(self) -> None:
        await self._conn_mgr.disconnect()
        self._executor = None

    async def ping(self) -> bool:
        client = self._conn_mgr.get_client()
        if not client:
            return False
        try:
            return bool(await client.ping())
        except (RedisError, OSError):
            return False

    async def _ensure_connected(self) -> OperationExecutor:
        """
        Executor for the live connection, connecting first when there is none.

        A failed startup connect is retried here, so the breaker's half-open
        probe is what brings the cache back once Redis recovers.

        Raises:
            CacheConnectionError: If Redis is still unreachable
        """
        if self._executor is None:
            async with self._connect_lock:
                if self._executor is None:
                    await self.connect()
        return self._executor

    async def get(self, key: str) -> str | None:
        executor = await self._ensure_connected()
        return await executor.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None, nx: bool = False) -> bool:
        executor = await self._ensure_connected()
        return await executor.set(key, value, ttl=ttl, nx=nx)

    async def delete(self, *keys: str) -> int:
        executor = await self._ensure_connected()
        return await executor.delete(*keys)

    async def exists(self, *keys: str) -> int:
        executor = await self._ensure_connected()
        return await executor.exists(*keys)

    async def expire(self, key: str, ttl: int) -> bool:
        executor = await self._ensure_connected()
        return await executor.expire(key, ttl)

    async def sadd(self, key: str, *members: str) -> int:
        executor = await self._ensure_connected()
        return await executor.sadd(key, *members)

    async def srem(self, key: str, *members: str) -> int:
        executor = await self._ensure_connected()
        return await executor.srem(key, *members)

    async def smembers(self, key: str) -> set[str]:
        executor = await self._ensure_connected()
        return await executor.smembers(key)

    async def lpush(self, key: str, *values: str) -> int:
        executor = await self._ensure_connected()
        return await executor.lpush(key, *values)

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        executor = await self._ensure_connected()
        return await executor.ltrim(key, start, end)

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        executor = await self._ensure_connected()
        return await executor.lrange(key, start, end)

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        executor = await self._ensure_connected()
        return await executor.zadd(key, mapping)

    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        executor = await self._ensure_connected()
        return await executor.zrevrange(key, start, end)

    async def hset(self, name: str, mapping: dict[str, Any]) -> int:
        executor = await self._ensure_connected()
        return await executor.hset(name, mapping)

    async def hgetall(self, name: str) -> dict[str, str]:
        executor = await self._ensure_connected()
        return await executor.hgetall(name)

    async def xadd(self, name: str, fields: dict[str, Any], maxlen: int | None = None) -> str:
        executor = await self._ensure_connected()
        return await executor.xadd(name, fields, maxlen=maxlen)

    async def health_check(self) -> dict[str, Any]:
        return await self._health_monitor.health_check()

