"""Redis cache client, key space and circuit-breaker facade."""

from chat_engine.infrastructure.cache.redis_client import RedisClient
from chat_engine.infrastructure.cache.resilient_cache import ResilientCache

__all__ = ["RedisClient", "ResilientCache"]
