#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

Type-safe, environment-based configuration for the chat-room engine. Every
tunable value (Redis connection, cache breaker thresholds, write-queue
batching, message window size, logging) is read here once and handed to the
components through the composition root.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Grouped section views for each component

Author: System Architect
Date: 2025-12-05
"""

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _validate_log_level(value: str) -> str:
    if value.upper() not in VALID_LOG_LEVELS:
        raise ValueError(f"LOG_LEVEL must be one of {VALID_LOG_LEVELS}")
    return value.upper()


class RedisSettings(BaseSettings):
    """
    Redis configuration for the room cache.

    STAGE-0.1: Redis connection configuration
    """

    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=100, description="Maximum pooled connections")
    REDIS_SOCKET_TIMEOUT: int = Field(default=5, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(default=5, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CircuitBreakerSettings(BaseSettings):
    """
    Cache circuit breaker thresholds.

    STAGE-CB: Breaker configuration

    The breaker trips after CACHE_CB_FAILURE_THRESHOLD consecutive failures and
    short-circuits every cache call for CACHE_CB_COOLDOWN_SECONDS.
    """

    CACHE_CB_FAILURE_THRESHOLD: int = Field(default=5, ge=1, description="Failures before opening")
    CACHE_CB_COOLDOWN_SECONDS: float = Field(default=30.0, gt=0, description="Seconds the breaker stays open")
    CACHE_OPERATION_TIMEOUT: float = Field(default=2.0, gt=0, description="Per cache call timeout in seconds")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class WriteQueueSettings(BaseSettings):
    """
    Durable write queue batching configuration.

    STAGE-WQ: Batching and retry schedule
    """

    WRITE_QUEUE_MAX_BATCH_SIZE: int = Field(default=30, ge=1, description="Jobs per flush")
    WRITE_QUEUE_FLUSH_INTERVAL: float = Field(
        default=10.0, gt=0, description="Seconds between the first buffered job and a timed flush"
    )
    WRITE_QUEUE_TRANSACTION_TIMEOUT: float = Field(
        default=15.0, gt=0, description="Timeout for one durable batch transaction"
    )
    WRITE_QUEUE_RETRY_DELAYS: list[float] = Field(
        default=[2.0, 8.0, 20.0], description="Backoff schedule; its length is the retry budget"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class MessageSettings(BaseSettings):
    """Message window configuration."""

    MESSAGE_WINDOW_SIZE: int = Field(default=100, ge=1, description="Messages kept in the cached window")
    MESSAGE_PAGE_MAX_LIMIT: int = Field(default=100, ge=1, description="Largest page served by GetMessages")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class DurableStoreSettings(BaseSettings):
    """Durable store call bounds."""

    DURABLE_CALL_TIMEOUT: float = Field(default=10.0, gt=0, description="Timeout for durable reads")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        return _validate_log_level(v)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """General application settings."""

    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="Chat Room Engine", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    NOTIFICATION_STREAM_MAXLEN: int = Field(default=10000, description="Approximate stream cap")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from chat_engine.core.config.settings import get_settings

        settings = get_settings()
        threshold = settings.circuit_breaker.CACHE_CB_FAILURE_THRESHOLD
        batch_size = settings.write_queue.WRITE_QUEUE_MAX_BATCH_SIZE
    """

    # Redis settings
    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=100, description="Maximum pooled connections")
    REDIS_SOCKET_TIMEOUT: int = Field(default=5, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(default=5, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    # Cache breaker settings
    CACHE_CB_FAILURE_THRESHOLD: int = Field(default=5, ge=1, description="Failures before opening")
    CACHE_CB_COOLDOWN_SECONDS: float = Field(default=30.0, gt=0, description="Seconds the breaker stays open")
    CACHE_OPERATION_TIMEOUT: float = Field(default=2.0, gt=0, description="Per cache call timeout in seconds")

    # Write queue settings
    WRITE_QUEUE_MAX_BATCH_SIZE: int = Field(default=30, ge=1, description="Jobs per flush")
    WRITE_QUEUE_FLUSH_INTERVAL: float = Field(default=10.0, gt=0, description="Timed flush interval")
    WRITE_QUEUE_TRANSACTION_TIMEOUT: float = Field(default=15.0, gt=0, description="Batch transaction timeout")
    WRITE_QUEUE_RETRY_DELAYS: list[float] = Field(default=[2.0, 8.0, 20.0], description="Backoff schedule")

    # Message settings
    MESSAGE_WINDOW_SIZE: int = Field(default=100, ge=1, description="Messages kept in the cached window")
    MESSAGE_PAGE_MAX_LIMIT: int = Field(default=100, ge=1, description="Largest page served by GetMessages")

    # Durable store settings
    DURABLE_CALL_TIMEOUT: float = Field(default=10.0, gt=0, description="Timeout for durable reads")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="Chat Room Engine", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    NOTIFICATION_STREAM_MAXLEN: int = Field(default=10000, description="Approximate stream cap")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        return _validate_log_level(v)

    @model_validator(mode="after")
    def validate_retry_delays(self):
        """Retry delays must be non-negative."""
        if any(delay < 0 for delay in self.WRITE_QUEUE_RETRY_DELAYS):
            raise ValueError("WRITE_QUEUE_RETRY_DELAYS must not contain negative values")
        return self

    # Nested configuration views
    @property
    def redis(self) -> 'RedisSettings':
        """Get Redis settings."""
        return RedisSettings(
            REDIS_HOST=self.REDIS_HOST,
            REDIS_PORT=self.REDIS_PORT,
            REDIS_DB=self.REDIS_DB,
            REDIS_PASSWORD=self.REDIS_PASSWORD,
            REDIS_MAX_CONNECTIONS=self.REDIS_MAX_CONNECTIONS,
            REDIS_SOCKET_TIMEOUT=self.REDIS_SOCKET_TIMEOUT,
            REDIS_SOCKET_CONNECT_TIMEOUT=self.REDIS_SOCKET_CONNECT_TIMEOUT,
            REDIS_HEALTH_CHECK_INTERVAL=self.REDIS_HEALTH_CHECK_INTERVAL,
        )

    @property
    def circuit_breaker(self) -> 'CircuitBreakerSettings':
        """Get cache breaker settings."""
        return CircuitBreakerSettings(
            CACHE_CB_FAILURE_THRESHOLD=self.CACHE_CB_FAILURE_THRESHOLD,
            CACHE_CB_COOLDOWN_SECONDS=self.CACHE_CB_COOLDOWN_SECONDS,
            CACHE_OPERATION_TIMEOUT=self.CACHE_OPERATION_TIMEOUT,
        )

    @property
    def write_queue(self) -> 'WriteQueueSettings':
        """Get write queue settings."""
        return WriteQueueSettings(
            WRITE_QUEUE_MAX_BATCH_SIZE=self.WRITE_QUEUE_MAX_BATCH_SIZE,
            WRITE_QUEUE_FLUSH_INTERVAL=self.WRITE_QUEUE_FLUSH_INTERVAL,
            WRITE_QUEUE_TRANSACTION_TIMEOUT=self.WRITE_QUEUE_TRANSACTION_TIMEOUT,
            WRITE_QUEUE_RETRY_DELAYS=list(self.WRITE_QUEUE_RETRY_DELAYS),
        )

    @property
    def messages(self) -> 'MessageSettings':
        """Get message window settings."""
        return MessageSettings(
            MESSAGE_WINDOW_SIZE=self.MESSAGE_WINDOW_SIZE,
            MESSAGE_PAGE_MAX_LIMIT=self.MESSAGE_PAGE_MAX_LIMIT,
        )

    @property
    def durable(self) -> 'DurableStoreSettings':
        """Get durable store settings."""
        return DurableStoreSettings(DURABLE_CALL_TIMEOUT=self.DURABLE_CALL_TIMEOUT)

    @property
    def logging(self) -> 'LoggingSettings':
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    @property
    def app(self) -> 'ApplicationSettings':
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
            NOTIFICATION_STREAM_MAXLEN=self.NOTIFICATION_STREAM_MAXLEN,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
