"""Durable write queue (batched, retried persistence)."""

from chat_engine.infrastructure.persistence.write_queue import (
    DurableWriteQueue,
    RetryStrategy,
    WriteJob,
    WriteQueueConfig,
)

__all__ = ["DurableWriteQueue", "RetryStrategy", "WriteJob", "WriteQueueConfig"]
