"""
Durable Write Queue - Batched Persistence Worker

Reconciles cache-first mutations into the durable store.

Architecture:
    DurableWriteQueue (Public API)
        ├── inbox (asyncio.Queue)  enqueue never blocks the caller
        ├── worker task            single owner of the buffer and flush timer
        └── RetryStrategy          fixed backoff schedule, bounded retry budget

Flush triggers (whichever comes first):
    1. The buffer reaches ``max_batch_size`` jobs
    2. ``flush_interval`` seconds passed since the first unflushed job

A flush applies the whole buffer as one durable transaction bounded by
``transaction_timeout``. A failed or timed-out flush re-queues each job after
its next backoff delay; jobs past the retry budget are logged with their
payload for manual recovery and dropped. Best-effort jobs (telemetry) are
dropped on the first failure.
"""

import asyncio
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import orjson

from chat_engine.core.config.constants import JobPriority, JobType
from chat_engine.core.config.settings import WriteQueueSettings
from chat_engine.core.exceptions import DurableTimeoutError, WriteQueueClosedError
from chat_engine.core.interfaces.durable_store import DurableStore
from chat_engine.core.logging.logger import get_logger
from chat_engine.infrastructure.monitoring.metrics import get_metrics_collector

logger = get_logger(__name__)


# =============================================================================
# CONFIGURATION & JOB MODEL
# =============================================================================

@dataclass
class WriteQueueConfig:
    """
    Write queue configuration parameters.

    Attributes:
        max_batch_size: Buffer size that triggers an immediate flush
        flush_interval: Seconds between the first buffered job and a timed flush
        transaction_timeout: Upper bound for one durable batch transaction
        retry_delays: Backoff schedule in seconds; its length is the retry budget
    """
    max_batch_size: int = 30
    flush_interval: float = 10.0
    transaction_timeout: float = 15.0
    retry_delays: tuple[float, ...] = (2.0, 8.0, 20.0)

    @classmethod
    def from_settings(cls, settings: WriteQueueSettings) -> "WriteQueueConfig":
        return cls(
            max_batch_size=settings.WRITE_QUEUE_MAX_BATCH_SIZE,
            flush_interval=settings.WRITE_QUEUE_FLUSH_INTERVAL,
            transaction_timeout=settings.WRITE_QUEUE_TRANSACTION_TIMEOUT,
            retry_delays=tuple(settings.WRITE_QUEUE_RETRY_DELAYS),
        )


@dataclass
class WriteJob:
    """
    One durable mutation.

    ``idempotency_key`` is the id used for the matching cache write; the
    durable store upserts on it so a retried batch never duplicates state.
    """
    job_type: JobType
    payload: dict[str, Any]
    idempotency_key: str
    priority: JobPriority = JobPriority.NORMAL
    best_effort: bool = False
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempts: int = 0
    enqueued_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "job_type": self.job_type.value,
            "idempotency_key": self.idempotency_key,
            "priority": int(self.priority),
            "best_effort": self.best_effort,
            "attempts": self.attempts,
            "enqueued_at": self.enqueued_at,
            "payload": self.payload,
        }


class _FlushRequest:
    """Inbox command asking the worker to flush now and report back."""

    def __init__(self, future: asyncio.Future):
        self.future = future


_STOP = object()


# =============================================================================
# RETRY STRATEGY
# =============================================================================

class RetryStrategy:
    """
    Fixed-schedule backoff for failed batches.

    Example (default schedule 2s / 8s / 20s):
        attempt 0 fails -> retry in 2s
        attempt 1 fails -> retry in 8s
        attempt 2 fails -> retry in 20s
        attempt 3 fails -> terminal, logged and dropped
    """

    def __init__(self, delays: Sequence[float]):
        self._delays = tuple(delays)

    @property
    def max_retries(self) -> int:
        return len(self._delays)

    def should_retry(self, job: WriteJob) -> bool:
        return not job.best_effort and job.attempts < self.max_retries

    def next_delay(self, job: WriteJob) -> float:
        return self._delays[job.attempts]


# =============================================================================
# PUBLIC API
# =============================================================================

class DurableWriteQueue:
    """
    Single-owner batching actor in front of the durable store.

    Only the worker task touches the buffer and flush deadline; callers talk
    to it through the inbox, so there is no shared mutable state to lock.

    Usage:
        queue = DurableWriteQueue(store, WriteQueueConfig(max_batch_size=30))
        await queue.start()
        queue.enqueue(JobType.MESSAGE_CREATED, payload, idempotency_key=message.id)
        ...
        await queue.stop()   # drains and flushes what is left
    """

    def __init__(
        self,
        store: DurableStore,
        config: WriteQueueConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._config = config or WriteQueueConfig()
        self._retry = RetryStrategy(self._config.retry_delays)
        self._clock = clock
        self._metrics = get_metrics_collector()

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._buffer: list[WriteJob] = []
        self._in_flight = 0
        self._first_buffered_at: float | None = None
        self._pending_retries: dict[str, tuple[asyncio.TimerHandle, WriteJob]] = {}
        # latest not-yet-applied job per (job type, idempotency key)
        self._unapplied: dict[tuple[JobType, str], WriteJob] = {}
        self._worker: asyncio.Task | None = None
        self._closed = False

        self._flushed_batches = 0
        self._flushed_jobs = 0
        self._failed_flushes = 0
        self._dropped_jobs = 0

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        idempotency_key: str,
        priority: JobPriority = JobPriority.NORMAL,
        best_effort: bool = False,
    ) -> WriteJob:
        """
        Hand a job to the worker without waiting.

        Raises:
            WriteQueueClosedError: If the queue was stopped
        """
        if self._closed:
            raise WriteQueueClosedError(
                "Write queue is closed", details={"job_type": job_type.value}
            )
        job = WriteJob(
            job_type=job_type,
            payload=payload,
            idempotency_key=idempotency_key,
            priority=priority,
            best_effort=best_effort,
        )
        self._unapplied[(job_type, idempotency_key)] = job
        self._inbox.put_nowait(job)
        self._metrics.set_write_queue_depth(self.depth)
        return job

    def pending_job(self, job_type: JobType, idempotency_key: str) -> WriteJob | None:
        """Latest job for this key that is queued, in flight or awaiting retry."""
        return self._unapplied.get((job_type, idempotency_key))

    def _settle(self, job: WriteJob) -> None:
        key = (job.job_type, job.idempotency_key)
        if self._unapplied.get(key) is job:
            del self._unapplied[key]

    async def flush_now(self) -> None:
        """Ask the worker to flush its buffer and wait until it did."""
        if self._worker is None or self._worker.done():
            raise WriteQueueClosedError("Write queue worker is not running")
        future = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait(_FlushRequest(future))
        await future

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self._worker is not None and not self._worker.done():
            return
        self._closed = False
        self._worker = asyncio.create_task(self._run(), name="durable-write-queue")
        logger.info(
            "Write queue started",
            stage="WQ.0",
            max_batch_size=self._config.max_batch_size,
            flush_interval=self._config.flush_interval,
            retry_delays=list(self._config.retry_delays),
        )

    async def stop(self) -> None:
        """
        Stop accepting jobs, flush what is buffered and stop the worker.

        Jobs waiting on a retry timer, and jobs of a flush that fails while
        stopping, are pulled forward into the final flush.
        """
        if self._worker is None:
            return
        self._closed = True
        for handle, job in self._pending_retries.values():
            handle.cancel()
            self._inbox.put_nowait(job)
        self._pending_retries.clear()

        self._inbox.put_nowait(_STOP)
        await self._worker
        self._worker = None
        logger.info("Write queue stopped", stage="WQ.9", **self.stats())

    @property
    def depth(self) -> int:
        return len(self._buffer) + self._inbox.qsize() + len(self._pending_retries) + self._in_flight

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def stats(self) -> dict[str, Any]:
        return {
            "depth": self.depth,
            "buffered": len(self._buffer),
            "awaiting_retry": len(self._pending_retries),
            "flushed_batches": self._flushed_batches,
            "flushed_jobs": self._flushed_jobs,
            "failed_flushes": self._failed_flushes,
            "dropped_jobs": self._dropped_jobs,
        }

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def _time_until_deadline(self) -> float | None:
        if self._first_buffered_at is None:
            return None
        elapsed = self._clock() - self._first_buffered_at
        return max(0.0, self._config.flush_interval - elapsed)

    async def _run(self) -> None:
        while True:
            timeout = self._time_until_deadline()
            try:
                item = await asyncio.wait_for(self._inbox.get(), timeout=timeout)
            except TimeoutError:
                await self._flush(trigger="interval")
                continue

            if item is _STOP:
                final = self._drain_inbox()
                self._buffer.extend(final)
                if self._buffer:
                    await self._flush(trigger="shutdown", final=True)
                return

            if isinstance(item, _FlushRequest):
                if self._buffer:
                    await self._flush(trigger="manual")
                if not item.future.done():
                    item.future.set_result(None)
                continue

            self._buffer.append(item)
            if self._first_buffered_at is None:
                self._first_buffered_at = self._clock()
            if len(self._buffer) >= self._config.max_batch_size:
                await self._flush(trigger="size")

    def _drain_inbox(self) -> list[WriteJob]:
        drained = []
        while not self._inbox.empty():
            item = self._inbox.get_nowait()
            if isinstance(item, WriteJob):
                drained.append(item)
            elif isinstance(item, _FlushRequest) and not item.future.done():
                item.future.set_result(None)
        return drained

    async def _flush(self, trigger: str, final: bool = False) -> None:
        batch, self._buffer = self._buffer, []
        self._first_buffered_at = None
        if not batch:
            return

        self._in_flight = len(batch)
        started = time.perf_counter()
        try:
            await asyncio.wait_for(
                self._store.apply_batch(batch), timeout=self._config.transaction_timeout
            )
        except TimeoutError:
            error = DurableTimeoutError(
                "Durable batch transaction timed out",
                details={"timeout": self._config.transaction_timeout, "batch_size": len(batch)},
            )
            self._metrics.record_flush("timeout", time.perf_counter() - started)
            self._handle_failure(batch, error, final)
        except Exception as e:
            self._metrics.record_flush("failure", time.perf_counter() - started)
            self._handle_failure(batch, e, final)
        else:
            duration = time.perf_counter() - started
            self._flushed_batches += 1
            self._flushed_jobs += len(batch)
            for job in batch:
                self._settle(job)
            self._metrics.record_flush("success", duration)
            logger.info(
                "Write batch flushed",
                stage="WQ.2",
                trigger=trigger,
                batch_size=len(batch),
                duration_ms=round(duration * 1000, 2),
            )
        finally:
            self._in_flight = 0
            self._metrics.set_write_queue_depth(self.depth)

    def _handle_failure(self, batch: list[WriteJob], error: Exception, final: bool) -> None:
        self._failed_flushes += 1
        logger.warning(
            "Write batch failed",
            stage="WQ.3",
            batch_size=len(batch),
            error=str(error),
            error_type=type(error).__name__,
        )
        loop = asyncio.get_running_loop()

        for job in batch:
            if job.best_effort:
                self._drop(job, "best_effort", error)
            elif final or not self._retry.should_retry(job):
                self._drop(job, "retries_exhausted", error)
            elif self._closed:
                # stop() already pulled the retry timers forward; the queued
                # _STOP flushes this job once more without waiting
                job.attempts += 1
                self._inbox.put_nowait(job)
                logger.info(
                    "Write job retried in final flush",
                    stage="WQ.4",
                    job_id=job.job_id,
                    job_type=job.job_type.value,
                    attempt=job.attempts,
                )
            else:
                delay = self._retry.next_delay(job)
                job.attempts += 1
                handle = loop.call_later(delay, self._requeue, job)
                self._pending_retries[job.job_id] = (handle, job)
                logger.info(
                    "Write job scheduled for retry",
                    stage="WQ.4",
                    job_id=job.job_id,
                    job_type=job.job_type.value,
                    attempt=job.attempts,
                    delay_seconds=delay,
                )

    def _requeue(self, job: WriteJob) -> None:
        self._pending_retries.pop(job.job_id, None)
        if self._worker is None or self._worker.done():
            self._drop(job, "retries_exhausted", WriteQueueClosedError("Write queue worker is not running"))
            return
        self._inbox.put_nowait(job)

    def _drop(self, job: WriteJob, reason: str, error: Exception) -> None:
        self._dropped_jobs += 1
        self._settle(job)
        self._metrics.record_dropped_jobs(reason)
        if reason == "best_effort":
            logger.debug(
                "Best-effort write job dropped",
                stage="WQ.5",
                job_id=job.job_id,
                job_type=job.job_type.value,
            )
            return
        logger.error(
            "Write job failed permanently, manual recovery required",
            stage="WQ.6",
            job_id=job.job_id,
            job_type=job.job_type.value,
            attempts=job.attempts,
            error=str(error),
            job=orjson.dumps(job.to_dict()).decode(),
        )
