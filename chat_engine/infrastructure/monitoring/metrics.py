#!/usr/bin/env python3
"""
Metrics Collector with Prometheus Integration

Engine metrics:
- Cache breaker state, short-circuits and failures
- Write queue depth, flush outcomes and latency, dropped jobs
- Handoff workflow outcomes

Architectural Decision: prometheus-client for industry-standard metrics

Author: Senior Solution Architect
Date: 2025-12-05
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from chat_engine.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Metric Definitions
# ============================================================================

# Cache metrics
CACHE_OPERATIONS = Counter(
    'chat_cache_operations_total',
    'Cache operations by outcome (ok, failed, short_circuited)',
    ['cache', 'outcome']
)

CIRCUIT_BREAKER_STATE = Gauge(
    'chat_cache_circuit_breaker_state',
    'Cache circuit breaker state (0=closed, 1=half_open, 2=open)',
    ['cache']
)

# Write queue metrics
WRITE_QUEUE_DEPTH = Gauge(
    'chat_write_queue_depth',
    'Jobs buffered or waiting in the write queue inbox'
)

WRITE_QUEUE_FLUSHES = Counter(
    'chat_write_queue_flushes_total',
    'Durable batch flushes by outcome (success, failure, timeout)',
    ['outcome']
)

WRITE_QUEUE_FLUSH_DURATION = Histogram(
    'chat_write_queue_flush_duration_seconds',
    'Durable batch flush duration in seconds',
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0)
)

WRITE_QUEUE_DROPPED = Counter(
    'chat_write_queue_dropped_jobs_total',
    'Jobs dropped from the write queue by reason (best_effort, retries_exhausted)',
    ['reason']
)

# Workflow metrics
HANDOFF_EVENTS = Counter(
    'chat_handoff_workflows_total',
    'Handoff workflow executions by workflow and outcome',
    ['workflow', 'outcome']
)


class MetricsCollector:
    """
    Centralized metrics collector.

    STAGE-M: Metrics collection

    Usage:
        metrics = get_metrics_collector()
        metrics.record_cache_operation("room_cache", "short_circuited")
    """

    # =========================================================================
    # Cache Metrics
    # =========================================================================

    def record_cache_operation(self, cache: str, outcome: str) -> None:
        CACHE_OPERATIONS.labels(cache=cache, outcome=outcome).inc()

    def set_circuit_state(self, cache: str, state: str) -> None:
        """Set circuit breaker state."""
        state_value = {"closed": 0, "half_open": 1, "open": 2}.get(state, 0)
        CIRCUIT_BREAKER_STATE.labels(cache=cache).set(state_value)

    # =========================================================================
    # Write Queue Metrics
    # =========================================================================

    def set_write_queue_depth(self, depth: int) -> None:
        WRITE_QUEUE_DEPTH.set(depth)

    def record_flush(self, outcome: str, duration_seconds: float) -> None:
        WRITE_QUEUE_FLUSHES.labels(outcome=outcome).inc()
        WRITE_QUEUE_FLUSH_DURATION.observe(duration_seconds)

    def record_dropped_jobs(self, reason: str, count: int = 1) -> None:
        WRITE_QUEUE_DROPPED.labels(reason=reason).inc(count)

    # =========================================================================
    # Workflow Metrics
    # =========================================================================

    def record_handoff(self, workflow: str, outcome: str) -> None:
        HANDOFF_EVENTS.labels(workflow=workflow, outcome=outcome).inc()

    # =========================================================================
    # Export
    # =========================================================================

    def get_prometheus_metrics(self) -> bytes:
        """Prometheus text format metrics."""
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# Global metrics collector
_metrics: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
        logger.info("Metrics collector initialized", stage="M.0")
    return _metrics
