"""Prometheus metrics."""

from chat_engine.infrastructure.monitoring.metrics import MetricsCollector, get_metrics_collector

__all__ = ["MetricsCollector", "get_metrics_collector"]
