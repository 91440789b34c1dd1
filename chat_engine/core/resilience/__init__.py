"""Resilience primitives."""

from chat_engine.core.resilience.circuit_breaker import CircuitBreaker

__all__ = ["CircuitBreaker"]
