"""
Chat Room Engine

Cache-first real-time chat-room engine: rooms, messages, participants and
handoff workflows are served from Redis behind a circuit breaker and
reconciled into durable storage by a batching write queue.
"""

__version__ = "1.0.0"
