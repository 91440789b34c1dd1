"""Structured logging (structlog) with room correlation and PII redaction."""

from chat_engine.core.logging.logger import (
    bind_room_context,
    clear_room_context,
    get_logger,
    get_room_context,
    log_stage,
    setup_logging,
)

__all__ = [
    "bind_room_context",
    "clear_room_context",
    "get_logger",
    "get_room_context",
    "log_stage",
    "setup_logging",
]
