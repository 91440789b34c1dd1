#!/usr/bin/env python3
"""
Structured Logging Module using structlog

Production structured logging for the chat-room engine:
- Room correlation (room_id / workspace_id) injected from context variables
- Stage field identifying the emitting component
- JSON formatting for log aggregation
- Automatic PII redaction of visitor-supplied text

Author: System Architect
Date: 2025-12-05
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

room_id_ctx: ContextVar[str | None] = ContextVar("room_id", default=None)
workspace_id_ctx: ContextVar[str | None] = ContextVar("workspace_id", default=None)

_EMAIL_RE = re.compile(r"\b[\w.+-]+@[\w.-]+\.\w+\b")
_PHONE_RE = re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b")


def add_room_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add room correlation fields from context variables.

    STAGE-L.1: Room context injection

    Explicit ``room_id`` / ``workspace_id`` keyword arguments win over context.
    """
    room_id = room_id_ctx.get()
    if room_id:
        event_dict.setdefault("room_id", room_id)
    workspace_id = workspace_id_ctx.get()
    if workspace_id:
        event_dict.setdefault("workspace_id", workspace_id)
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO timestamp to log event.

    STAGE-L.2: Timestamp injection
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def redact_pii(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact PII from log messages.

    STAGE-L.3: PII redaction

    Patterns redacted:
    - Email addresses → [EMAIL]
    - Phone numbers → [PHONE]
    """
    message = event_dict.get("event", "")

    if isinstance(message, str):
        message = _EMAIL_RE.sub("[EMAIL]", message)
        message = _PHONE_RE.sub("[PHONE]", message)
        event_dict["event"] = message

    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Upper-case the log level.

    STAGE-L.4: Log level injection
    """
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Setup structured logging with structlog.

    STAGE-L: Logging initialization

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
    """
    from chat_engine.core.config.settings import get_settings

    settings = get_settings()
    log_level = log_level or settings.logging.LOG_LEVEL
    log_format = log_format or settings.logging.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_room_context,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_pii,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("Agent joined room", stage="PM.1", room_id=room_id, agent_id=agent_id)
    """
    return structlog.get_logger(name)


def bind_room_context(room_id: str | None, workspace_id: str | None = None) -> None:
    """
    Set the room correlation for the current task.

    Every log entry emitted afterwards in the same context carries these ids.
    """
    room_id_ctx.set(room_id)
    if workspace_id is not None:
        workspace_id_ctx.set(workspace_id)


def get_room_context() -> tuple[str | None, str | None]:
    return room_id_ctx.get(), workspace_id_ctx.get()


def clear_room_context() -> None:
    """Clear room correlation from context."""
    room_id_ctx.set(None)
    workspace_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger, stage: str, message: str, level: str = "info", **kwargs
) -> None:
    """
    Log a message with stage information.

    Usage:
        log_stage(logger, "WQ.2", "Batch flushed", batch_size=30)
    """
    log_func = getattr(logger, level.lower())
    log_func(message, stage=stage, **kwargs)
