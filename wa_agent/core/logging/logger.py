"""
Structured Logging Module using structlog

This module provides structured logging with:
- Session ID correlation for conversation tracing
- Stage identifiers for execution flow
- JSON formatting for log aggregation
- Automatic PII redaction (WhatsApp numbers, emails, API keys)

Usage:
    logger = get_logger(__name__)
    logger.info("Cache hit", stage="2.1", cache_key="session:abc")
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

from wa_agent.core.config.settings import get_settings

# Conversation session for the current task
session_id_ctx: ContextVar[str | None] = ContextVar("session_id", default=None)

_EMAIL_PATTERN = re.compile(r"\b[\w.-]+@[\w.-]+\.\w+\b")
_API_KEY_PATTERNS = (
    re.compile(r"\bsk-[a-zA-Z0-9_-]+\b"),
    re.compile(r"\bAIza[a-zA-Z0-9_-]+\b"),
)
# E.164 numbers as delivered by the webhook ("whatsapp:+15551234567") and plain 10-digit forms
_PHONE_PATTERNS = (
    re.compile(r"\+\d{8,15}\b"),
    re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"),
)


def add_session_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add session ID to log event from context variable.

    STAGE-L.1: Session ID injection
    """
    session_id = session_id_ctx.get()
    if session_id and "session_id" not in event_dict:
        event_dict["session_id"] = session_id
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO timestamp to log event.

    STAGE-L.2: Timestamp injection
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def redact_text(text: str) -> str:
    """Replace emails, API keys and phone numbers in ``text``."""
    text = _EMAIL_PATTERN.sub("[EMAIL]", text)
    for pattern in _API_KEY_PATTERNS:
        text = pattern.sub("[REDACTED]", text)
    for pattern in _PHONE_PATTERNS:
        text = pattern.sub("[PHONE]", text)
    return text


def redact_pii(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact PII from log messages.

    STAGE-L.3: PII redaction

    Only the event message is rewritten; structured fields are left alone so
    that session identifiers stay usable for correlation.
    """
    message = event_dict.get("event", "")
    if isinstance(message, str):
        event_dict["event"] = redact_text(message)
    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Upper-case the level name.

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
            add_session_id,
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

    Args:
        name: Logger name (typically __name__)

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage="1.2")
    """
    return structlog.get_logger(name)


def set_session_id(session_id: str) -> None:
    """
    Bind the conversation session to every log entry of the current task.

    Call at the start of webhook handling; pair with ``clear_session_id``.
    """
    session_id_ctx.set(session_id)


def get_session_id() -> str | None:
    """Get current session ID from context."""
    return session_id_ctx.get()


def clear_session_id() -> None:
    """Clear session ID from context."""
    session_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger, stage: str, message: str, level: str = "info", **kwargs
) -> None:
    """
    Log a message with stage information.

    Usage:
        log_stage(logger, "2.1", "L1 cache hit", cache_key="abc123")
    """
    log_func = getattr(logger, level.lower())
    log_func(message, stage=stage, **kwargs)
