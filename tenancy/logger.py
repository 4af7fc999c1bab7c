"""Structured logging configuration using structlog."""

import logging
import os
import socket

import structlog

from tenancy.config import settings

# Cache hostname and PID at module load time (they don't change)
_HOSTNAME = socket.gethostname()
_PID = os.getpid()


def _format_log_message(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> str:
    """
    Render an event as a single line.

    Produces output like: WARNING:  [hostname:pid] role_updated tenant_id=... actor_id=...
    """
    level = event_dict.pop("level", "info").upper()
    event = event_dict.pop("event", "")

    context_str = " ".join(f"{k}={v}" for k, v in event_dict.items())

    prefix = f"{level + ':':<10}[{_HOSTNAME}:{_PID}]"
    if context_str:
        return f"{prefix} {event} {context_str}"
    return f"{prefix} {event}"


def _resolve_level() -> int:
    if settings.DEBUG:
        return logging.DEBUG
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> None:
    """
    Configure structlog for the application.

    Sets up structured logging with:
    - Context variable merging for request context
    - Log level filtering based on LOG_LEVEL (DEBUG forces debug output)
    - Single-line key=value output
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            _format_log_message,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_resolve_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,  # Allow reconfiguration
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """
    Get a logger instance.

    Args:
        name: Optional logger name, typically __name__ of the module.

    Returns:
        A bound structlog logger instance.
    """
    return structlog.get_logger(name)
