"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from feedcursor.core.config import LogLevel, get_settings


def configure_logging(
    level: LogLevel | str | None = None,
    format_type: str | None = None,
    service_name: str | None = None,
    force: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        format_type: Output format ("json" or "console").
        service_name: Service name for log entries.
        force: Reconfigure even if logging was already configured.
    """
    if structlog.is_configured() and not force:
        return

    settings = get_settings()

    log_level = level or settings.observability.log_level
    if isinstance(log_level, str):
        log_level = LogLevel(log_level.upper())

    output_format = format_type or settings.observability.log_format
    svc_name = service_name or settings.observability.service_name

    level_map = {
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARNING: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
        LogLevel.CRITICAL: logging.CRITICAL,
    }
    numeric_level = level_map.get(log_level, logging.INFO)

    # Route stdlib loggers (pymongo, motor) to stderr so stdout stays for output
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if output_format == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    clear_context()
    bind_context(service=svc_name)


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually module name).
        **initial_context: Initial context values to bind.

    Returns:
        A bound structlog logger.
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


class LogContext:
    """Context manager for adding temporary log context."""

    def __init__(self, **context: Any) -> None:
        self._context = context

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


def bind_context(**context: Any) -> None:
    """Bind context variables for all subsequent log calls in this context."""
    structlog.contextvars.bind_contextvars(**context)


def unbind_context(*keys: str) -> None:
    """Unbind context variables."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()


def get_partition_logger(namespace: str, partition_id: str) -> structlog.BoundLogger:
    """Get a logger bound to a partition drain context."""
    return get_logger("feedcursor.partition", namespace=namespace, partition_id=partition_id)
