"""
Structured logging for tally, built on structlog.

Every module logs through :func:`get_logger`; the CLI and the HTTP service
call :func:`configure_logging` once at startup.

Usage::

    >>> from tally.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True, service="tally")
    >>> logger = get_logger(__name__)
    >>> logger.info("image.built", tag="invoices:latest")

Output (JSON format)::

    {"@timestamp": "2026-10-18T10:00:00Z", "log.level": "info",
     "service.name": "tally", "event": "image.built", "tag": "invoices:latest"}

Event names are dotted and lower-case (``service.started``,
``startup.order``); details go into key/value fields, never into the
event string.

Tags:
    logging, structlog, observability, json-logging
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from tally.core.errors import ConfigError

_SERVICE_NAME = "tally"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _ecs_field_names(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Rename the standard keys to their ECS field names."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def _stderr_logger_factory(*args: Any) -> structlog.PrintLogger:
    # Looked up per call so a swapped sys.stderr (test runners, CLI capture) is honoured.
    return structlog.PrintLogger(file=sys.stderr)


def resolve_level(level: str) -> int:
    """Map a level name to its stdlib number; unknown names raise ``ConfigError``."""
    name = level.upper()
    if name not in LOG_LEVELS:
        raise ConfigError(
            f"Unknown log level {level!r}; expected one of {', '.join(LOG_LEVELS)}",
            context={"log_level": level},
        )
    return logging.getLevelName(name)


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "tally",
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name included in every log line
    """
    level_no = resolve_level(level)

    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if json_format:
        shared_processors.append(_ecs_field_names)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        context_class=dict,
        logger_factory=_stderr_logger_factory,
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level_no,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs.

    Example:
        bind_context(project="invoices", run_id="abc123")
        logger.info("service.started")  # Includes project and run_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(project="invoices", service="db"):
            logger.info("container.run")
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "LOG_LEVELS",
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "resolve_level",
    "unbind_context",
]
