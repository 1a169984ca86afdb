"""Logging configuration for the TermAI agent core."""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, TextIO

import structlog

from termai.config import get_config


def configure_logging(level: str | None = None, stream: TextIO | None = None) -> None:
    """Configure structlog from the ``logging`` config section.

    ``level`` overrides the configured level; output goes to ``stream`` or stderr.
    """
    settings = get_config().logging
    log_level = getattr(logging, (level or settings.level or "INFO").upper(), logging.INFO)

    renderer: structlog.types.Processor
    if settings.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=stream is None and sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )


@contextmanager
def bind_run_context(**values: Any) -> Iterator[None]:
    """Attach ``values`` (agent id, mode) to every log event inside the block."""
    tokens = structlog.contextvars.bind_contextvars(**values)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance.

    Args:
        name: Optional logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
