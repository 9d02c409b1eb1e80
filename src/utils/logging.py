"""Structured logging configuration using structlog."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Optional

import structlog

# Client libraries that flood DEBUG output with connection chatter
NOISY_LOGGERS = ("aiohttp", "asyncio", "asyncpg", "urllib3")


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    correlation_id: Optional[str] = None,
) -> structlog.BoundLogger:
    """Configure structlog on top of standard library logging.

    JSON output is meant for the scheduler's log collector, console output for
    interactive reruns. Records of the client libraries in NOISY_LOGGERS are
    never emitted below WARNING.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: 'json' or 'console'
        correlation_id: Optional ID bound to every record of this process

    Returns:
        Root logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if correlation_id:
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    return structlog.get_logger()


@contextmanager
def run_context(**values: Any) -> Iterator[None]:
    """Bind values to every record logged inside the block, by any logger.

    Used to tag everything a batch run logs (fetch driver, document archiver,
    clients) with its batch run ID without threading loggers through calls.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a logger, optionally named after its component."""
    return structlog.get_logger(name) if name else structlog.get_logger()
