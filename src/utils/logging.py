"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Any, Optional

import structlog

# Third-party loggers that are only interesting when they fail
_NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    run_id: Optional[str] = None,
) -> structlog.BoundLogger:
    """Configure structured logging for a run.

    Args:
        log_level: Log level (DEBUG, INFO, WARN, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
        run_id: Optional identifier bound to every event of this run

    Returns:
        Configured logger instance
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger("manifest_archiver")
    if run_id:
        structlog.contextvars.bind_contextvars(run_id=run_id)
    return logger


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a logger instance, optionally named after a component."""
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
