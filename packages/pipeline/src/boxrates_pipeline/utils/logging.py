"""
utils/logging.py — structlog configuration for the pipeline workers.

Sets up structured logging with JSON or human-readable console output.
Call configure_logging() once at process startup (done automatically by
the CLI and scripts).

Usage:
    from boxrates_pipeline.utils.logging import configure_logging, get_logger

    configure_logging("INFO", "json")
    log = get_logger("boxrates_pipeline.pipelines.reconcile")
    log.info("reconcile_start", tariff_date="2025-11-12")

    # Bind cycle-wide context for all subsequent log calls:
    log = log.bind(trigger="scheduled", tariff_date="2025-11-12")
    log.info("entries_fetched", count=87)
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def configure_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """
    Configure structlog for the worker process.

    Should be called once at startup. Idempotent.

    Args:
        log_level:  "DEBUG", "INFO", ...
        log_format: "json" | "console"
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Standard library logging integration (SQLAlchemy, httpx)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **initial_values: Any) -> structlog.BoundLogger:
    """
    Return a bound structlog logger with optional initial context values.

    Args:
        name:             Logger name (conventionally the module __name__).
        **initial_values: Key-value pairs merged into every log record.
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger  # type: ignore[return-value]
