"""Structured logging configuration using structlog."""

from __future__ import annotations

import logging
import sys
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger


def setup_logging(level: str = "warning") -> None:
    """Configure structlog for JSON output to stderr.

    Report output goes to stdout, so diagnostics never interleave with it.
    """
    log_level = getattr(logging, level.upper(), logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> FilteringBoundLogger:
    """Get a logger bound with a component name."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component))
