"""Structured diagnostics for farm.

Everything here goes to stderr; stdout is reserved for result records.

    from farm.logging import configure_logging, get_logger

    configure_logging(debug=True)
    logger = get_logger("scheduler")
    logger.debug("dispatch", host="web1", slot=0)
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def configure_logging(debug: bool = False) -> None:
    """Configure structlog once at startup.

    Without ``debug`` only warnings and errors are rendered.
    """
    level = logging.DEBUG if debug else logging.WARNING
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> Any:
    """Get a logger bound to a component name.

    The logger resolves its configuration on every call, so module-level
    loggers pick up ``configure_logging`` even when created before it.
    """
    return structlog.get_logger(component=component, **initial_context)
