"""
Structured logging setup.

aclapi logs through structlog on top of the standard library logging
module. Call configure_logging() once at process start; modules obtain
loggers with get_logger(__name__) and bind per-operation context
(engine, ruleid, syncid) as they go.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(level: str = "info", json_output: bool = False) -> None:
    """
    Configure structlog and stdlib logging for the process.

    Args:
        level: Minimum level name ("debug", "info", ...)
        json_output: Render JSON lines instead of the console renderer
    """
    renderer: Any
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
