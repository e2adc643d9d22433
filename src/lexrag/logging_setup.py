"""Structured logging via structlog on top of the stdlib logging backend."""

from __future__ import annotations

import logging

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """Configure stdlib logging and structlog once per process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...).
        json: Render JSON lines instead of the human-readable console format.
    """
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format="%(message)s")

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
