from __future__ import annotations

import sys
from typing import TextIO

import structlog


def configure_logging(level: int = 20, *, stream: TextIO | None = None) -> None:
    """Structured console logging for the server and CLI entry points (20 = INFO)."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stdout),
        cache_logger_on_first_use=True,
    )
