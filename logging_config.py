"""
Logging Configuration

Centralized logging configuration for the orbit transforms project.
All modules should use this logger for consistent, structured output.

Usage:
    from logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Window computed", object_id="earth", samples=3600)
    logger.warning("Initial position may be off orbit")
    logger.error("Prefetch failed", exc_info=True)

Environment:
    ORBIT_LOG_LEVEL   DEBUG | INFO | WARNING | ERROR (default INFO)
    ORBIT_LOG_JSON    render JSON lines instead of console output
"""

import logging
import os
import sys
import time
from typing import Optional

import structlog

# Default logging format for the stdlib handlers structlog writes through
LOG_FORMAT = "%(message)s"


def configure_logging(
    level: Optional[int] = None,
    log_file: Optional[str] = None,
    json_logs: Optional[bool] = None,
) -> None:
    """
    Configure logging for the entire application.

    Parameters
    ----------
    level : int, optional
        Logging level (e.g., logging.DEBUG). Defaults to ORBIT_LOG_LEVEL.
    log_file : str, optional
        Path to log file. If None, logs only to console.
    json_logs : bool, optional
        Render JSON lines. Defaults to ORBIT_LOG_JSON.
    """
    if level is None:
        level = getattr(logging, os.getenv("ORBIT_LOG_LEVEL", "INFO").upper(), logging.INFO)
    if json_logs is None:
        json_logs = os.getenv("ORBIT_LOG_JSON", "false").lower() in ("1", "true", "yes")

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
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
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Parameters
    ----------
    name : str
        Name of the logger (typically __name__)

    Returns
    -------
    structlog.stdlib.BoundLogger
        Configured logger instance
    """
    return structlog.get_logger(name)


def log_performance(logger, operation: str, duration_ms: float, **fields) -> None:
    """
    Log how long an operation took, louder the slower it was.

    Below 100 ms the record is DEBUG, below one second INFO, WARNING above.
    """
    if duration_ms > 1000:
        emit = logger.warning
    elif duration_ms > 100:
        emit = logger.info
    else:
        emit = logger.debug

    emit(
        f"⏱️  {operation} took {duration_ms:.1f}ms",
        operation=operation,
        duration_ms=round(duration_ms, 3),
        **fields,
    )


class Timer:
    """Wall-clock stopwatch in milliseconds."""

    def __init__(self):
        self._start = time.perf_counter()

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0


# Configure default logging on module import
configure_logging()
