"""Logging configuration for Commit Tracer."""

import logging
import sys

import structlog


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """Configure structlog to render key-value events on stderr.

    Args:
        level: Minimum level name (e.g. INFO, WARNING)
        verbose: Force DEBUG level
    """
    min_level = logging.DEBUG if verbose else logging.getLevelName(level.upper())
    if not isinstance(min_level, int):
        min_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
