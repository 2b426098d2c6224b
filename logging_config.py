"""
Centralized logging configuration for the projection engine.

All modules obtain their logger through get_logger(__name__) so that the
engine emits structured events with consistent formatting. Nothing is
configured at import time; callers (the CLI, a web handler, tests) decide the
level and renderer through configure_logging().
"""
import logging
import sys
from typing import Optional

import structlog
from structlog.types import FilteringBoundLogger

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def configure_logging(level: str = "INFO",
                      format_json: bool = False,
                      include_timestamp: bool = True,
                      extra_processors: Optional[list] = None) -> None:
    """
    Configure structlog for the engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_json: If True, output JSON lines; otherwise human-readable
        include_timestamp: Include an ISO timestamp in each event
        extra_processors: Additional structlog processors to include

    Raises:
        ValueError: If level is not one of LOG_LEVELS
    """
    if not isinstance(level, str) or level.upper() not in LOG_LEVELS:
        raise ValueError(f"Unknown log level {level!r}; expected one of {', '.join(LOG_LEVELS)}")
    log_level = getattr(logging, level.upper())

    # Engine output (JSON results) goes to stdout, so logs go to stderr
    logging.basicConfig(
        level=log_level,
        stream=sys.stderr,
        format="%(message)s",
        force=True,
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if extra_processors:
        processors.extend(extra_processors)

    if format_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """
    Get a structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        structlog logger bound to the given name
    """
    return structlog.get_logger(name)
