"""Structured logging setup"""

import logging
import sys
import structlog


def configure_logging(debug: bool = False) -> None:
    """
    Configure structlog for the whole process.

    Debug mode renders human readable console lines, otherwise one JSON document per line.

    Args:
        debug: Lower the level to DEBUG and use the console renderer.
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str = None):
    """Get a structlog logger"""
    return structlog.get_logger(name)
