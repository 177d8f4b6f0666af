"""
Structured logging setup shared by the worker and the CLI.
"""

import logging
import sys

import structlog

from storyloom.core.config import settings


def configure_logging(json_logs: bool = None, level: str = None) -> None:
    """Configure structlog on top of the stdlib logging module"""
    json_logs = settings.log_json if json_logs is None else json_logs
    level = (level or settings.log_level).upper()

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
