"""Structured logging setup shared by every alert engine component."""

import logging
import sys

import structlog

from alert_engine.config import LoggingConfig


def configure_logging(config: LoggingConfig) -> None:
    """Route structlog through stdlib logging with JSON or console rendering."""
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=config.level)
    logging.getLogger().setLevel(config.level)

    renderer = (
        structlog.processors.JSONRenderer()
        if config.format == "json"
        else structlog.dev.ConsoleRenderer()
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
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
