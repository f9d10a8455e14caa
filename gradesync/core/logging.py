"""
core/logging.py
---------------
structlog setup for the gateway, the class database router and the
conversion pipeline.

Events are key-value pairs (class_name, database, sheet_name, session_id,
path) rather than formatted strings:
  DEBUG=true  → coloured console lines, tracebacks rendered inline
  DEBUG=false → one JSON object per line, exc_info flattened to a string

httpx request lines and SQLAlchemy statements are silenced outside DEBUG.
"""

import logging
import sys
from typing import Optional

import structlog

from gradesync.core.config import Settings, settings as default_settings


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or default_settings
    log_level = logging.DEBUG if settings.DEBUG else logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    if not settings.DEBUG:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderers = (
        [structlog.dev.ConsoleRenderer()]
        if settings.DEBUG
        else [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    )

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__):
    return structlog.get_logger(name)
