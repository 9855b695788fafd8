"""structlog setup.

Learn: Every module does `logger = structlog.get_logger()` and logs
dotted event names with keyword context. This module only decides how
those events are rendered: JSON lines in production, coloured console
output in development. The request id bound by RequestIdMiddleware is
merged in from contextvars, so every line of a request is correlated.
"""

import logging

import structlog

from tenantauth.config import Settings


def configure_logging(settings: Settings) -> None:
    """Configure structlog for the process. Safe to call more than once."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )
