"""structlog configuration shared by the API server and scripts."""

import logging
import sys

import structlog

from pricewatch.config import settings


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure stdlib logging and structlog.

    Args:
        level: Log level name, defaults to settings.LOG_LEVEL
        json_logs: Render JSON lines instead of the console renderer,
            defaults to settings.LOG_JSON
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    render_json = settings.LOG_JSON if json_logs is None else json_logs

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        stream=sys.stdout,
    )
    # APScheduler logs every tick at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if render_json
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
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
