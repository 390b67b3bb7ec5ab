"""
structlog configuration for the sweep worker.

Every line is one JSON object on stdout. While a job is being processed its
sweep_id and user_id are bound as context variables and merged into each
event, so a single sweep can be followed across modules.
"""

import logging
import sys

import structlog
from structlog.stdlib import LoggerFactory

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "psycopg.pool")


def setup_logging(log_level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_sweep_context(sweep_id: str, user_id: str) -> None:
    structlog.contextvars.bind_contextvars(sweep_id=sweep_id, user_id=user_id)


def clear_sweep_context() -> None:
    structlog.contextvars.unbind_contextvars("sweep_id", "user_id")


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
