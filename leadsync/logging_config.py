"""
Structured logging for the API, the Celery worker and the scripts.

Every event is a snake_case name plus key/value context. Batch runs bind
`job_id`, `pipeline` and `action` through structlog contextvars so each
line of a bulk job can be correlated. Phone numbers never reach the log
in full.
"""

import logging
import sys
from typing import Any

import structlog

from leadsync.config import config

SERVICE_NAME = "leadsync"

# Event keys that may carry a customer phone number.
PHONE_KEYS = ("destination", "phone", "mobile", "number")

# Libraries that log every request, statement or task receipt at INFO.
QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "urllib3",
    "twilio.http_client",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "celery.worker.strategy",
)


def mask_phone_numbers(logger, method_name: str, event_dict: dict) -> dict:
    """Keep only the last four digits of any phone-like value."""
    for key in PHONE_KEYS:
        value = event_dict.get(key)
        if value is None:
            continue
        digits = "".join(ch for ch in str(value) if ch.isdigit())
        event_dict[key] = f"***{digits[-4:]}" if len(digits) > 4 else digits
    return event_dict


def add_service(logger, method_name: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("store_backend", config.LEAD_STORE_BACKEND)
    return event_dict


def configure_logging(debug: bool = None, level: str = None):
    """
    Route stdlib and structlog output to stdout.

    Console rendering when `debug` (defaults to config.DEBUG), JSON lines
    otherwise.
    """
    debug = config.DEBUG if debug is None else debug
    level = (level or config.LOG_LEVEL).upper()

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_service,
        mask_phone_numbers,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    processors.append(structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> Any:
    """
    Usage:
        logger = get_logger(__name__)
        logger.info("lead_assigned", lead_id="abc", assignee="Priya")
    """
    return structlog.get_logger(name)


configure_logging()

logger = get_logger(SERVICE_NAME)
