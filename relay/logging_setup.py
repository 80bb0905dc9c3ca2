"""
Structured JSON logging with structlog.
One line per event; event names are snake_case, context goes in key=value pairs.
Per-webhook context (destination, request id) is bound once in contextvars and
merged into every line logged while that request is handled.
"""

import logging
import uuid

import structlog

from relay.config import settings

_configured = False


def _add_service(_, __, event_dict):
    event_dict.setdefault("service", settings.SERVICE_NAME)
    return event_dict


def _level_number(level: str | None) -> int:
    lvl = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    return lvl if isinstance(lvl, int) else logging.INFO


def configure_logging(level: str | None = None):
    global _configured
    if _configured:
        return
    lvl = _level_number(level)
    logging.basicConfig(level=lvl, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_service,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    _configured = True


def bind_webhook_context(destination: str, request_id: str | None = None) -> str:
    """Start a fresh log context for one inbound webhook; returns the request id used."""
    request_id = request_id or uuid.uuid4().hex[:12]
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(destination=destination, request_id=request_id)
    return request_id


def get_logger():
    return structlog.get_logger(settings.SERVICE_NAME)
