"""
structlog setup for the bookstore service.

Events are rendered as one JSON object per line on stdout. Request-scoped
values (correlation id, method, path) live in structlog contextvars so that
every repository and service log line emitted while handling a request
carries them without passing loggers around.
"""
import logging
import sys
from typing import Optional

import structlog


# driver loggers and the level they are clamped to
_NOISY_LOGGERS = {
    "pymongo": logging.INFO,
    "pika": logging.WARNING,
    "werkzeug": logging.WARNING,
}


def configure_logging(service_name: str, log_level: str = "INFO") -> structlog.stdlib.BoundLogger:
    """
    Route structlog through the stdlib root logger with JSON rendering

    Args:
        service_name: bound as `service` on the returned logger
        log_level: DEBUG, INFO, WARNING or ERROR; unknown names mean INFO

    Returns:
        Logger bound to the service name
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name, floor in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, floor))

    return structlog.get_logger().bind(service=service_name)


def bind_request_context(correlation_id: Optional[str], **values) -> None:
    """Start a fresh log context for the current request"""
    structlog.contextvars.clear_contextvars()
    if correlation_id:
        values["correlation_id"] = correlation_id
    structlog.contextvars.bind_contextvars(**values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
