"""structlog setup shared by the API, the Celery tasks and the worker.

Production renders JSON lines, development a colorized console. Library
modules only call ``structlog.get_logger()``; user and adapter can be bound
for a whole scan with ``bind_ingestion_context``::

    bind_ingestion_context("u-1", "background")
    logger.info("sms_inserted", amount=500.0)   # carries user_id and adapter
"""

import logging
import sys

import structlog

# Chatty third-party loggers capped at WARNING
_NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "celery.redirected")

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def setup_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: JSON lines when True, console renderer otherwise.
    """
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_ingestion_context(user_id: str, adapter: str) -> None:
    structlog.contextvars.bind_contextvars(user_id=user_id, adapter=adapter)


def clear_ingestion_context() -> None:
    structlog.contextvars.clear_contextvars()
