"""
Structured logging for the back-office service.

structlog is configured once at startup. Correlation fields (request id,
acting user, and the reconciliation operation in progress) are kept in
structlog's context variables, so every line logged while handling a
request or running a sweep carries them without passing loggers around.
"""

import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Iterator, Optional
from uuid import uuid4

import structlog
from structlog.types import Processor

from storefront.core.config import get_settings

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "botocore", "boto3")


def configure_logging() -> None:
    """
    Configure structlog and the standard library root logger.

    Development gets the coloured console renderer, every other
    environment one JSON object per line.
    """
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_development:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind the request id for the current request, generating one if absent."""
    request_id = request_id or str(uuid4())
    structlog.contextvars.bind_contextvars(request_id=request_id)
    return request_id


def get_request_id() -> str:
    return structlog.contextvars.get_contextvars().get("request_id", "")


def set_user_id(user_id: Optional[str]) -> None:
    """Bind the authenticated caller; None unbinds it."""
    if user_id is None:
        structlog.contextvars.unbind_contextvars("user_id")
    else:
        structlog.contextvars.bind_contextvars(user_id=user_id)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def bound_operation(operation: str, **context: Any) -> Iterator[None]:
    """
    Tag every log line inside the block with ``operation`` and ``context``.

    Used by reconciliation runs so retries and per-invoice lines can be
    grouped by the operation that produced them.
    """
    with structlog.contextvars.bound_contextvars(operation=operation, **context):
        yield


@contextmanager
def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    slow_ms: float = 500.0,
    **context: Any,
) -> Iterator[None]:
    """
    Log how long a block took; blocks slower than ``slow_ms`` log a warning.

    Example:
        >>> with log_performance(logger, "invoice_sweep"):
        ...     await service.cleanup_empty_period_invoices()
    """
    started = time.perf_counter()
    try:
        yield
    except BaseException as e:
        logger.error(
            "Operation failed",
            operation=operation,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            error_type=type(e).__name__,
            **context,
        )
        raise

    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    log = logger.warning if duration_ms > slow_ms else logger.info
    log("Operation completed", operation=operation, duration_ms=duration_ms, **context)
