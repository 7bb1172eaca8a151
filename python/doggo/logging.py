"""Structured logging for the API and the worker.

Every entry is one JSON object. Context bound for the current request or
task is merged into each event:

- request_id: correlation id (X-Request-ID, forwarded to title tasks)
- user_id: viewer, once the dependency layer has identified it
- conversation_id: bound by the chat pipeline
- path / method: request path (no query string) and HTTP method
- task_name / task_id: Celery task

Context lives in structlog's contextvars, so it follows the request across
``await`` points and into ``run_in_threadpool`` calls.

Usage:
    logger = get_logger(__name__)
    logger.info("attachment.uploaded", attachment_id=str(attachment.id))
"""

import logging
import sys

import structlog
from structlog.contextvars import (
    bind_contextvars,
    clear_contextvars,
    get_contextvars,
    merge_contextvars,
    unbind_contextvars,
)

from doggo.services.redact import scrub_forbidden_keys

_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "pypdf": logging.ERROR,
    "PIL": logging.WARNING,
}


def _shared_processors() -> list:
    return [
        merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        scrub_forbidden_keys,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(json_format: bool = True, level: int | str = logging.INFO) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        json_format: JSON lines when True, the coloured console renderer otherwise.
        level: Root log level, as a number or a name such as "DEBUG".
    """
    shared = _shared_processors()
    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# =============================================================================
# Request context
# =============================================================================


def set_request_context(
    request_id: str | None,
    *,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Start a fresh request context; anything bound earlier is dropped."""
    clear_contextvars()
    bind_contextvars(
        **{k: v for k, v in {"request_id": request_id, "path": path, "method": method}.items() if v}
    )


def set_user_id(user_id: str | None) -> None:
    if user_id:
        bind_contextvars(user_id=user_id)
    else:
        unbind_contextvars("user_id")


def set_conversation_id(conversation_id: str | None) -> None:
    if conversation_id:
        bind_contextvars(conversation_id=conversation_id)
    else:
        unbind_contextvars("conversation_id")


def get_request_id() -> str | None:
    return get_contextvars().get("request_id")


def clear_request_context() -> None:
    clear_contextvars()


# =============================================================================
# Task context
# =============================================================================


def configure_task_logging(
    request_id: str | None = None,
    task_name: str | None = None,
    task_id: str | None = None,
) -> None:
    """Bind Celery task context; call first thing in each task body.

    ``request_id`` is the id of the API request that enqueued the task, so
    worker entries correlate with the request that caused them.
    """
    clear_contextvars()
    bind_contextvars(
        **{
            k: v
            for k, v in {"request_id": request_id, "task_name": task_name, "task_id": task_id}.items()
            if v
        }
    )


def clear_task_context() -> None:
    clear_contextvars()
