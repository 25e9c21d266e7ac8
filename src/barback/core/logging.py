"""Structured logging: structlog with request and session context.

JSON lines outside development, a console renderer in development. Every
event carries whatever is bound in the current context: the request id
from RequestIDMiddleware and, inside a conversation turn, the session id.
"""

import contextlib
import contextvars
import logging
import logging.config
import os
from typing import Any, Iterator

import structlog

# Context var for request ID (thread-safe for async)
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default="no-request-id"
)

# Chatty third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "aiosqlite": "WARNING",
}


def get_request_id() -> str:
    """Get current request ID from context."""
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    """Set request ID for current context."""
    request_id_var.set(request_id)
    structlog.contextvars.bind_contextvars(request_id=request_id)


def clear_log_context() -> None:
    """Drop everything bound by a previous request on this context."""
    structlog.contextvars.clear_contextvars()
    request_id_var.set("no-request-id")


@contextlib.contextmanager
def bound_log_context(**values: Any) -> Iterator[None]:
    """Bind values to every log event emitted inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield


def _renderer(environment: str):
    if environment == "development":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_logging(level: str = "INFO", environment: str | None = None) -> None:
    """Configure structlog and route stdlib logging through it."""
    environment = environment or os.getenv("ENVIRONMENT", "development")
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            _renderer(environment),
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn, sqlalchemy and httpx log through the stdlib
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processor": _renderer(environment),
                    "foreign_pre_chain": shared_processors,
                },
            },
            "handlers": {
                "default": {
                    "level": level,
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "stream": "ext://sys.stdout",
                },
            },
            "loggers": {
                "": {
                    "handlers": ["default"],
                    "level": level,
                    "propagate": True,
                },
                **{name: {"level": cap} for name, cap in QUIET_LOGGERS.items()},
            },
        }
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structlog logger bound to the module name."""
    return structlog.get_logger(name).bind(logger=name)
