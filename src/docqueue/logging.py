"""Structured logging: correlation id per request, queue context per call."""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import AbstractContextManager
from contextvars import ContextVar
from typing import Any

import structlog

__all__ = [
    "bind_queue_context",
    "configure_logging",
    "correlation_id_var",
    "get_logger",
    "new_correlation_id",
]

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def new_correlation_id(incoming: str = "") -> str:
    """Set the correlation ID for the current context.

    Reuses *incoming* (an upstream ``x-correlation-id``) when present.
    """
    cid = incoming or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def bind_queue_context(**context: Any) -> AbstractContextManager[None]:
    """Bind doctor/session/day identifiers for the duration of a `with` block."""
    return structlog.contextvars.bound_contextvars(
        **{k: v for k, v in context.items() if v is not None}
    )


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    cid = correlation_id_var.get("")
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def configure_logging(*, json_output: bool = True, level: str = "INFO") -> None:
    """Configure structlog and route stdlib ``logging`` through it.

    Args:
        json_output: True for JSON (production), False for console (dev).
        level: Log level string.
    """
    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_correlation_id,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[level.upper()]
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Module loggers use logging.getLogger(__name__); give them the same shape.
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                *shared,
                structlog.processors.format_exc_info,
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())


def get_logger(**kwargs: Any) -> structlog.BoundLogger:
    """Get a bound logger with optional initial context."""
    return structlog.get_logger(**kwargs)  # type: ignore[no-any-return]
