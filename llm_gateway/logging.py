"""Structured logging helpers."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager

import structlog


def configure_logging(level: int | str = logging.INFO) -> None:
    if isinstance(level, str):
        level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler()],
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def request_context(**fields: object) -> AbstractContextManager:
    """Bind ``fields`` to every log event emitted inside the block."""

    return structlog.contextvars.bound_contextvars(
        **{key: value for key, value in fields.items() if value is not None}
    )


logger = structlog.get_logger()

__all__ = ["configure_logging", "logger", "request_context"]
