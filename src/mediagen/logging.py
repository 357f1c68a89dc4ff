"""Logging configuration for the generation service."""

from __future__ import annotations

import logging

import structlog


def configure_logging(level: int = logging.INFO) -> None:
    """Configure stdlib logging and structlog JSON rendering."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def bind_task_context(task_id: str, **values: str) -> None:
    """Attach task identifiers to structlog context for the current coroutine."""
    structlog.contextvars.bind_contextvars(task_id=task_id, **values)


def clear_task_context() -> None:
    structlog.contextvars.clear_contextvars()
