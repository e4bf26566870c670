"""
structlog setup for the engine.

Every tenant-scoped operation runs inside ``tenant_context`` so that log lines
emitted anywhere below it carry the ``tenant_id`` field.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Iterator

import structlog


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and output format (json | text)."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        cache_logger_on_first_use=False,
    )


@contextmanager
def tenant_context(tenant_id: uuid.UUID, operation: str) -> Iterator[None]:
    with structlog.contextvars.bound_contextvars(tenant_id=str(tenant_id), operation=operation):
        yield
