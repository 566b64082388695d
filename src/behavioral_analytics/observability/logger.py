"""Structured JSON logging with analysis_id support.

Uses structlog for structured logging with JSON output.
Every log entry includes an analysis_id so that all lines written by one
detector run can be correlated.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any

import structlog

_analysis_id: ContextVar[str] = ContextVar("analysis_id", default="")


def get_analysis_id() -> str:
    """Current analysis ID, created on first use."""
    aid = _analysis_id.get()
    if not aid:
        aid = str(uuid.uuid4())
        _analysis_id.set(aid)
    return aid


def set_analysis_id(analysis_id: str) -> None:
    _analysis_id.set(analysis_id)


def new_analysis_id() -> str:
    """Generate and set a new analysis ID."""
    aid = str(uuid.uuid4())
    _analysis_id.set(aid)
    return aid


def _add_analysis_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor: add analysis_id to every log entry."""
    event_dict["analysis_id"] = get_analysis_id()
    return event_dict


def setup_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structured logging for the engine.

    Stdlib loggers (``logging.getLogger(__name__)`` in every module) are
    routed through the same structlog processors.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format: "json" for production, "console" for development.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_analysis_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *shared],
    ))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(log_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for a module."""
    return structlog.get_logger(name)
