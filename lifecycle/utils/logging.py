"""Structured logging with structlog and correlation IDs.

Two renderers:
- "json": one JSON object per line, for log shipping and audit replay
- "console": colored key/value output for local development

A correlation ID lives in a contextvar and is stamped onto every entry,
so all transitions driven by one upstream event (a webhook, an admin
action, a fill report) can be traced together. The CLI scopes it to the
machine id while it checks a snapshot.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

_RENDERERS: dict[str, type[Processor]] = {
    "json": structlog.processors.JSONRenderer,
    "console": structlog.dev.ConsoleRenderer,
}


def set_correlation_id(cid: str) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id.set(cid)


def get_correlation_id() -> str:
    return _correlation_id.get()


@contextmanager
def correlation_scope(cid: str) -> Iterator[None]:
    """Bind a correlation ID for the duration of a block, then restore."""
    token = _correlation_id.set(cid)
    try:
        yield
    finally:
        _correlation_id.reset(token)


def _stamp_correlation_id(
    _logger: WrappedLogger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    cid = _correlation_id.get()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        _stamp_correlation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    stream: TextIO | None = None,
) -> None:
    """Route structlog through one stdlib root handler.

    Machine loggers are resolved per call rather than cached, so calling
    this again (the CLI does, once settings load) takes effect for loggers
    that were created at import time.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: "json" or "console"; anything else renders as console.
        stream: Output stream, stderr when omitted.
    """
    renderer = _RENDERERS.get(log_format, structlog.dev.ConsoleRenderer)()

    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structlog logger."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
