"""
Structured logging for the webhook queue.

Modules log through the standard library (``logging.getLogger(__name__)``
with ``extra={...}``); ``setup_logging`` routes those records through
structlog so they come out as JSON (or console lines in development) with
the bound drain context, trace ids and extras merged in.

Payloads are customer data and never reach the log output, even when a
caller passes one in ``extra``.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry import trace

from webhook_queue.config import get_settings

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "aiosqlite", "asyncpg")

_REDACTED_KEYS = frozenset({"payload"})


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the current OpenTelemetry trace and span ids, if a span is recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def drop_payloads(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in _REDACTED_KEYS & event_dict.keys():
        del event_dict[key]
    return event_dict


def _renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structlog and the root logger.

    Args:
        log_level: Level name, defaults to ``settings.log_level``.
        log_format: ``json`` or ``console``, defaults to ``settings.log_format``.
    """
    settings = get_settings()
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    # ExtraAdder must run before drop_payloads so extras are filtered too
    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
        drop_payloads,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format or settings.log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind context variables for the duration of a block.

    Bindings live in contextvars, so concurrent asyncio tasks each see
    only their own. The drain loop binds ``tenant_id`` per pass and
    ``job_id``/``intent`` per job.

    Args:
        **kwargs: Key-value pairs to add to log context.
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
