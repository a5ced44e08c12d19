"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from webhook_queue.observability.logging import log_context, setup_logging
from webhook_queue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from webhook_queue.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "log_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
