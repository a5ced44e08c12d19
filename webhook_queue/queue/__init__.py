"""
Webhook queue module.
Contains the queue service, handler registry, locks and retry policy.
"""

from webhook_queue.queue.errors import PayloadRejectedError, QueueError, sanitize_error_message
from webhook_queue.queue.handlers import HandlerRegistry
from webhook_queue.queue.locks import (
    AdvisoryLock,
    LocalAdvisoryLock,
    PostgresAdvisoryLock,
    TenantGuard,
    create_advisory_lock,
    tenant_lock_key,
)
from webhook_queue.queue.retry import compute_backoff_ms, compute_pending_cooldown_ms
from webhook_queue.queue.service import WebhookQueue

__all__ = [
    "WebhookQueue",
    "HandlerRegistry",
    "QueueError",
    "PayloadRejectedError",
    "sanitize_error_message",
    "AdvisoryLock",
    "LocalAdvisoryLock",
    "PostgresAdvisoryLock",
    "TenantGuard",
    "create_advisory_lock",
    "tenant_lock_key",
    "compute_backoff_ms",
    "compute_pending_cooldown_ms",
]
