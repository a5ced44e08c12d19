"""
Type definitions for the webhook queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from webhook_queue.types.api import (
    DeadLetterResponse,
    HealthResponse,
    TenantSnapshotResponse,
    WakeResponse,
    WebhookJobResponse,
)
from webhook_queue.types.job import (
    DrainResult,
    DrainStatus,
    EnqueueResult,
    TenantSnapshot,
    WakeResult,
    WebhookHandler,
    WebhookJobRequest,
)

__all__ = [
    # API types
    "WebhookJobResponse",
    "TenantSnapshotResponse",
    "DeadLetterResponse",
    "WakeResponse",
    "HealthResponse",
    # Job types
    "WebhookJobRequest",
    "WebhookHandler",
    "EnqueueResult",
    "DrainStatus",
    "DrainResult",
    "WakeResult",
    "TenantSnapshot",
]
