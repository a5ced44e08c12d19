"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from webhook_queue.db.models import WebhookJob

# Async callable receiving a job payload
WebhookHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class WebhookJobRequest:
    """
    A unit of webhook work handed to the queue by the transport layer.

    ``run`` is an optional fallback handler, registered under ``intent`` only
    if nothing is registered yet. Jobs relying on it cannot be replayed by
    another process or after a restart.
    """

    tenant_id: str
    topic: str
    intent: str
    payload: Any
    external_id: str | None = None
    dedup_entity_id: str | None = None
    event_time: datetime | None = None
    run: WebhookHandler | None = field(default=None, repr=False)


class EnqueueResult(StrEnum):
    """Outcome of an enqueue request."""

    CREATED = "created"
    DUPLICATE = "duplicate"  # same delivery already recorded
    COLLAPSED = "collapsed"  # same entity already in flight
    REJECTED = "rejected"


class DrainStatus(StrEnum):
    """How a drain pass ended."""

    DRAINED = "drained"
    ALREADY_RUNNING = "already_running"
    LOCK_HELD = "lock_held"
    ABORTED = "aborted"


@dataclass
class DrainResult:
    """Summary of one drain pass for a tenant."""

    tenant_id: str
    status: DrainStatus = DrainStatus.DRAINED
    depth: int = 0
    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    remaining: int = 0
    rescheduled: bool = False


@dataclass
class WakeResult:
    """Result of a sweep over due jobs."""

    tenants_woken: int
    tenants: list[str] = field(default_factory=list)


@dataclass
class TenantSnapshot:
    """Recent jobs and per-status counts for one tenant."""

    tenant_id: str
    recent: list["WebhookJob"] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
