"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from webhook_queue.constants import JobStatus


class WebhookJobResponse(BaseModel):
    """Webhook job details."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: str
    topic: str
    intent: str
    status: JobStatus
    attempts: int
    external_id: str | None = None
    dedup_entity_id: str | None = None
    payload: dict[str, Any] | None = None
    error: str | None = None
    next_run_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    event_time: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TenantSnapshotResponse(BaseModel):
    """Recent jobs and status counts for the authenticated tenant."""

    tenant_id: str
    jobs: list[WebhookJobResponse]
    counts: dict[str, int] = Field(
        default_factory=dict, description="Job count per status"
    )


class DeadLetterResponse(BaseModel):
    """Permanently failed jobs."""

    jobs: list[WebhookJobResponse]
    total: int


class WakeResponse(BaseModel):
    """Result of a manual sweep."""

    tenants_woken: int
    tenants: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    queue_size: int | None = None
    timestamp: datetime
