"""
Webhook job monitoring routes.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from webhook_queue.api.auth import AuthenticatedUser, CurrentUser, require_scope
from webhook_queue.api.dependencies import QueueDep
from webhook_queue.constants import API_V1_PREFIX, SCOPE_QUEUE_WAKE
from webhook_queue.types.api import (
    DeadLetterResponse,
    TenantSnapshotResponse,
    WakeResponse,
    WebhookJobResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/webhook-jobs", tags=["Webhook Jobs"])


@router.get(
    "",
    response_model=TenantSnapshotResponse,
    summary="Tenant job snapshot",
    description="Most recent webhook jobs and per-status counts for the authenticated tenant.",
)
async def get_tenant_snapshot(
    current_user: CurrentUser,
    webhook_queue: QueueDep,
    limit: int = Query(default=25, ge=1, le=100),
) -> TenantSnapshotResponse:
    """
    Get a snapshot of the tenant's webhook jobs.

    Args:
        current_user: Authenticated caller.
        webhook_queue: The application queue.
        limit: Number of recent jobs to return.

    Returns:
        TenantSnapshotResponse with recent jobs and counts.
    """
    snapshot = await webhook_queue.tenant_snapshot(current_user.tenant_id, limit=limit)

    return TenantSnapshotResponse(
        tenant_id=snapshot.tenant_id,
        jobs=[WebhookJobResponse.model_validate(job) for job in snapshot.recent],
        counts=snapshot.counts,
    )


@router.get(
    "/dead-letter",
    response_model=DeadLetterResponse,
    summary="List dead-letter jobs",
    description="Permanently failed webhook jobs for the authenticated tenant, newest first.",
)
async def list_dead_letter_jobs(
    current_user: CurrentUser,
    webhook_queue: QueueDep,
    limit: int = Query(default=50, ge=1, le=500),
) -> DeadLetterResponse:
    """List the tenant's failed jobs."""
    jobs = await webhook_queue.dead_letter_jobs(limit=limit, tenant_id=current_user.tenant_id)

    return DeadLetterResponse(
        jobs=[WebhookJobResponse.model_validate(job) for job in jobs],
        total=len(jobs),
    )


@router.post(
    "/wake",
    response_model=WakeResponse,
    summary="Wake tenants with due jobs",
    description="Trigger a drain for every tenant with due jobs. Intended for an external cron.",
)
async def wake_due_jobs(
    current_user: Annotated[AuthenticatedUser, Depends(require_scope(SCOPE_QUEUE_WAKE))],
    webhook_queue: QueueDep,
) -> WakeResponse:
    """
    Run one sweep over due jobs.

    Raises:
        HTTPException: If this process has no handlers to run the jobs with.
    """
    if len(webhook_queue.registry) == 0:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No webhook handlers registered in this process",
        )

    result = await webhook_queue.wake_due_jobs()

    logger.info(
        "Manual sweep requested",
        extra={"tenant_id": current_user.tenant_id, "tenants_woken": result.tenants_woken},
    )

    return WakeResponse(tenants_woken=result.tenants_woken, tenants=result.tenants)
