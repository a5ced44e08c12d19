"""
Health check routes.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import Response

from webhook_queue import __version__
from webhook_queue.api.dependencies import QueueDep
from webhook_queue.observability.metrics import get_metrics
from webhook_queue.types.api import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API, the database and the queue backlog.",
)
async def health_check(webhook_queue: QueueDep) -> HealthResponse:
    """
    Perform a health check.

    Counting active jobs doubles as the database connectivity check.

    Returns:
        HealthResponse with service status.
    """
    db_status = "healthy"
    queue_size = None
    try:
        queue_size = await webhook_queue.queue_size()
    except Exception as e:
        logger.warning(f"Health check failed: {e}")
        db_status = "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        queue_size=queue_size,
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(webhook_queue: QueueDep) -> dict:
    """
    Kubernetes readiness probe endpoint.

    Returns:
        Ready status.
    """
    try:
        await webhook_queue.queue_size()
        return {"ready": True}
    except Exception as e:
        logger.warning(f"Readiness check failed: {e}")
        return {"ready": False}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """
    Kubernetes liveness probe endpoint.

    Returns:
        Alive status.
    """
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """
    Expose Prometheus metrics.

    Returns:
        Prometheus-formatted metrics.
    """
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
