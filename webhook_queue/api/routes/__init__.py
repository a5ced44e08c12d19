"""
API routes module.
"""

from webhook_queue.api.routes.health import router as health_router
from webhook_queue.api.routes.jobs import router as jobs_router

__all__ = ["jobs_router", "health_router"]
