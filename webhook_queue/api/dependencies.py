"""
Shared FastAPI dependencies.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from webhook_queue.queue.service import WebhookQueue


def get_webhook_queue(request: Request) -> WebhookQueue:
    """
    Get the queue attached to the application.

    Raises:
        HTTPException: If the application has not finished starting up.
    """
    webhook_queue = getattr(request.app.state, "webhook_queue", None)
    if webhook_queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook queue not initialized",
        )
    return webhook_queue


QueueDep = Annotated[WebhookQueue, Depends(get_webhook_queue)]
