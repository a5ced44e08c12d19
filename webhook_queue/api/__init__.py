"""
API module.
Contains FastAPI application, routes, and authentication.
"""

from webhook_queue.api.main import create_app, run

__all__ = ["create_app", "run"]
