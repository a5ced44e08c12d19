"""
Database module.
Contains database connection, models, and repository implementations.
"""

from webhook_queue.db.connection import (
    close_db,
    create_session_factory,
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)
from webhook_queue.db.models import Base, WebhookJob, utcnow

__all__ = [
    "get_session_factory",
    "create_session_factory",
    "session_scope",
    "get_engine",
    "init_db",
    "close_db",
    "WebhookJob",
    "Base",
    "utcnow",
]
