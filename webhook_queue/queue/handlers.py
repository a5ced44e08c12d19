"""
Webhook handler registry.

Handlers are keyed by intent and resolved when a job is claimed, never from
whatever callable came with the enqueue request. Handlers must be
idempotent: stuck-job recovery and retries can run them more than once for
the same payload.
"""

import logging
from typing import Callable

from webhook_queue.types.job import WebhookHandler

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """
    In-memory mapping of intent -> handler.

    Not persisted: every process must register its handlers on startup.
    Re-registering an intent replaces the previous handler.

    Example:
        registry = HandlerRegistry()

        @registry.handler("orders/create")
        async def handle_order_create(payload: dict) -> None:
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[str, WebhookHandler] = {}

    def register(self, intent: str, handler: WebhookHandler) -> None:
        """
        Register a handler for an intent, replacing any existing one.

        Args:
            intent: The logical handler key.
            handler: Async callable taking the job payload.
        """
        replaced = intent in self._handlers
        self._handlers[intent] = handler
        logger.info(
            f"Registered handler for intent: {intent}",
            extra={"intent": intent, "replaced": replaced},
        )

    def handler(self, intent: str) -> Callable[[WebhookHandler], WebhookHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(fn: WebhookHandler) -> WebhookHandler:
            self.register(intent, fn)
            return fn

        return decorator

    def register_if_absent(self, intent: str, handler: WebhookHandler | None) -> bool:
        """
        Register ``handler`` only when no handler exists for ``intent``.

        Returns:
            True if the handler was registered.
        """
        if handler is None or intent in self._handlers:
            return False
        self._handlers[intent] = handler
        logger.debug(
            "Registered enqueue-time handler (not restart-safe)",
            extra={"intent": intent},
        )
        return True

    def unregister(self, intent: str) -> None:
        self._handlers.pop(intent, None)

    def get(self, intent: str) -> WebhookHandler | None:
        """
        Get the handler for an intent.

        Returns:
            The handler or None if not registered.
        """
        return self._handlers.get(intent)

    def intents(self) -> list[str]:
        """List all registered intents."""
        return list(self._handlers.keys())

    def __contains__(self, intent: object) -> bool:
        return intent in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
