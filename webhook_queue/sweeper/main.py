"""
Periodic sweep for due webhook jobs.

Reschedule timers live in process memory, so a restart or crash loses them
while jobs sit queued in the database. The sweeper periodically wakes every
tenant with due jobs so that nothing stays queued forever.

It runs inside the process that registers the handlers: a process without
handlers would dead-letter every job it claims.
"""

import asyncio
import logging

from webhook_queue.config import get_settings
from webhook_queue.queue.service import WebhookQueue
from webhook_queue.types.job import WakeResult

logger = logging.getLogger(__name__)


class Sweeper:
    """
    Background loop calling ``WebhookQueue.wake_due_jobs``.

    Errors are logged and the loop keeps going; the next sweep retries.
    """

    def __init__(self, webhook_queue: WebhookQueue, interval_seconds: float | None = None):
        """
        Initialize the sweeper.

        Args:
            webhook_queue: The queue whose due tenants are woken.
            interval_seconds: Seconds between sweeps.
        """
        settings = get_settings()
        self.queue = webhook_queue
        self.interval = interval_seconds or settings.webhook_sweep_interval_seconds
        self._stopped = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """
        Run the sweep loop until stop() is called.

        A stop requested before the loop got scheduled still counts, so a
        stopped sweeper never starts again.
        """
        if self._stopped.is_set():
            logger.info("Sweeper already stopped, not starting")
            return

        logger.info(f"Sweeper starting with interval {self.interval}s")
        self._running = True

        try:
            while not self._stopped.is_set():
                try:
                    await self.run_once()
                except Exception as e:
                    logger.exception(f"Error in sweeper loop: {e}")

                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False

        logger.info("Sweeper stopped")

    async def stop(self) -> None:
        """Stop the sweep loop after the current sweep."""
        logger.info("Sweeper stopping")
        self._stopped.set()

    async def run_once(self) -> WakeResult:
        """
        Run a single sweep (for testing or cron-style execution).

        Returns:
            The tenants that were woken.
        """
        return await self.queue.wake_due_jobs()
