"""
Durable webhook job queue.

WebhookQueue ties the job store, the handler registry and per-tenant mutual
exclusion together:

    enqueue -> persist job -> trigger(tenant) -> drain_tenant
        guard -> recover stuck -> advisory lock -> claim/execute (batch)
        -> release -> reschedule itself while backlog remains

Drains run as fire-and-forget asyncio tasks owned by the queue. Reschedules
use loop timers, one per tenant, replaced on every pass and capped by a
recursion depth so a permanently failing handler cannot keep a tenant
spinning forever. ``wake_due_jobs`` restarts tenants whose timers were lost,
for example after a restart.
"""

import asyncio
import json
import logging
import random
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from webhook_queue.config import Settings, get_settings
from webhook_queue.constants import (
    NO_HANDLER_ERROR,
    SPAN_CLAIM_JOB,
    SPAN_DRAIN_TENANT,
    SPAN_ENQUEUE_JOB,
    SPAN_EXECUTE_JOB,
)
from webhook_queue.db.connection import session_scope
from webhook_queue.db.models import WebhookJob, utcnow
from webhook_queue.db.repository import JobRepository
from webhook_queue.observability.logging import log_context
from webhook_queue.observability.metrics import MetricsCollector, get_metrics
from webhook_queue.observability.tracing import get_tracer
from webhook_queue.queue.errors import PayloadRejectedError, sanitize_error_message
from webhook_queue.queue.handlers import HandlerRegistry, WebhookHandler
from webhook_queue.queue.locks import (
    AdvisoryLock,
    TenantGuard,
    tenant_lock_key,
)
from webhook_queue.queue.retry import compute_backoff_ms, compute_pending_cooldown_ms
from webhook_queue.types.job import (
    DrainResult,
    DrainStatus,
    EnqueueResult,
    TenantSnapshot,
    WakeResult,
    WebhookJobRequest,
)

logger = logging.getLogger(__name__)


class WebhookQueue:
    """
    Per-process front end of the durable webhook queue.

    All process-local state (handler registry, draining tenants, reschedule
    timers, in-flight drain tasks) lives on the instance, so several queues
    can coexist, e.g. one per test.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock: AdvisoryLock,
        registry: HandlerRegistry | None = None,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
        rng: random.Random | None = None,
    ):
        """
        Initialize the queue.

        Args:
            session_factory: Factory for sessions against the job store.
            lock: Cross-process advisory lock.
            registry: Handler registry. A fresh one is created if omitted.
            settings: Queue settings. Defaults to the application settings.
            metrics: Metrics collector. Defaults to the global collector.
            rng: Random source for retry jitter.
        """
        self._session_factory = session_factory
        self._lock = lock
        self.registry = registry or HandlerRegistry()
        self._settings = settings or get_settings()
        self._metrics = metrics or get_metrics()
        self._rng = rng or random.Random()

        self._guard = TenantGuard()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @asynccontextmanager
    async def _repository(self) -> AsyncIterator[JobRepository]:
        async with session_scope(self._session_factory) as session:
            yield JobRepository(session)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def register_handler(
        self,
        intent: str,
        handler: WebhookHandler | None = None,
    ) -> Any:
        """
        Register a named handler, directly or as a decorator.

        Named registration is the restart-safe way to attach handlers: every
        process that may drain the queue must register the same intents.
        """
        if handler is not None:
            self.registry.register(intent, handler)
            return handler
        return self.registry.handler(intent)

    # ------------------------------------------------------------------
    # Enqueue path
    # ------------------------------------------------------------------

    def _validate(self, request: WebhookJobRequest) -> None:
        if not isinstance(request.tenant_id, str) or not request.tenant_id:
            raise PayloadRejectedError("missing tenant_id")

        if not isinstance(request.intent, str) or not request.intent:
            raise PayloadRejectedError("missing intent")

        if not isinstance(request.payload, dict):
            raise PayloadRejectedError(
                "payload must be an object",
                payload_type=type(request.payload).__name__,
            )

        try:
            encoded = json.dumps(request.payload, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise PayloadRejectedError(
                "payload not serializable", error=sanitize_error_message(e)
            ) from e

        size = len(encoded.encode("utf-8"))
        max_size = self._settings.webhook_max_payload_bytes
        if size > max_size:
            raise PayloadRejectedError("payload too large", size=size, max_size=max_size)

    async def enqueue(self, request: WebhookJobRequest) -> EnqueueResult:
        """
        Validate, deduplicate and persist a webhook job, then trigger its drain.

        Malformed requests are logged and dropped, never raised to the caller.
        Storage errors do propagate so the transport layer can fail the
        delivery and let the upstream platform redeliver.

        Args:
            request: The job to enqueue.

        Returns:
            What happened to the request.
        """
        context = {
            "tenant_id": request.tenant_id,
            "topic": request.topic,
            "intent": request.intent,
        }

        try:
            self._validate(request)
        except PayloadRejectedError as e:
            logger.warning(f"Webhook job rejected: {e.reason}", extra={**context, **e.details})
            self._metrics.record_enqueue(str(request.topic), EnqueueResult.REJECTED.value)
            return EnqueueResult.REJECTED

        # Runs before dedup; an inline run callable never replaces a named handler
        self.registry.register_if_absent(request.intent, request.run)

        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
            span.set_attribute("tenant_id", request.tenant_id)
            span.set_attribute("topic", request.topic)

            async with self._repository() as repo:
                if request.external_id:
                    existing = await repo.find_by_external_id(
                        request.tenant_id, request.topic, request.external_id
                    )
                    if existing is not None:
                        logger.info(
                            "Duplicate ignored by external_id",
                            extra={
                                **context,
                                "external_id": request.external_id,
                                "job_id": existing.id,
                            },
                        )
                        self._metrics.record_enqueue(request.topic, EnqueueResult.DUPLICATE.value)
                        return EnqueueResult.DUPLICATE

                elif request.dedup_entity_id:
                    existing = await repo.find_active_by_entity(
                        request.tenant_id, request.topic, request.dedup_entity_id
                    )
                    if existing is not None:
                        logger.info(
                            "Duplicate collapsed by dedup_entity_id",
                            extra={
                                **context,
                                "dedup_entity_id": request.dedup_entity_id,
                                "job_id": existing.id,
                            },
                        )
                        self._metrics.record_enqueue(request.topic, EnqueueResult.COLLAPSED.value)
                        return EnqueueResult.COLLAPSED

                job = await repo.create_job(
                    tenant_id=request.tenant_id,
                    topic=request.topic,
                    intent=request.intent,
                    payload=request.payload,
                    external_id=request.external_id,
                    dedup_entity_id=request.dedup_entity_id,
                    event_time=request.event_time,
                )

            span.set_attribute("job_id", job.id)

        if request.intent not in self.registry:
            logger.warning(
                "Enqueued job without registered handler",
                extra={**context, "job_id": job.id},
            )

        self._metrics.record_enqueue(request.topic, EnqueueResult.CREATED.value)
        self.trigger(request.tenant_id)
        return EnqueueResult.CREATED

    async def check_duplicate(self, tenant_id: str, topic: str, external_id: str | None) -> bool:
        """
        Early duplicate check for the transport layer.

        Fails open: a store error is logged and reported as "not a
        duplicate", since enqueue checks again before persisting.
        """
        if not external_id:
            return False

        try:
            async with self._repository() as repo:
                existing = await repo.find_by_external_id(tenant_id, topic, external_id)
        except Exception as e:
            logger.error(
                "Duplicate check failed",
                extra={
                    "tenant_id": tenant_id,
                    "topic": topic,
                    "external_id": external_id,
                    "error": sanitize_error_message(e),
                },
            )
            return False

        return existing is not None

    # ------------------------------------------------------------------
    # Drain loop
    # ------------------------------------------------------------------

    def trigger(self, tenant_id: str, depth: int = 0) -> asyncio.Task | None:
        """
        Start a drain pass for a tenant without waiting for it.

        Returns:
            The drain task, or None once the queue is closed.
        """
        if self._closed:
            logger.debug("Queue closed, drain not triggered", extra={"tenant_id": tenant_id})
            return None

        task = asyncio.get_running_loop().create_task(
            self.drain_tenant(tenant_id, depth),
            name=f"webhook-drain:{tenant_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain_tenant(self, tenant_id: str, depth: int = 0) -> DrainResult:
        """
        Run one drain pass for a tenant.

        Setup failures (stuck recovery, lock acquisition) and store failures
        while claiming abort the pass without touching further jobs; the
        next trigger or sweep retries the tenant. Handler failures never
        abort the pass.

        Args:
            tenant_id: The tenant to drain.
            depth: How many self-reschedules led to this pass.

        Returns:
            Summary of the pass.
        """
        result = DrainResult(tenant_id=tenant_id, depth=depth)

        if not tenant_id:
            result.status = DrainStatus.ABORTED
            return result

        if not self._guard.try_enter(tenant_id):
            result.status = DrainStatus.ALREADY_RUNNING
            return result

        self._cancel_timer(tenant_id)
        started = time.monotonic()

        with log_context(tenant_id=tenant_id), get_tracer().start_as_current_span(
            SPAN_DRAIN_TENANT
        ) as span:
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("depth", depth)

            try:
                await self._recover_stuck(tenant_id)

                async with self._lock.hold(tenant_lock_key(tenant_id)) as acquired:
                    if not acquired:
                        result.status = DrainStatus.LOCK_HELD
                        logger.debug(
                            "Tenant is being drained by another process",
                            extra={"tenant_id": tenant_id},
                        )
                    else:
                        await self._process_batch(tenant_id, result)
            except Exception as e:
                result.status = DrainStatus.ABORTED
                logger.error(
                    "Drain pass aborted",
                    exc_info=True,
                    extra={
                        "tenant_id": tenant_id,
                        "depth": depth,
                        "error": sanitize_error_message(e),
                    },
                )
            finally:
                self._guard.exit(tenant_id)

            if result.status == DrainStatus.DRAINED:
                await self._reschedule_if_pending(tenant_id, depth, result)

        self._metrics.record_drain_pass(result.status.value)
        if result.processed or result.status != DrainStatus.DRAINED:
            logger.info(
                "Drain pass finished",
                extra={
                    "tenant_id": tenant_id,
                    "status": result.status.value,
                    "depth": depth,
                    "processed": result.processed,
                    "completed": result.completed,
                    "retried": result.retried,
                    "failed": result.failed,
                    "remaining": result.remaining,
                    "elapsed_ms": round((time.monotonic() - started) * 1000),
                },
            )
        return result

    async def _recover_stuck(self, tenant_id: str) -> None:
        timeout = timedelta(seconds=self._settings.webhook_stuck_job_timeout_seconds)
        async with self._repository() as repo:
            recovered = await repo.recover_stuck(tenant_id, timeout)
        self._metrics.record_stuck_recovered(recovered)

    async def _process_batch(self, tenant_id: str, result: DrainResult) -> None:
        tracer = get_tracer()

        for _ in range(max(1, self._settings.webhook_max_batch)):
            with tracer.start_as_current_span(SPAN_CLAIM_JOB):
                async with self._repository() as repo:
                    job = await repo.claim_next(tenant_id)

            if job is None:
                break

            result.processed += 1
            started = time.monotonic()
            with log_context(job_id=job.id, intent=job.intent):
                try:
                    await self._execute_job(job, started, result)
                except Exception as e:
                    # Store error while recording the outcome: counts as a failure of this job only
                    logger.error(
                        "Unexpected error while processing job",
                        exc_info=True,
                        extra={**self._job_context(job), "error": sanitize_error_message(e)},
                    )
                    if job.intent in self.registry:
                        await self._handle_failure(job, e, started, result)
                    else:
                        await self._dead_letter(
                            job, self._missing_handler_error(job), started, result
                        )

    @staticmethod
    def _job_context(job: WebhookJob) -> dict[str, Any]:
        return {
            "tenant_id": job.tenant_id,
            "job_id": job.id,
            "topic": job.topic,
            "intent": job.intent,
            "attempts": job.attempts,
        }

    @staticmethod
    def _missing_handler_error(job: WebhookJob) -> str:
        return f"{NO_HANDLER_ERROR} '{job.intent}'"

    async def _execute_job(self, job: WebhookJob, started: float, result: DrainResult) -> None:
        context = self._job_context(job)
        handler = self.registry.get(job.intent)

        if handler is None:
            logger.warning("No handler registered", extra=context)
            await self._dead_letter(job, self._missing_handler_error(job), started, result)
            return

        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", job.id)
                span.set_attribute("intent", job.intent)
                span.set_attribute("attempts", job.attempts)
                await handler(dict(job.payload))
        except Exception as e:
            await self._handle_failure(job, e, started, result)
            return

        async with self._repository() as repo:
            await repo.mark_completed(job.id)

        elapsed = time.monotonic() - started
        result.completed += 1
        self._metrics.record_job_finished(job.intent, "completed", elapsed)
        logger.info(
            "Webhook job completed",
            extra={**context, "elapsed_ms": round(elapsed * 1000)},
        )

    async def _handle_failure(
        self,
        job: WebhookJob,
        error: BaseException,
        started: float,
        result: DrainResult,
    ) -> None:
        context = self._job_context(job)
        message = sanitize_error_message(error)
        elapsed = time.monotonic() - started
        attempts = job.attempts or 0

        if attempts < self._settings.webhook_max_retries:
            delay_ms = compute_backoff_ms(
                attempts,
                self._settings.webhook_base_delay_ms,
                self._settings.webhook_max_delay_ms,
                self._rng,
            )
            next_run_at = utcnow() + timedelta(milliseconds=delay_ms)
            try:
                async with self._repository() as repo:
                    await repo.requeue(job.id, attempts + 1, next_run_at, message)
            except Exception as e:
                logger.error(
                    "Failed to schedule retry, dead-lettering job",
                    extra={**context, "error": sanitize_error_message(e)},
                )
            else:
                result.retried += 1
                self._metrics.record_job_finished(job.intent, "retried", elapsed)
                logger.warning(
                    "Webhook job scheduled for retry",
                    extra={
                        **context,
                        "attempts": attempts + 1,
                        "delay_ms": delay_ms,
                        "error": message,
                        "elapsed_ms": round(elapsed * 1000),
                    },
                )
                return

        await self._dead_letter(job, message, started, result)

    async def _dead_letter(
        self, job: WebhookJob, message: str, started: float, result: DrainResult
    ) -> None:
        """Mark a job permanently failed. Attempts are left unchanged."""
        async with self._repository() as repo:
            await repo.mark_failed(job.id, message)

        elapsed = time.monotonic() - started
        result.failed += 1
        self._metrics.record_job_finished(job.intent, "failed", elapsed)
        logger.error(
            "Webhook job failed permanently",
            extra={**self._job_context(job), "error": message, "elapsed_ms": round(elapsed * 1000)},
        )

    async def _reschedule_if_pending(self, tenant_id: str, depth: int, result: DrainResult) -> None:
        try:
            async with self._repository() as repo:
                remaining = await repo.count_queued(tenant_id)
        except Exception as e:
            logger.error(
                "Failed to check pending jobs",
                extra={"tenant_id": tenant_id, "error": sanitize_error_message(e)},
            )
            return

        result.remaining = remaining
        if remaining == 0:
            return

        next_depth = depth + 1
        if next_depth >= self._settings.webhook_max_recursive_depth:
            logger.warning(
                "Max recursive depth reached, not rescheduling",
                extra={"tenant_id": tenant_id, "depth": depth, "remaining": remaining},
            )
            return

        delay_ms = compute_pending_cooldown_ms(
            remaining,
            self._settings.webhook_max_batch,
            self._settings.webhook_pending_cooldown_ms,
            self._settings.webhook_pending_max_cooldown_ms,
        )
        result.rescheduled = self._schedule(tenant_id, delay_ms / 1000, next_depth)

    def _schedule(self, tenant_id: str, delay_seconds: float, depth: int) -> bool:
        if self._closed:
            return False

        self._cancel_timer(tenant_id)
        self._timers[tenant_id] = asyncio.get_running_loop().call_later(
            delay_seconds, self._fire_timer, tenant_id, depth
        )
        return True

    def _fire_timer(self, tenant_id: str, depth: int) -> None:
        self._timers.pop(tenant_id, None)
        self.trigger(tenant_id, depth)

    def _cancel_timer(self, tenant_id: str) -> None:
        timer = self._timers.pop(tenant_id, None)
        if timer is not None:
            timer.cancel()

    def has_pending_timer(self, tenant_id: str) -> bool:
        return tenant_id in self._timers

    def is_draining(self, tenant_id: str) -> bool:
        return tenant_id in self._guard

    # ------------------------------------------------------------------
    # Sweep / wake path
    # ------------------------------------------------------------------

    async def wake_due_jobs(self) -> WakeResult:
        """
        Trigger a drain for every tenant with queued, due jobs.

        Safe to call at any time: tenants already draining in this process
        ignore the trigger.
        """
        async with self._repository() as repo:
            due = await repo.due_tenants()

        for tenant_id in due:
            self.trigger(tenant_id)

        self._metrics.record_tenants_woken(len(due))
        if due:
            logger.info(
                f"Woke {len(due)} tenants with due webhook jobs",
                extra={"tenants_woken": len(due), "due_jobs": sum(due.values())},
            )
        return WakeResult(tenants_woken=len(due), tenants=sorted(due))

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def queue_size(self) -> int:
        """Number of jobs queued or processing."""
        async with self._repository() as repo:
            size = await repo.queue_size()
        self._metrics.update_queue_depth(size)
        return size

    async def dead_letter_jobs(
        self,
        limit: int = 50,
        tenant_id: str | None = None,
    ) -> Sequence[WebhookJob]:
        """Most recent failed jobs, for inspection and replay tooling."""
        async with self._repository() as repo:
            return await repo.dead_letter_jobs(limit=limit, tenant_id=tenant_id)

    async def tenant_snapshot(self, tenant_id: str, limit: int = 25) -> TenantSnapshot:
        """Recent jobs and per-status counts for one tenant."""
        async with self._repository() as repo:
            recent = await repo.list_recent(tenant_id, limit=limit)
            counts = await repo.get_job_stats(tenant_id=tenant_id)
        return TenantSnapshot(tenant_id=tenant_id, recent=list(recent), counts=counts)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def cleanup_timers(self) -> None:
        """Cancel every pending reschedule timer."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    async def close(self) -> None:
        """Stop rescheduling and wait for in-flight drain passes."""
        self._closed = True
        self.cleanup_timers()

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} drain passes to finish")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
