"""
Job repository for database operations.
Implements the core data access patterns for webhook job management.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_queue.constants import ACTIVE_STATUSES, STUCK_JOB_ERROR, JobStatus
from webhook_queue.db.models import WebhookJob, utcnow

logger = logging.getLogger(__name__)


def _due_filter(now: datetime):
    return and_(
        WebhookJob.status == JobStatus.QUEUED,
        or_(WebhookJob.next_run_at.is_(None), WebhookJob.next_run_at <= now),
    )


class JobRepository:
    """
    Repository for webhook job database operations.

    Implements atomic operations for:
    - Job creation and dedup lookups
    - Claiming with a conditional QUEUED -> PROCESSING update
    - Terminal and retry transitions
    - Stuck job recovery
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create_job(
        self,
        tenant_id: str,
        topic: str,
        intent: str,
        payload: dict[str, Any],
        external_id: str | None = None,
        dedup_entity_id: str | None = None,
        event_time: datetime | None = None,
    ) -> WebhookJob:
        """
        Insert a new queued job, due immediately.

        Uniqueness is not enforced here; callers run the dedup lookups first.

        Returns:
            The created WebhookJob.
        """
        stmt = (
            insert(WebhookJob)
            .values(
                tenant_id=tenant_id,
                topic=topic,
                intent=intent,
                payload=payload,
                external_id=external_id or None,
                dedup_entity_id=dedup_entity_id or None,
                event_time=event_time,
                status=JobStatus.QUEUED,
                attempts=0,
                next_run_at=utcnow(),
            )
            .returning(WebhookJob)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one()

        logger.info(
            "Created webhook job",
            extra={"job_id": job.id, "tenant_id": tenant_id, "topic": topic, "intent": intent},
        )
        return job

    async def get_job(self, job_id: int) -> WebhookJob | None:
        """Get a job by ID."""
        stmt = select(WebhookJob).where(WebhookJob.id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_external_id(
        self,
        tenant_id: str,
        topic: str,
        external_id: str,
    ) -> WebhookJob | None:
        """
        Find any job for the same upstream delivery, whatever its status.

        Args:
            tenant_id: The tenant identifier.
            topic: The upstream topic.
            external_id: The upstream delivery id.

        Returns:
            The oldest matching job or None.
        """
        stmt = (
            select(WebhookJob)
            .where(
                and_(
                    WebhookJob.tenant_id == tenant_id,
                    WebhookJob.topic == topic,
                    WebhookJob.external_id == external_id,
                )
            )
            .order_by(WebhookJob.id.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active_by_entity(
        self,
        tenant_id: str,
        topic: str,
        dedup_entity_id: str,
    ) -> WebhookJob | None:
        """
        Find an in-flight (queued or processing) job for the same entity.

        Returns:
            The oldest matching active job or None.
        """
        stmt = (
            select(WebhookJob)
            .where(
                and_(
                    WebhookJob.tenant_id == tenant_id,
                    WebhookJob.topic == topic,
                    WebhookJob.dedup_entity_id == dedup_entity_id,
                    WebhookJob.status.in_(ACTIVE_STATUSES),
                )
            )
            .order_by(WebhookJob.id.asc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_next(self, tenant_id: str | None = None) -> WebhookJob | None:
        """
        Claim the oldest due job.

        Selects by next_run_at then id, and flips QUEUED -> PROCESSING with an
        update that re-checks the status. On PostgreSQL the select skips rows
        locked by concurrent claimers. If the conditional update matches no
        row another claimer won the race and this call returns None; the
        caller asks again on its next iteration.

        Args:
            tenant_id: Optional tenant filter.

        Returns:
            The claimed job or None.
        """
        now = utcnow()
        filters = [_due_filter(now)]
        if tenant_id is not None:
            filters.append(WebhookJob.tenant_id == tenant_id)

        candidate_stmt = (
            select(WebhookJob.id)
            .where(and_(*filters))
            .order_by(WebhookJob.next_run_at.asc().nulls_first(), WebhookJob.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        candidate_id = (await self._session.execute(candidate_stmt)).scalar_one_or_none()
        if candidate_id is None:
            return None

        claim_stmt = (
            update(WebhookJob)
            .where(
                and_(
                    WebhookJob.id == candidate_id,
                    WebhookJob.status == JobStatus.QUEUED,
                )
            )
            .values(status=JobStatus.PROCESSING, started_at=now)
            .returning(WebhookJob)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        job = (await self._session.execute(claim_stmt)).scalar_one_or_none()

        if job is None:
            logger.debug(
                "Failed to claim job (race condition)",
                extra={"job_id": candidate_id, "tenant_id": tenant_id},
            )
        return job

    async def _finish(self, job_id: int, status: JobStatus, error: str | None) -> bool:
        values: dict[str, Any] = {"status": status, "finished_at": utcnow()}
        if error is not None:
            values["error"] = error

        stmt = (
            update(WebhookJob)
            .where(
                and_(
                    WebhookJob.id == job_id,
                    WebhookJob.status == JobStatus.PROCESSING,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount == 0:
            logger.warning(
                "Job status update skipped (job missing or no longer processing)",
                extra={"job_id": job_id, "target_status": status.value},
            )
            return False
        return True

    async def mark_completed(self, job_id: int) -> bool:
        """
        Mark a processing job as completed.

        Returns:
            False if no processing job matched (deleted or reset externally).
        """
        return await self._finish(job_id, JobStatus.COMPLETED, None)

    async def mark_failed(self, job_id: int, error: str) -> bool:
        """
        Move a processing job to the dead letter state.

        Returns:
            False if no processing job matched.
        """
        return await self._finish(job_id, JobStatus.FAILED, error)

    async def requeue(
        self,
        job_id: int,
        attempts: int,
        next_run_at: datetime,
        error: str,
    ) -> bool:
        """
        Return a failed job to the queue for a later retry.

        Args:
            job_id: The job ID.
            attempts: The new attempt count.
            next_run_at: When the job becomes eligible again.
            error: The failure message.

        Returns:
            False if no processing job matched.
        """
        stmt = (
            update(WebhookJob)
            .where(
                and_(
                    WebhookJob.id == job_id,
                    WebhookJob.status == JobStatus.PROCESSING,
                )
            )
            .values(
                status=JobStatus.QUEUED,
                attempts=attempts,
                next_run_at=next_run_at,
                finished_at=None,
                error=error,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)

        if result.rowcount == 0:
            logger.warning(
                "Requeue skipped (job missing or no longer processing)",
                extra={"job_id": job_id},
            )
            return False
        return True

    async def recover_stuck(self, tenant_id: str, timeout: timedelta) -> int:
        """
        Reset processing jobs whose handler never reported back.

        Args:
            tenant_id: The tenant identifier.
            timeout: How long a job may stay in processing.

        Returns:
            Number of recovered jobs.
        """
        threshold = utcnow() - timeout

        stmt = (
            update(WebhookJob)
            .where(
                and_(
                    WebhookJob.tenant_id == tenant_id,
                    WebhookJob.status == JobStatus.PROCESSING,
                    WebhookJob.started_at < threshold,
                )
            )
            .values(
                status=JobStatus.QUEUED,
                started_at=None,
                error=STUCK_JOB_ERROR,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.warning(
                f"Recovered {count} stuck jobs",
                extra={"tenant_id": tenant_id, "count": count},
            )
        return count

    async def count_queued(self, tenant_id: str | None = None) -> int:
        """
        Count queued jobs, due or not.

        Args:
            tenant_id: Optional tenant filter.
        """
        filters = [WebhookJob.status == JobStatus.QUEUED]
        if tenant_id is not None:
            filters.append(WebhookJob.tenant_id == tenant_id)

        stmt = select(func.count()).select_from(WebhookJob).where(and_(*filters))
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def queue_size(self) -> int:
        """Count jobs that are queued or processing."""
        stmt = (
            select(func.count())
            .select_from(WebhookJob)
            .where(WebhookJob.status.in_(ACTIVE_STATUSES))
        )
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def dead_letter_jobs(
        self,
        limit: int = 50,
        tenant_id: str | None = None,
    ) -> Sequence[WebhookJob]:
        """
        Most recently failed jobs first.

        Args:
            limit: Maximum number of jobs to return.
            tenant_id: Optional tenant filter.
        """
        filters = [WebhookJob.status == JobStatus.FAILED]
        if tenant_id is not None:
            filters.append(WebhookJob.tenant_id == tenant_id)

        stmt = (
            select(WebhookJob)
            .where(and_(*filters))
            .order_by(WebhookJob.finished_at.desc().nulls_last(), WebhookJob.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def due_tenants(self, now: datetime | None = None) -> dict[str, int]:
        """
        Group queued, due jobs by tenant.

        Returns:
            Mapping of tenant_id -> number of due jobs.
        """
        stmt = (
            select(WebhookJob.tenant_id, func.count())
            .where(_due_filter(now or utcnow()))
            .group_by(WebhookJob.tenant_id)
        )
        result = await self._session.execute(stmt)
        return {tenant_id: count for tenant_id, count in result.all()}

    async def list_recent(self, tenant_id: str, limit: int = 25) -> Sequence[WebhookJob]:
        """Newest jobs for a tenant."""
        stmt = (
            select(WebhookJob)
            .where(WebhookJob.tenant_id == tenant_id)
            .order_by(WebhookJob.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def get_job_stats(self, tenant_id: str | None = None) -> dict[str, int]:
        """
        Get job counts by status.

        Args:
            tenant_id: Optional tenant filter.

        Returns:
            Dictionary of status -> count.
        """
        stmt = select(WebhookJob.status, func.count()).group_by(WebhookJob.status)
        if tenant_id is not None:
            stmt = stmt.where(WebhookJob.tenant_id == tenant_id)

        result = await self._session.execute(stmt)
        return {JobStatus(status).value: count for status, count in result.all()}
