"""
Unit tests for the job repository.
"""

from datetime import timedelta

import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from webhook_queue.constants import STUCK_JOB_ERROR, JobStatus
from webhook_queue.db.models import WebhookJob, utcnow
from webhook_queue.db.repository import JobRepository


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        """Create a repository instance."""
        return JobRepository(db_session)

    async def _create(self, repo: JobRepository, tenant_id: str = "tenant-a", **kwargs) -> WebhookJob:
        fields = {
            "topic": "orders/create",
            "intent": "orders.sync",
            "payload": {"id": 1},
        }
        fields.update(kwargs)
        return await repo.create_job(tenant_id=tenant_id, **fields)

    async def _set(self, db_session: AsyncSession, job_id: int, **values) -> None:
        await db_session.execute(
            update(WebhookJob).where(WebhookJob.id == job_id).values(**values)
        )
        await db_session.commit()

    async def test_create_job(self, repo: JobRepository, db_session: AsyncSession):
        """Test a created job is queued and due immediately."""
        job = await self._create(repo, external_id="evt-1", dedup_entity_id="order-1")
        await db_session.commit()

        assert job.id is not None
        assert job.tenant_id == "tenant-a"
        assert job.payload == {"id": 1}
        assert job.status == JobStatus.QUEUED
        assert job.attempts == 0
        assert job.next_run_at is not None
        assert job.external_id == "evt-1"
        assert job.dedup_entity_id == "order-1"
        assert job.is_active

    async def test_create_job_normalizes_empty_keys(self, repo: JobRepository, db_session: AsyncSession):
        """Test empty dedup keys are stored as NULL."""
        job = await self._create(repo, external_id="", dedup_entity_id="")
        await db_session.commit()

        assert job.external_id is None
        assert job.dedup_entity_id is None

    async def test_get_job_not_found(self, repo: JobRepository):
        """Test getting a non-existent job."""
        assert await repo.get_job(999_999) is None

    async def test_find_by_external_id_any_status(self, repo: JobRepository, db_session: AsyncSession):
        """Test delivery dedup matches jobs in every status."""
        job = await self._create(repo, external_id="evt-1")
        await db_session.commit()
        await self._set(db_session, job.id, status=JobStatus.COMPLETED)

        found = await repo.find_by_external_id("tenant-a", "orders/create", "evt-1")
        assert found is not None
        assert found.id == job.id

        assert await repo.find_by_external_id("tenant-a", "orders/updated", "evt-1") is None
        assert await repo.find_by_external_id("tenant-b", "orders/create", "evt-1") is None

    async def test_find_active_by_entity(self, repo: JobRepository, db_session: AsyncSession):
        """Test entity dedup only matches in-flight jobs."""
        job = await self._create(repo, dedup_entity_id="order-1")
        await db_session.commit()

        assert (await repo.find_active_by_entity("tenant-a", "orders/create", "order-1")).id == job.id

        await self._set(db_session, job.id, status=JobStatus.PROCESSING)
        assert await repo.find_active_by_entity("tenant-a", "orders/create", "order-1") is not None

        await self._set(db_session, job.id, status=JobStatus.FAILED)
        assert await repo.find_active_by_entity("tenant-a", "orders/create", "order-1") is None

    async def test_claim_next_oldest_first(self, repo: JobRepository, db_session: AsyncSession):
        """Test jobs are claimed in next_run_at then id order."""
        first = await self._create(repo)
        second = await self._create(repo)
        await db_session.commit()

        claimed = await repo.claim_next("tenant-a")
        await db_session.commit()

        assert claimed is not None
        assert claimed.id == first.id
        assert claimed.status == JobStatus.PROCESSING
        assert claimed.started_at is not None

        claimed_again = await repo.claim_next("tenant-a")
        await db_session.commit()

        assert claimed_again.id == second.id
        assert await repo.claim_next("tenant-a") is None

    async def test_claim_next_skips_future_jobs(self, repo: JobRepository, db_session: AsyncSession):
        """Test jobs scheduled in the future are not claimed."""
        job = await self._create(repo)
        await db_session.commit()
        await self._set(db_session, job.id, next_run_at=utcnow() + timedelta(hours=1))

        assert await repo.claim_next("tenant-a") is None

    async def test_claim_next_null_next_run_at(self, repo: JobRepository, db_session: AsyncSession):
        """Test jobs without next_run_at are due and claimed first."""
        later = await self._create(repo)
        unscheduled = await self._create(repo)
        await db_session.commit()
        await self._set(db_session, unscheduled.id, next_run_at=None)

        claimed = await repo.claim_next("tenant-a")
        await db_session.commit()

        assert claimed.id == unscheduled.id
        assert later.id != unscheduled.id

    async def test_claim_next_filters_tenant(self, repo: JobRepository, db_session: AsyncSession):
        """Test a tenant never claims another tenant's jobs."""
        await self._create(repo, tenant_id="tenant-b")
        await db_session.commit()

        assert await repo.claim_next("tenant-a") is None
        assert (await repo.claim_next("tenant-b")).tenant_id == "tenant-b"

    async def test_mark_completed(self, repo: JobRepository, db_session: AsyncSession):
        """Test completing a processing job."""
        await self._create(repo)
        await db_session.commit()
        job = await repo.claim_next("tenant-a")
        await db_session.commit()

        assert await repo.mark_completed(job.id) is True
        await db_session.commit()

        stored = await repo.get_job(job.id)
        await db_session.refresh(stored)
        assert stored.status == JobStatus.COMPLETED
        assert stored.finished_at is not None
        assert not stored.is_active

    async def test_mark_requires_processing(self, repo: JobRepository, db_session: AsyncSession):
        """Test terminal transitions only apply to processing jobs."""
        job = await self._create(repo)
        await db_session.commit()

        assert await repo.mark_completed(job.id) is False
        assert await repo.mark_failed(job.id, "boom") is False
        assert await repo.requeue(job.id, 1, utcnow(), "boom") is False
        assert await repo.mark_completed(999_999) is False

    async def test_mark_failed(self, repo: JobRepository, db_session: AsyncSession):
        """Test dead-lettering records the error."""
        await self._create(repo)
        await db_session.commit()
        job = await repo.claim_next("tenant-a")
        await db_session.commit()

        assert await repo.mark_failed(job.id, "handler exploded") is True
        await db_session.commit()

        stored = await repo.get_job(job.id)
        await db_session.refresh(stored)
        assert stored.status == JobStatus.FAILED
        assert stored.error == "handler exploded"
        assert stored.finished_at is not None

    async def test_requeue(self, repo: JobRepository, db_session: AsyncSession):
        """Test a retry returns the job to the queue with a later run time."""
        await self._create(repo)
        await db_session.commit()
        job = await repo.claim_next("tenant-a")
        await db_session.commit()

        assert await repo.requeue(job.id, 1, utcnow() + timedelta(minutes=5), "timeout") is True
        await db_session.commit()

        stored = await repo.get_job(job.id)
        await db_session.refresh(stored)
        assert stored.status == JobStatus.QUEUED
        assert stored.attempts == 1
        assert stored.error == "timeout"
        assert stored.finished_at is None
        assert await repo.claim_next("tenant-a") is None

    async def test_recover_stuck(self, repo: JobRepository, db_session: AsyncSession):
        """Test processing jobs older than the timeout are requeued."""
        stuck = await self._create(repo)
        fresh = await self._create(repo)
        other_tenant = await self._create(repo, tenant_id="tenant-b")
        await db_session.commit()

        long_ago = utcnow() - timedelta(minutes=10)
        await self._set(db_session, stuck.id, status=JobStatus.PROCESSING, started_at=long_ago)
        await self._set(db_session, fresh.id, status=JobStatus.PROCESSING, started_at=utcnow())
        await self._set(db_session, other_tenant.id, status=JobStatus.PROCESSING, started_at=long_ago)

        recovered = await repo.recover_stuck("tenant-a", timedelta(minutes=5))
        await db_session.commit()

        assert recovered == 1

        stuck_row = await repo.get_job(stuck.id)
        fresh_row = await repo.get_job(fresh.id)
        other_row = await repo.get_job(other_tenant.id)
        for row in (stuck_row, fresh_row, other_row):
            await db_session.refresh(row)

        assert stuck_row.status == JobStatus.QUEUED
        assert stuck_row.started_at is None
        assert stuck_row.error == STUCK_JOB_ERROR
        assert stuck_row.attempts == 0
        assert fresh_row.status == JobStatus.PROCESSING
        assert other_row.status == JobStatus.PROCESSING

    async def test_counts(self, repo: JobRepository, db_session: AsyncSession):
        """Test queue counters and per-status stats."""
        a1 = await self._create(repo)
        await self._create(repo)
        b1 = await self._create(repo, tenant_id="tenant-b")
        await db_session.commit()
        await self._set(db_session, a1.id, status=JobStatus.PROCESSING)
        await self._set(db_session, b1.id, status=JobStatus.FAILED)

        assert await repo.count_queued("tenant-a") == 1
        assert await repo.count_queued() == 1
        assert await repo.queue_size() == 2
        assert await repo.get_job_stats(tenant_id="tenant-a") == {"processing": 1, "queued": 1}
        assert await repo.get_job_stats() == {"processing": 1, "queued": 1, "failed": 1}

    async def test_count_queued_includes_future_jobs(self, repo: JobRepository, db_session: AsyncSession):
        """Test backlog counting ignores next_run_at."""
        job = await self._create(repo)
        await db_session.commit()
        await self._set(db_session, job.id, next_run_at=utcnow() + timedelta(hours=1))

        assert await repo.count_queued("tenant-a") == 1

    async def test_due_tenants(self, repo: JobRepository, db_session: AsyncSession):
        """Test due jobs are grouped by tenant."""
        await self._create(repo)
        await self._create(repo)
        await self._create(repo, tenant_id="tenant-b")
        future = await self._create(repo, tenant_id="tenant-c")
        await db_session.commit()
        await self._set(db_session, future.id, next_run_at=utcnow() + timedelta(hours=1))

        assert await repo.due_tenants() == {"tenant-a": 2, "tenant-b": 1}

    async def test_dead_letter_jobs(self, repo: JobRepository, db_session: AsyncSession):
        """Test failed jobs are listed newest first and filtered by tenant."""
        jobs = [await self._create(repo) for _ in range(3)]
        other = await self._create(repo, tenant_id="tenant-b")
        await db_session.commit()

        base = utcnow()
        for offset, job in enumerate(jobs):
            await self._set(
                db_session, job.id,
                status=JobStatus.FAILED,
                finished_at=base + timedelta(seconds=offset),
            )
        await self._set(db_session, other.id, status=JobStatus.FAILED, finished_at=base)

        listed = await repo.dead_letter_jobs(limit=2, tenant_id="tenant-a")
        assert [job.id for job in listed] == [jobs[2].id, jobs[1].id]

        assert len(await repo.dead_letter_jobs()) == 4

    async def test_list_recent(self, repo: JobRepository, db_session: AsyncSession):
        """Test recent jobs are newest first and capped."""
        jobs = [await self._create(repo) for _ in range(4)]
        await self._create(repo, tenant_id="tenant-b")
        await db_session.commit()

        recent = await repo.list_recent("tenant-a", limit=3)

        assert [job.id for job in recent] == [jobs[3].id, jobs[2].id, jobs[1].id]
