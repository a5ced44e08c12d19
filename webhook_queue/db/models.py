"""
SQLAlchemy database models.
Defines the webhook job table.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from webhook_queue.constants import JobStatus


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class WebhookJob(Base):
    """
    A persisted unit of webhook work for one tenant.

    This is the authoritative source of truth for job state. All lifecycle
    transitions go through conditional updates in JobRepository.

    Key properties:
    - eligible for claim iff status is QUEUED and next_run_at is null or due
    - (tenant_id, topic, external_id) identifies a delivery for dedup
    - (tenant_id, topic, dedup_entity_id) collapses bursts for one entity
    - attempts only grows on a failure-triggered requeue
    """

    __tablename__ = "webhook_jobs"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )

    # Routing
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    intent: Mapped[str] = mapped_column(String(255), nullable=False)

    payload: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )

    # Dedup keys
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dedup_entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="webhook_job_status",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobStatus.QUEUED,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Scheduling and lifecycle timestamps
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    event_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        # Claim path: oldest due job per tenant
        Index("ix_webhook_jobs_claim", "tenant_id", "status", "next_run_at", "id"),
        # Dedup lookups
        Index("ix_webhook_jobs_external", "tenant_id", "topic", "external_id"),
        Index("ix_webhook_jobs_entity", "tenant_id", "topic", "dedup_entity_id"),
        # Dead-letter listing
        Index("ix_webhook_jobs_status_finished", "status", "finished_at"),
    )

    @property
    def is_active(self) -> bool:
        """Check if the job still has work pending."""
        return self.status in (JobStatus.QUEUED, JobStatus.PROCESSING)

    def __repr__(self) -> str:
        return (
            f"WebhookJob(id={self.id}, tenant={self.tenant_id}, intent={self.intent}, "
            f"status={self.status}, attempts={self.attempts})"
        )
