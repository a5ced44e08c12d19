"""Initial schema with webhook_jobs table

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE webhook_job_status AS ENUM ('queued', 'processing', 'completed', 'failed');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.create_table(
        "webhook_jobs",
        sa.Column("id", sa.BigInteger, sa.Identity(), nullable=False),
        sa.Column("tenant_id", sa.String(255), nullable=False),
        sa.Column("topic", sa.String(255), nullable=False),
        sa.Column("intent", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("dedup_entity_id", sa.String(255), nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM(
                "queued", "processing", "completed", "failed",
                name="webhook_job_status",
                create_type=False,
            ),
            nullable=False,
            server_default="queued",
        ),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("event_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index(
        "ix_webhook_jobs_claim",
        "webhook_jobs",
        ["tenant_id", "status", "next_run_at", "id"],
    )
    op.create_index(
        "ix_webhook_jobs_external",
        "webhook_jobs",
        ["tenant_id", "topic", "external_id"],
    )
    op.create_index(
        "ix_webhook_jobs_entity",
        "webhook_jobs",
        ["tenant_id", "topic", "dedup_entity_id"],
    )
    op.create_index(
        "ix_webhook_jobs_status_finished",
        "webhook_jobs",
        ["status", "finished_at"],
    )

    # Partial index for stuck-job recovery
    op.execute("""
        CREATE INDEX ix_webhook_jobs_processing_started
        ON webhook_jobs (tenant_id, started_at)
        WHERE status = 'processing'
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_webhook_jobs_processing_started")
    op.drop_index("ix_webhook_jobs_status_finished")
    op.drop_index("ix_webhook_jobs_entity")
    op.drop_index("ix_webhook_jobs_external")
    op.drop_index("ix_webhook_jobs_claim")

    op.drop_table("webhook_jobs")

    op.execute("DROP TYPE IF EXISTS webhook_job_status")
