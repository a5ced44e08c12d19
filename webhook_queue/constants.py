"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Webhook job lifecycle states.

    State transitions:
    - QUEUED -> PROCESSING (claimed by a drain loop)
    - PROCESSING -> COMPLETED (handler succeeded)
    - PROCESSING -> QUEUED (retry with backoff, or stuck-job recovery)
    - PROCESSING -> FAILED (retries exhausted or no handler: dead letter)
    """

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES: tuple[JobStatus, ...] = (JobStatus.QUEUED, JobStatus.PROCESSING)

# Advisory lock key space: keys fall in [LOCK_KEY_BASE, LOCK_KEY_BASE + LOCK_KEY_SPACE)
LOCK_KEY_BASE = 1100
LOCK_KEY_SPACE = 1_000_000
TENANT_KEY_PREFIX = "shop:"

# Cooldown added per full batch of backlog when rescheduling a drain
PENDING_COOLDOWN_STEP_MS = 50

# Error messages are truncated to this length before logging or storing
MAX_LOGGED_ERROR_LENGTH = 500

STUCK_JOB_ERROR = "Recovered from stuck state"
NO_HANDLER_ERROR = "No handler registered for intent"

# API constants
API_V1_PREFIX = "/v1"
SCOPE_QUEUE_WAKE = "queue:wake"

# Metrics names
METRIC_QUEUE_DEPTH = "webhook_queue_depth"
METRIC_JOBS_ENQUEUED = "webhook_jobs_enqueued_total"
METRIC_JOBS_FINISHED = "webhook_jobs_finished_total"
METRIC_JOB_DURATION = "webhook_job_duration_seconds"
METRIC_JOBS_RETRIED = "webhook_jobs_retried_total"
METRIC_STUCK_RECOVERED = "webhook_stuck_jobs_recovered_total"
METRIC_DRAIN_PASSES = "webhook_drain_passes_total"
METRIC_TENANTS_WOKEN = "webhook_tenants_woken_total"

# Trace span names
SPAN_ENQUEUE_JOB = "webhook.enqueue"
SPAN_DRAIN_TENANT = "webhook.drain"
SPAN_CLAIM_JOB = "webhook.claim"
SPAN_EXECUTE_JOB = "webhook.execute"
