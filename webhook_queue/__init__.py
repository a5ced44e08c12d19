"""
Durable Webhook Job Queue

Ingests upstream webhook events as persisted jobs and applies them effectively
once per delivery: dedup on ingestion, conditional claims, per-tenant
exclusion, retry with backoff, dead-lettering and stuck-job recovery.
"""

__version__ = "1.0.0"
