"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from webhook_queue.constants import (
    METRIC_DRAIN_PASSES,
    METRIC_JOB_DURATION,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FINISHED,
    METRIC_JOBS_RETRIED,
    METRIC_QUEUE_DEPTH,
    METRIC_STUCK_RECOVERED,
    METRIC_TENANTS_WOKEN,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the webhook queue.

    Collects metrics for:
    - Enqueue outcomes (created, duplicate, collapsed, rejected)
    - Job outcomes and handler duration
    - Retries and stuck job recoveries
    - Drain passes and sweeps
    - Queue depth
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of webhook jobs queued or processing",
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of enqueue requests by outcome",
            ["topic", "outcome"],
            registry=self._registry,
        )

        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of handler executions by outcome",
            ["intent", "outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Webhook handler duration in seconds",
            ["intent", "outcome"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self._registry,
        )

        self.jobs_retried = Counter(
            METRIC_JOBS_RETRIED,
            "Total number of jobs requeued for retry",
            ["intent"],
            registry=self._registry,
        )

        self.stuck_recovered = Counter(
            METRIC_STUCK_RECOVERED,
            "Total number of stuck jobs reset to queued",
            registry=self._registry,
        )

        self.drain_passes = Counter(
            METRIC_DRAIN_PASSES,
            "Total number of drain passes by status",
            ["status"],
            registry=self._registry,
        )

        self.tenants_woken = Counter(
            METRIC_TENANTS_WOKEN,
            "Total number of tenants woken by the sweep",
            registry=self._registry,
        )

    def record_enqueue(self, topic: str, outcome: str) -> None:
        """Record an enqueue request."""
        self.jobs_enqueued.labels(topic=topic, outcome=outcome).inc()

    def record_job_finished(
        self,
        intent: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record a handler execution (completed, retried or failed)."""
        self.jobs_finished.labels(intent=intent, outcome=outcome).inc()
        self.job_duration.labels(intent=intent, outcome=outcome).observe(duration_seconds)
        if outcome == "retried":
            self.jobs_retried.labels(intent=intent).inc()

    def record_stuck_recovered(self, count: int) -> None:
        """Record recovered stuck jobs."""
        if count > 0:
            self.stuck_recovered.inc(count)

    def record_drain_pass(self, status: str) -> None:
        """Record the end of a drain pass."""
        self.drain_passes.labels(status=status).inc()

    def record_tenants_woken(self, count: int) -> None:
        """Record tenants woken by a sweep."""
        if count > 0:
            self.tenants_woken.inc(count)

    def update_queue_depth(self, depth: int) -> None:
        """Update the active queue depth."""
        self.queue_depth.set(depth)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
