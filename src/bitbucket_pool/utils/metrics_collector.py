"""Prometheus metrics collection for the Bitbucket pool."""

from typing import Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for pool operations."""

    def __init__(self):
        """Initialize metrics collector with all metrics."""
        # Counter metrics
        self.allocations_total = Counter(
            "bitbucket_pool_allocations_total",
            "Total number of members handed out",
            ["source"],
        )

        self.provisions_total = Counter(
            "bitbucket_pool_provisions_total",
            "Total number of provisioning attempts",
            ["outcome"],
        )

        self.reclaimed_total = Counter(
            "bitbucket_pool_reclaimed_total",
            "Total number of members torn down",
            ["reason"],
        )

        self.reclaim_skipped_total = Counter(
            "bitbucket_pool_reclaim_skipped_total",
            "Total number of members skipped during reclaim",
            ["reason"],
        )

        # Histogram metrics
        self.provision_duration_seconds = Histogram(
            "bitbucket_pool_provision_duration_seconds",
            "Time from capacity check to a ready member",
            buckets=[30.0, 60.0, 120.0, 180.0, 300.0, 600.0, 900.0, 1200.0],
        )

        # Gauge metrics
        self.pool_members = Gauge(
            "bitbucket_pool_members",
            "Number of pool members by claim status",
            ["status"],
        )

    def record_allocation(self, source: str) -> None:
        """
        Record a member handed out.

        Args:
            source: Where the member came from (pool, provisioned)
        """
        self.allocations_total.labels(source=source).inc()

    def record_provision(self, outcome: str, duration_seconds: float | None = None) -> None:
        """
        Record a provisioning attempt.

        Args:
            outcome: Result (success, capacity_exceeded, failure)
            duration_seconds: Time spent, recorded only when given
        """
        self.provisions_total.labels(outcome=outcome).inc()
        if duration_seconds is not None:
            self.provision_duration_seconds.observe(duration_seconds)

    def record_reclaimed(self, reason: str) -> None:
        """
        Record a member torn down.

        Args:
            reason: Why it was removed (expired, requested)
        """
        self.reclaimed_total.labels(reason=reason).inc()

    def record_reclaim_skipped(self, reason: str) -> None:
        """
        Record a member skipped by a reclaim pass.

        Args:
            reason: Why it was skipped (undecodable, unexpected_state, error)
        """
        self.reclaim_skipped_total.labels(reason=reason).inc()

    def set_pool_members(self, status: str, count: int) -> None:
        """
        Set the number of members with a claim status.

        Args:
            status: Claim status (new, allocated)
            count: Number of members
        """
        self.pool_members.labels(status=status).set(count)

    def get_metrics(self) -> bytes:
        """
        Get current metrics in Prometheus format.

        Returns:
            Metrics data in bytes
        """
        return generate_latest()


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """
    Get the global metrics collector instance.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
