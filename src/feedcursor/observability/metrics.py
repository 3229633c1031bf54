"""Prometheus metrics for monitoring."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info, generate_latest

from feedcursor.observability.logging import get_logger

logger = get_logger(__name__)

# Create a custom registry
REGISTRY = CollectorRegistry()


APP_INFO = Info(
    "feedcursor",
    "feedcursor application info",
    registry=REGISTRY,
)

# Change feed metrics
CHANGES_READ_TOTAL = Counter(
    "feedcursor_changes_read_total",
    "Total change records read",
    ["namespace"],
    registry=REGISTRY,
)

BATCHES_READ_TOTAL = Counter(
    "feedcursor_batches_read_total",
    "Total change batches read",
    ["namespace"],
    registry=REGISTRY,
)

PARTITION_READ_FAILURES_TOTAL = Counter(
    "feedcursor_partition_read_failures_total",
    "Partition drains that failed",
    ["namespace"],
    registry=REGISTRY,
)

READ_CALLS_TOTAL = Counter(
    "feedcursor_read_calls_total",
    "Checkpointed read calls",
    ["namespace", "status"],
    registry=REGISTRY,
)

READ_CALL_DURATION = Histogram(
    "feedcursor_read_call_duration_seconds",
    "Checkpointed read call duration",
    ["namespace"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)

# Topology metrics
PARTITION_RANGES = Gauge(
    "feedcursor_partition_ranges",
    "Partition ranges in the last resolved topology",
    ["namespace"],
    registry=REGISTRY,
)

CHECKPOINT_ENTRIES = Gauge(
    "feedcursor_checkpoint_entries",
    "Entries in the checkpoint after the last read call",
    ["namespace"],
    registry=REGISTRY,
)


class MetricsCollector:
    """
    Collects and exposes metrics.

    Provides methods to update metrics and generate output.
    """

    def __init__(self) -> None:
        self._initialized = False

    def initialize(self, version: str = "0.1.0") -> None:
        """Initialize metrics with app info."""
        if self._initialized:
            return

        APP_INFO.info({
            "version": version,
            "name": "feedcursor",
        })
        self._initialized = True

    def record_batch(self, namespace: str, record_count: int) -> None:
        """Record one change batch."""
        BATCHES_READ_TOTAL.labels(namespace=namespace).inc()
        if record_count:
            CHANGES_READ_TOTAL.labels(namespace=namespace).inc(record_count)

    def record_partition_failure(self, namespace: str) -> None:
        """Record a failed partition drain."""
        PARTITION_READ_FAILURES_TOTAL.labels(namespace=namespace).inc()

    def record_read_call(
        self,
        namespace: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a finished read call ("success", "failure" or "cancelled")."""
        READ_CALLS_TOTAL.labels(namespace=namespace, status=status).inc()
        READ_CALL_DURATION.labels(namespace=namespace).observe(duration_seconds)

    def set_partition_count(self, namespace: str, count: int) -> None:
        """Update the resolved partition range count."""
        PARTITION_RANGES.labels(namespace=namespace).set(count)

    def set_checkpoint_entries(self, namespace: str, count: int) -> None:
        """Update the checkpoint entry count."""
        CHECKPOINT_ENTRIES.labels(namespace=namespace).set(count)

    def get_metrics(self) -> bytes:
        """Generate metrics in Prometheus format."""
        return generate_latest(REGISTRY)


# Global metrics collector instance
_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
