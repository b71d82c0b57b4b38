"""Prometheus metrics collection for DAMP Orchestrator."""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for orchestration operations."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Initialize metrics collector with all metrics.

        Args:
            registry: Registry to register metrics in (a private one by default)
        """
        self.registry = registry or CollectorRegistry()

        self.container_operations_total = Counter(
            "damp_container_operations_total",
            "Total number of container lifecycle operations",
            ["operation", "status"],
            registry=self.registry,
        )

        self.image_pulls_total = Counter(
            "damp_image_pulls_total",
            "Total number of image pull decisions",
            ["result"],
            registry=self.registry,
        )

        self.event_reconnects_total = Counter(
            "damp_event_reconnects_total",
            "Total number of Docker event stream reconnect attempts",
            registry=self.registry,
        )

        self.resources_deleted_total = Counter(
            "damp_resources_deleted_total",
            "Total number of managed resources deleted by batch operations",
            ["resource_type", "status"],
            registry=self.registry,
        )

        self.volume_copy_duration_seconds = Histogram(
            "damp_volume_copy_duration_seconds",
            "Duration of folder to volume copy operations",
            buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 900.0, 1800.0],
            registry=self.registry,
        )

        self.event_stream_connected = Gauge(
            "damp_event_stream_connected",
            "Whether the Docker event stream is connected (1) or not (0)",
            registry=self.registry,
        )

    def record_container_operation(self, operation: str, status: str = "success") -> None:
        """
        Record a container lifecycle operation.

        Args:
            operation: Operation name (create, start, stop, restart, remove)
            status: Outcome (success or failure)
        """
        self.container_operations_total.labels(operation=operation, status=status).inc()

    def record_image_pull(self, result: str) -> None:
        """
        Record an image pull decision.

        Args:
            result: pulled, skipped or failed
        """
        self.image_pulls_total.labels(result=result).inc()

    def record_reconnect(self) -> None:
        """Record an event stream reconnect attempt."""
        self.event_reconnects_total.inc()

    def record_resource_deletion(self, resource_type: str, status: str) -> None:
        """
        Record a resource deletion from a batch operation.

        Args:
            resource_type: container or volume
            status: deleted or failed
        """
        self.resources_deleted_total.labels(resource_type=resource_type, status=status).inc()

    def record_volume_copy_duration(self, duration_seconds: float) -> None:
        self.volume_copy_duration_seconds.observe(duration_seconds)

    def set_event_stream_connected(self, connected: bool) -> None:
        self.event_stream_connected.set(1 if connected else 0)

    def get_metrics(self) -> bytes:
        """
        Get current metrics in Prometheus format.

        Returns:
            Metrics data in bytes
        """
        return generate_latest(self.registry)
