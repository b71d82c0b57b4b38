"""Unit tests for metrics collector."""

import pytest

from damp_orchestrator.utils.metrics_collector import MetricsCollector


@pytest.fixture
def metrics_collector():
    """Create metrics collector with a private registry."""
    return MetricsCollector()


def test_collectors_do_not_share_registries():
    """Two collectors can coexist without duplicate registration errors."""
    first = MetricsCollector()
    second = MetricsCollector()
    first.record_reconnect()

    assert "damp_event_reconnects_total 1.0" in first.get_metrics().decode("utf-8")
    assert "damp_event_reconnects_total 0.0" in second.get_metrics().decode("utf-8")


def test_record_container_operation(metrics_collector):
    """Test recording container operations."""
    metrics_collector.record_container_operation("create")
    metrics_collector.record_container_operation("start")
    metrics_collector.record_container_operation("start", "failure")

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "damp_container_operations_total" in metrics_data
    assert 'operation="create"' in metrics_data
    assert 'status="failure"' in metrics_data


def test_record_image_pull(metrics_collector):
    metrics_collector.record_image_pull("pulled")
    metrics_collector.record_image_pull("skipped")

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert 'damp_image_pulls_total{result="pulled"} 1.0' in metrics_data
    assert 'damp_image_pulls_total{result="skipped"} 1.0' in metrics_data


def test_record_resource_deletion(metrics_collector):
    """Test recording batch deletions per type and status."""
    metrics_collector.record_resource_deletion("container", "deleted")
    metrics_collector.record_resource_deletion("volume", "failed")

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert 'resource_type="container",status="deleted"' in metrics_data
    assert 'resource_type="volume",status="failed"' in metrics_data


def test_event_stream_gauge(metrics_collector):
    metrics_collector.set_event_stream_connected(True)
    assert "damp_event_stream_connected 1.0" in metrics_collector.get_metrics().decode("utf-8")

    metrics_collector.set_event_stream_connected(False)
    assert "damp_event_stream_connected 0.0" in metrics_collector.get_metrics().decode("utf-8")


def test_record_volume_copy_duration(metrics_collector):
    metrics_collector.record_volume_copy_duration(12.5)

    metrics_data = metrics_collector.get_metrics().decode("utf-8")

    assert "damp_volume_copy_duration_seconds_count 1.0" in metrics_data
    assert "damp_volume_copy_duration_seconds_sum 12.5" in metrics_data
