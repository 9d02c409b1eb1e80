"""Unit tests for metrics module."""

from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry

from case_archiver.metrics import ArchiverMetrics


@pytest.fixture
def metrics() -> ArchiverMetrics:
    """Create metrics on a private registry."""
    return ArchiverMetrics(registry=CollectorRegistry())


def test_record_document(metrics: ArchiverMetrics) -> None:
    """Test document outcomes are counted per outcome."""
    metrics.record_document("archived")
    metrics.record_document("archived")
    metrics.record_document("failed")

    value = metrics.registry.get_sample_value
    assert value("case_archiver_documents_total", {"outcome": "archived"}) == 2.0
    assert value("case_archiver_documents_total", {"outcome": "failed"}) == 1.0


def test_record_page_fetched(metrics: ArchiverMetrics) -> None:
    """Test fetched pages are counted."""
    metrics.record_page_fetched()
    assert metrics.registry.get_sample_value("case_archiver_pages_fetched_total") == 1.0


def test_record_notification(metrics: ArchiverMetrics) -> None:
    """Test notifications are counted by kind and result."""
    metrics.record_notification("geotechnical", "sent")

    assert (
        metrics.registry.get_sample_value(
            "case_archiver_notifications_total", {"kind": "geotechnical", "result": "sent"}
        )
        == 1.0
    )


def test_record_run_status_completed(metrics: ArchiverMetrics) -> None:
    """Test completed runs set the last success timestamp."""
    metrics.record_run_status("completed", duration=12.5)

    value = metrics.registry.get_sample_value
    assert value("case_archiver_runs_total", {"status": "completed"}) == 1.0
    assert value("case_archiver_run_duration_seconds_count") == 1.0
    assert value("case_archiver_last_success_timestamp") > 0


def test_record_run_status_not_completed(metrics: ArchiverMetrics) -> None:
    """Test unfinished runs leave the last success timestamp alone."""
    metrics.record_run_status("not_completed")

    value = metrics.registry.get_sample_value
    assert value("case_archiver_runs_total", {"status": "not_completed"}) == 1.0
    assert value("case_archiver_last_success_timestamp") == 0.0
    assert value("case_archiver_run_duration_seconds_count") == 0.0


def test_get_metrics(metrics: ArchiverMetrics) -> None:
    """Test metrics exposition format."""
    metrics.record_page_fetched()
    output = metrics.get_metrics()
    assert b"case_archiver_pages_fetched_total" in output


def test_start_metrics_server(metrics: ArchiverMetrics) -> None:
    """Test the metrics server is started on the configured port."""
    with patch("case_archiver.metrics.start_http_server") as start:
        metrics.start_metrics_server(9100)
    start.assert_called_once_with(9100, registry=metrics.registry)


def test_start_metrics_server_failure(metrics: ArchiverMetrics) -> None:
    """Test server start failures are raised."""
    with patch("case_archiver.metrics.start_http_server", side_effect=OSError("in use")):
        with pytest.raises(OSError):
            metrics.start_metrics_server(9100)
