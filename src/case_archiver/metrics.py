"""Prometheus metrics for monitoring archival runs."""

import time
from typing import Optional

import structlog
from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from utils.logging import get_logger


class ArchiverMetrics:
    """Prometheus metrics for the case archiver."""

    def __init__(
        self,
        logger: Optional[structlog.BoundLogger] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        """Initialize metrics.

        Args:
            logger: Optional logger instance
            registry: Optional Prometheus registry (defaults to global REGISTRY)
        """
        self.logger = logger or get_logger("metrics")
        self.registry = registry or REGISTRY

        self.documents_total = Counter(
            "case_archiver_documents_total",
            "Documents handled, by outcome",
            ["outcome"],  # archived, failed, format_error, skipped
            registry=self.registry,
        )

        self.pages_fetched_total = Counter(
            "case_archiver_pages_fetched_total",
            "Case pages fetched from the case source",
            registry=self.registry,
        )

        self.runs_total = Counter(
            "case_archiver_runs_total",
            "Batch runs, by resulting status",
            ["status"],  # completed, not_completed, skipped, failure
            registry=self.registry,
        )

        self.notifications_total = Counter(
            "case_archiver_notifications_total",
            "Notifications, by kind and result",
            ["kind", "result"],  # result: sent, failed, skipped
            registry=self.registry,
        )

        self.run_duration_seconds = Histogram(
            "case_archiver_run_duration_seconds",
            "Duration of batch runs in seconds",
            buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0, 1800.0, 3600.0],
            registry=self.registry,
        )

        self.last_success_timestamp = Gauge(
            "case_archiver_last_success_timestamp",
            "Unix timestamp of the last batch run that completed",
            registry=self.registry,
        )

    def record_document(self, outcome: str) -> None:
        self.documents_total.labels(outcome=outcome).inc()

    def record_page_fetched(self) -> None:
        self.pages_fetched_total.inc()

    def record_notification(self, kind: str, result: str) -> None:
        self.notifications_total.labels(kind=kind, result=result).inc()

    def record_run_status(self, status: str, duration: Optional[float] = None) -> None:
        """Record the outcome of a batch run.

        Args:
            status: Run status (completed, not_completed, skipped, failure)
            duration: Optional run duration in seconds
        """
        self.runs_total.labels(status=status).inc()
        if duration is not None:
            self.run_duration_seconds.observe(duration)
        if status == "completed":
            self.last_success_timestamp.set(time.time())

    def get_metrics(self) -> bytes:
        """Get Prometheus metrics in text format."""
        return generate_latest(self.registry)

    def start_metrics_server(self, port: int = 8000) -> None:
        """Start HTTP server for Prometheus metrics.

        Args:
            port: Port to listen on (default: 8000)
        """
        try:
            start_http_server(port, registry=self.registry)
            self.logger.info(
                "Prometheus metrics server started",
                port=port,
                endpoint=f"http://localhost:{port}/metrics",
            )
        except Exception as e:
            self.logger.error(
                "Failed to start metrics server",
                port=port,
                error=str(e),
            )
            raise
