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
    """Prometheus metrics for the manifest archiver."""

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

        self.rows_classified_total = Counter(
            "manifest_archiver_rows_classified_total",
            "Manifest rows tested against the configured patterns",
            registry=self.registry,
        )

        self.keys_matched_total = Counter(
            "manifest_archiver_keys_matched_total",
            "Object keys selected for archival",
            ["pattern"],
            registry=self.registry,
        )

        self.objects_fetched_total = Counter(
            "manifest_archiver_objects_fetched_total",
            "Objects downloaded from the file bucket",
            ["pattern"],
            registry=self.registry,
        )

        self.fetch_retries_total = Counter(
            "manifest_archiver_fetch_retries_total",
            "Failed object download attempts that were retried",
            ["pattern"],
            registry=self.registry,
        )

        self.archives_uploaded_total = Counter(
            "manifest_archiver_archives_uploaded_total",
            "Archives uploaded to cold storage",
            ["pattern"],
            registry=self.registry,
        )

        self.bytes_uploaded_total = Counter(
            "manifest_archiver_bytes_uploaded_total",
            "Archive bytes uploaded to cold storage",
            ["pattern"],
            registry=self.registry,
        )

        self.objects_deleted_total = Counter(
            "manifest_archiver_objects_deleted_total",
            "Original objects deleted after archival",
            ["pattern"],
            registry=self.registry,
        )

        self.errors_total = Counter(
            "manifest_archiver_errors_total",
            "Errors by pipeline stage",
            ["stage", "pattern"],
            registry=self.registry,
        )

        self.runs_total = Counter(
            "manifest_archiver_runs_total",
            "Archival runs by final status",
            ["status"],
            registry=self.registry,
        )

        self.stage_duration_seconds = Histogram(
            "manifest_archiver_stage_duration_seconds",
            "Duration of pipeline stages in seconds",
            ["stage"],
            buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0, 3600.0, 14400.0],
            registry=self.registry,
        )

        self.last_success_timestamp = Gauge(
            "manifest_archiver_last_success_timestamp",
            "Unix timestamp of last successful run",
            registry=self.registry,
        )

        self._stage_timers: dict[str, float] = {}

    def record_error(self, stage: str, pattern: Optional[str] = None) -> None:
        self.errors_total.labels(stage=stage, pattern=pattern or "none").inc()

    def record_upload(self, pattern: str, size: int) -> None:
        self.archives_uploaded_total.labels(pattern=pattern).inc()
        self.bytes_uploaded_total.labels(pattern=pattern).inc(size)

    def record_run_status(self, status: str) -> None:
        """Record run status ('success' or 'failure')."""
        self.runs_total.labels(status=status).inc()
        if status == "success":
            self.last_success_timestamp.set(time.time())

    def start_stage_timer(self, stage: str) -> None:
        self._stage_timers[stage] = time.monotonic()

    def stop_stage_timer(self, stage: str) -> Optional[float]:
        """Stop timing a stage and record the duration.

        Returns:
            Duration in seconds, or None if timer was not started
        """
        started = self._stage_timers.pop(stage, None)
        if started is None:
            return None
        duration = time.monotonic() - started
        self.stage_duration_seconds.labels(stage=stage).observe(duration)
        return duration

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
        except OSError as e:
            self.logger.error("Failed to start metrics server", port=port, error=str(e))
            raise
