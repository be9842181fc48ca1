"""Pipeline orchestrator that coordinates all archival stages."""

import asyncio
from collections.abc import Awaitable, Sequence
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from prometheus_client import CollectorRegistry

from manifest_archiver.archive_job import ArchiveJob
from manifest_archiver.classifier import RecordClassifier
from manifest_archiver.config import ArchiverConfig
from manifest_archiver.deleter import ObjectDeleter
from manifest_archiver.exceptions import ArchiverError
from manifest_archiver.fetcher import ObjectFetcher
from manifest_archiver.manifest import ManifestLoader
from manifest_archiver.metrics import ArchiverMetrics
from manifest_archiver.models import Pattern, RowSchema
from manifest_archiver.progress_tracker import ProgressTracker
from manifest_archiver.s3_client import S3Client
from manifest_archiver.uploader import ArchiveUploader
from utils.logging import get_logger


async def gather_first_failure(aws: Sequence[Awaitable[Any]]) -> list[Any]:
    """Await every awaitable, then raise the first failure in submission order.

    Siblings of a failed awaitable are not cancelled; the group always settles
    before anything is raised.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


class ManifestArchiver:
    """Runs manifest load, classification, archiving, upload and delete in order.

    Each stage starts only after the previous one finished for every pattern.
    A failure stops the run; work already done for earlier patterns is not
    rolled back.
    """

    def __init__(
        self,
        config: ArchiverConfig,
        s3_client: Optional[S3Client] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Archiver configuration
            s3_client: Storage client (built from config.s3 if omitted)
            logger: Optional logger instance
        """
        self.config = config
        self.dry_run = config.dry_run
        self.logger = logger or get_logger("archiver")
        self.s3_client = s3_client or S3Client(config.s3, logger=self.logger)
        self.last_stats: Optional[dict[str, Any]] = None

        monitoring = config.monitoring
        self.metrics: Optional[ArchiverMetrics] = None
        if monitoring.metrics_enabled:
            self.metrics = ArchiverMetrics(logger=self.logger, registry=CollectorRegistry())
            try:
                self.metrics.start_metrics_server(port=monitoring.metrics_port)
            except OSError as e:
                self.logger.warning(
                    "Failed to start metrics server (non-critical)",
                    port=monitoring.metrics_port,
                    error=str(e),
                )

        self.loader = ManifestLoader(config, self.s3_client, logger=self.logger)
        self.fetcher = ObjectFetcher(
            self.s3_client,
            bucket=config.s3.file_bucket,
            max_attempts=config.archive.max_fetch_attempts,
            metrics=self.metrics,
            logger=self.logger,
        )
        self.uploader = ArchiveUploader(
            self.s3_client,
            config.s3,
            extension=config.archive.extension,
            dry_run=self.dry_run,
            metrics=self.metrics,
            logger=self.logger,
        )
        self.deleter = ObjectDeleter(
            self.s3_client,
            bucket=config.s3.file_bucket,
            chunk_size=config.archive.delete_chunk_size,
            dry_run=self.dry_run,
            metrics=self.metrics,
            logger=self.logger,
        )
        self.jobs = [
            ArchiveJob(
                Pattern.compile(raw),
                work_dir=config.work_dir,
                compression_level=config.archive.compression_level,
                logger=self.logger,
            )
            for raw in config.patterns
        ]

    async def run(self) -> dict[str, Any]:
        """Run the whole pipeline.

        Returns:
            Dictionary with run statistics

        Raises:
            ArchiverError: The first error of the failing stage
        """
        self.logger.info(
            "Starting archival process",
            dry_run=self.dry_run,
            patterns=[job.pattern.raw for job in self.jobs],
        )
        stats: dict[str, Any] = {
            "dry_run": self.dry_run,
            "patterns_total": len(self.jobs),
            "manifest_parts": 0,
            "rows_classified": 0,
            "keys_matched": 0,
            "archives_uploaded": 0,
            "objects_deleted": 0,
            "start_time": datetime.now(timezone.utc).isoformat(),
        }

        stage = "manifest"
        try:
            for job in self.jobs:
                job.prepare()
                self.logger.info("Pattern to match", pattern=job.pattern.raw)

            async with self._stage("manifest"):
                index = await self.loader.load()
                part_paths = await self.loader.materialize_parts(index)
            stats["manifest_parts"] = len(part_paths)

            stage = "classify"
            async with self._stage(stage):
                classifier = RecordClassifier(
                    RowSchema.resolve(
                        index.file_schema,
                        key_index=self.config.manifest.key_column_index,
                        key_name=self.config.manifest.key_column_name,
                    ),
                    dry_run=self.dry_run,
                    has_header=self.config.manifest.has_header,
                    max_parallel_parts=self.config.concurrency.classification,
                    metrics=self.metrics,
                    logger=self.logger,
                )
                await classifier.classify(part_paths, self.jobs)
            stats["rows_classified"] = classifier.rows_classified
            stats["keys_matched"] = classifier.matches_found

            stage = "archive"
            async with self._stage(stage):
                await self.archive_all()
            self.logger.info("Manifest processing completed")

            stage = "upload"
            async with self._stage(stage):
                uploads = await self.uploader.upload_all(self.jobs)
            stats["archives_uploaded"] = len(uploads)

            stage = "delete"
            async with self._stage(stage):
                stats["objects_deleted"] = await self.deleter.delete_all(self.jobs)
        except Exception as e:
            stats["status"] = "failure"
            stats["failed_stage"] = stage
            stats["error"] = str(e)
            pattern = e.pattern if isinstance(e, ArchiverError) else None
            self.logger.error("Archival failed", stage=stage, pattern=pattern, error=str(e))
            if self.metrics:
                self.metrics.record_error(stage, pattern)
                self.metrics.record_run_status("failure")
            raise
        else:
            stats["status"] = "success"
            if self.metrics:
                self.metrics.record_run_status("success")
        finally:
            stats["end_time"] = datetime.now(timezone.utc).isoformat()
            stats["pattern_stats"] = self.pattern_stats()
            self.last_stats = stats
            self.logger.info(
                "Pipeline state",
                states={job.pattern.raw: job.state.value for job in self.jobs},
            )

        summary = {k: v for k, v in stats.items() if k != "pattern_stats"}
        self.logger.info("Archival process completed", **summary)
        return stats

    async def archive_all(self) -> None:
        """Run every archive job, at most ``concurrency.archive_jobs`` at a time."""
        limit = self.config.concurrency.archive_jobs or max(len(self.jobs), 1)
        semaphore = asyncio.Semaphore(limit)
        monitoring = self.config.monitoring

        async def run_with_semaphore(job: ArchiveJob) -> None:
            progress = None
            if monitoring.progress_enabled:
                progress = ProgressTracker(
                    job.pattern.raw,
                    quiet=monitoring.quiet_mode,
                    update_interval=monitoring.progress_update_interval,
                    logger=self.logger,
                )
            async with semaphore:
                try:
                    await job.run(self.fetcher, progress=progress)
                except Exception as e:
                    self.logger.error("Archive job failed", pattern=job.pattern.raw, error=str(e))
                    raise

        await gather_first_failure([run_with_semaphore(job) for job in self.jobs])

    def pattern_stats(self) -> list[dict[str, Any]]:
        return [
            {
                "pattern": job.pattern.raw,
                "matched": len(job.matched_keys),
                "skipped": len(job.skipped_keys),
                "processed": job.processed_count,
                "state": job.state.value,
                "archive": str(job.archive_path),
            }
            for job in self.jobs
        ]

    def _stage(self, stage: str) -> "_StageTimer":
        return _StageTimer(stage, self.metrics, self.logger)


class _StageTimer:
    """Logs stage boundaries and records their duration."""

    def __init__(
        self,
        stage: str,
        metrics: Optional[ArchiverMetrics],
        logger: structlog.BoundLogger,
    ) -> None:
        self.stage = stage
        self.metrics = metrics
        self.logger = logger

    async def __aenter__(self) -> None:
        self.logger.debug("Stage started", stage=self.stage)
        if self.metrics:
            self.metrics.start_stage_timer(self.stage)

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        duration = self.metrics.stop_stage_timer(self.stage) if self.metrics else None
        self.logger.debug(
            "Stage finished",
            stage=self.stage,
            success=exc_type is None,
            duration=duration,
        )
