"""Uploads finalized archives to cold storage."""

import asyncio
from collections.abc import Sequence
from typing import Any, Optional

import structlog

from manifest_archiver.archive_job import ArchiveJob, JobState
from manifest_archiver.config import S3Config
from manifest_archiver.exceptions import S3Error, UploadError
from manifest_archiver.metrics import ArchiverMetrics
from manifest_archiver.s3_client import S3Client
from utils.logging import get_logger


class ArchiveUploader:
    """Moves each non-empty archive to the destination bucket, one pattern at a time."""

    def __init__(
        self,
        s3_client: S3Client,
        s3_config: S3Config,
        extension: str = "zip",
        dry_run: bool = True,
        metrics: Optional[ArchiverMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize uploader.

        Args:
            s3_client: Storage client
            s3_config: S3 configuration (destination bucket, storage class)
            extension: Extension appended to the pattern text to form the archive key
            dry_run: Log requests instead of sending them
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.s3_client = s3_client
        self.bucket = s3_config.destination_bucket
        self.storage_class = s3_config.storage_class
        self.extension = extension
        self.dry_run = dry_run
        self.metrics = metrics
        self.logger = logger or get_logger("uploader")

    def archive_key(self, job: ArchiveJob) -> str:
        return f"{job.pattern.raw}.{self.extension}"

    async def upload_all(self, jobs: Sequence[ArchiveJob]) -> list[dict[str, Any]]:
        """Upload every finalized, non-empty archive in pattern order.

        Returns:
            Upload results (bucket, key, size, etag) for the archives sent

        Raises:
            UploadError: On the first failed upload; later patterns are not attempted
        """
        results = []
        for job in jobs:
            if job.is_empty:
                self.logger.info("No archived keys, skipping upload", pattern=job.pattern.raw)
                continue
            result = await self.upload(job)
            if result is not None:
                results.append(result)
        return results

    async def upload(self, job: ArchiveJob) -> Optional[dict[str, Any]]:
        """Upload the archive of one job.

        Returns:
            Upload result, or None in dry-run mode

        Raises:
            UploadError: If the job is not finalized or the upload fails
        """
        logger = self.logger.bind(pattern=job.pattern.raw)
        key = self.archive_key(job)
        request = {
            "bucket": self.bucket,
            "key": key,
            "storage_class": self.storage_class,
            "file": str(job.archive_path),
        }

        if job.state is not JobState.FINALIZED:
            raise UploadError(
                f"Archive is not finalized (state {job.state.value})",
                pattern=job.pattern.raw,
                context=request,
            )

        logger.info("Uploading archive", **request)
        if self.dry_run:
            logger.info("[DryRun] Uploading archive", **request)
            return None

        try:
            result = await asyncio.to_thread(
                self.s3_client.upload_file,
                self.bucket,
                key,
                job.archive_path,
                self.storage_class,
            )
        except (S3Error, OSError) as e:
            logger.error("Error uploading archive", error=str(e), **request)
            error = UploadError(
                f"Archive upload failed: {e}",
                pattern=job.pattern.raw,
                context=request,
            )
            job.fail(error)
            raise error from e

        job.transition(JobState.UPLOADED)
        if self.metrics:
            self.metrics.record_upload(job.pattern.raw, result["size"])
        logger.info("Archive uploaded successfully", size=result["size"], etag=result["etag"], key=key)
        return result
