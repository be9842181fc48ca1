"""Deletes archived originals in chunks and removes their local cache files."""

import asyncio
from collections.abc import Sequence
from typing import Optional

import structlog

from manifest_archiver.archive_job import ArchiveJob, JobState
from manifest_archiver.exceptions import DeleteError, S3Error
from manifest_archiver.metrics import ArchiverMetrics
from manifest_archiver.s3_client import S3Client
from utils import chunked
from utils.logging import get_logger

# Largest batch DeleteObjects accepts
MAX_DELETE_CHUNK_SIZE = 1000


def chunk_keys(keys: Sequence[str], size: int = MAX_DELETE_CHUNK_SIZE) -> list[list[str]]:
    """Split keys into consecutive chunks of at most ``size``."""
    if size > MAX_DELETE_CHUNK_SIZE:
        raise ValueError(f"Chunk size must be at most {MAX_DELETE_CHUNK_SIZE}, got {size}")
    return [list(chunk) for chunk in chunked(keys, size)]


class ObjectDeleter:
    """Removes archived objects from the file bucket after their upload."""

    def __init__(
        self,
        s3_client: S3Client,
        bucket: str,
        chunk_size: int = MAX_DELETE_CHUNK_SIZE,
        dry_run: bool = True,
        metrics: Optional[ArchiverMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize deleter.

        Args:
            s3_client: Storage client
            bucket: Bucket holding the archived originals
            chunk_size: Keys per DeleteObjects request
            dry_run: Log requests instead of sending them
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.s3_client = s3_client
        self.bucket = bucket
        self.chunk_size = chunk_size
        self.dry_run = dry_run
        self.metrics = metrics
        self.logger = logger or get_logger("deleter")

    async def delete_all(self, jobs: Sequence[ArchiveJob]) -> int:
        """Delete the originals of every uploaded job in pattern order.

        Returns:
            Number of objects deleted

        Raises:
            DeleteError: On the first failed chunk; remaining chunks and patterns are skipped
        """
        deleted = 0
        for job in jobs:
            if job.is_empty:
                continue
            deleted += await self.delete_job(job)
        return deleted

    async def delete_job(self, job: ArchiveJob) -> int:
        """Delete the originals of one job, chunk by chunk.

        Raises:
            DeleteError: If the archive was not uploaded or a chunk fails
        """
        logger = self.logger.bind(pattern=job.pattern.raw)
        expected_state = JobState.FINALIZED if self.dry_run else JobState.UPLOADED
        if job.state is not expected_state:
            raise DeleteError(
                f"Refusing to delete originals of a job in state {job.state.value}",
                pattern=job.pattern.raw,
            )

        logger.info(
            "Deleting archived keys",
            count=len(job.matched_keys),
            bucket=self.bucket,
        )

        deleted = 0
        for chunk in chunk_keys(job.matched_keys, self.chunk_size):
            if self.dry_run:
                logger.info("[DryRun] Deleting archived keys", bucket=self.bucket, count=len(chunk))
                continue

            await self._delete_chunk(job, chunk, logger)
            deleted += len(chunk)
            if self.metrics:
                self.metrics.objects_deleted_total.labels(pattern=job.pattern.raw).inc(len(chunk))
            logger.info("Deleting local files", count=len(chunk))
            await asyncio.to_thread(self._remove_cache_files, job, chunk, logger)

        if not self.dry_run:
            job.transition(JobState.DELETED)
        return deleted

    async def _delete_chunk(
        self,
        job: ArchiveJob,
        chunk: list[str],
        logger: structlog.BoundLogger,
    ) -> None:
        try:
            response = await asyncio.to_thread(self.s3_client.delete_objects, self.bucket, chunk)
        except S3Error as e:
            logger.error("Error deleting archived keys", error=str(e), count=len(chunk))
            error = DeleteError(
                f"Batch delete failed: {e}",
                pattern=job.pattern.raw,
                context={"bucket": self.bucket, "count": len(chunk)},
            )
            job.fail(error)
            raise error from e

        if response["errors"]:
            logger.error(
                "Error deleting archived keys",
                failed=len(response["errors"]),
                first_error=response["errors"][0],
            )
            error = DeleteError(
                f"Batch delete reported {len(response['errors'])} failed keys",
                pattern=job.pattern.raw,
                context={"bucket": self.bucket, "errors": response["errors"][:10]},
            )
            job.fail(error)
            raise error

        logger.info("Deleted keys", count=len(chunk))

    @staticmethod
    def _remove_cache_files(
        job: ArchiveJob,
        chunk: list[str],
        logger: structlog.BoundLogger,
    ) -> None:
        for key in chunk:
            path = job.cache_path(key)
            try:
                path.unlink()
            except OSError as e:
                logger.debug("Failed to delete from local dir", path=str(path), error=str(e))
