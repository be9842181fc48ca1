"""Retrying download of single objects from the file bucket."""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from manifest_archiver.exceptions import ObjectFetchError
from manifest_archiver.metrics import ArchiverMetrics
from manifest_archiver.s3_client import S3Client
from utils.logging import get_logger
from utils.retry import RetryConfig, retry_async

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5


async def fetch_with_retry(
    fetch: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    logger: Optional[structlog.BoundLogger] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """Run ``fetch`` until it succeeds or ``max_attempts`` is reached.

    Attempts follow each other immediately, without backoff.

    Raises:
        ObjectFetchError: Chained from the error of the last attempt
    """
    config = RetryConfig(max_attempts=max_attempts, initial_delay=0.0, jitter=False)
    try:
        return await retry_async(fetch, config=config, logger=logger, on_retry=on_retry)
    except Exception as e:
        raise ObjectFetchError(
            f"Fetch failed after {max_attempts} attempts: {e}",
            context={"attempts": max_attempts},
        ) from e


class ObjectFetcher:
    """Downloads objects of the file bucket into local cache files."""

    def __init__(
        self,
        s3_client: S3Client,
        bucket: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        metrics: Optional[ArchiverMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize object fetcher.

        Args:
            s3_client: Storage client
            bucket: Bucket holding the objects
            max_attempts: Attempts per object before giving up
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.s3_client = s3_client
        self.bucket = bucket
        self.max_attempts = max_attempts
        self.metrics = metrics
        self.logger = logger or get_logger("fetcher")

    async def fetch_to(self, key: str, local_path: Path, pattern: Optional[str] = None) -> None:
        """Download ``key`` to ``local_path``.

        The object is written to a temporary sibling first, so a failed
        attempt never leaves a partial cache file behind.

        Raises:
            ObjectFetchError: If every attempt failed
        """
        tmp_path = local_path.with_name(local_path.name + ".download")
        logger = self.logger.bind(key=key, pattern=pattern)

        def download() -> None:
            try:
                self.s3_client.download_file(self.bucket, key, tmp_path)
                tmp_path.replace(local_path)
            except Exception:
                tmp_path.unlink(missing_ok=True)
                raise

        async def attempt() -> None:
            await asyncio.to_thread(download)

        def count_retry(attempt_number: int, error: Exception) -> None:
            if self.metrics:
                self.metrics.fetch_retries_total.labels(pattern=pattern or "none").inc()

        try:
            await fetch_with_retry(
                attempt,
                max_attempts=self.max_attempts,
                logger=logger,
                on_retry=count_retry,
            )
        except ObjectFetchError as e:
            e.pattern = pattern
            e.context.update({"bucket": self.bucket, "key": key})
            raise

        if self.metrics:
            self.metrics.objects_fetched_total.labels(pattern=pattern or "none").inc()
        logger.debug("Object fetched", path=str(local_path))
