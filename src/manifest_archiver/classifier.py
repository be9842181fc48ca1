"""Assigns manifest rows to the archive jobs whose patterns match them."""

import asyncio
import csv
from collections.abc import Sequence
from pathlib import Path
from typing import Optional

import structlog

from manifest_archiver.archive_job import ArchiveJob
from manifest_archiver.metrics import ArchiverMetrics
from manifest_archiver.models import RowSchema
from utils.logging import get_logger


class PartResult:
    """Matches found in one manifest part, keyed by pattern position."""

    def __init__(self, path: Path, pattern_count: int) -> None:
        self.path = path
        self.rows = 0
        self.matches: list[list[str]] = [[] for _ in range(pattern_count)]


class RecordClassifier:
    """Streams manifest parts and sorts their object keys into pattern buckets.

    Every row is tested against every pattern in declaration order; a key
    matching several patterns lands in each of them. Rows are classified
    synchronously inside a worker thread, so a part is done exactly when its
    last row has been tested.
    """

    def __init__(
        self,
        schema: RowSchema,
        dry_run: bool = True,
        has_header: bool = False,
        max_parallel_parts: int = 4,
        metrics: Optional[ArchiverMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize classifier.

        Args:
            schema: Row accessor locating the object key
            dry_run: Log matches instead of recording them
            has_header: Skip the first row of every part
            max_parallel_parts: Parts classified at the same time
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.schema = schema
        self.dry_run = dry_run
        self.has_header = has_header
        self.max_parallel_parts = max_parallel_parts
        self.metrics = metrics
        self.logger = logger or get_logger("classifier")
        self.rows_classified = 0
        self.matches_found = 0

    async def classify(
        self,
        part_paths: Sequence[Path],
        jobs: Sequence[ArchiveJob],
    ) -> dict[str, list[str]]:
        """Classify all parts and hand the matched keys to their jobs.

        Parts are processed concurrently; their results are merged in
        manifest order once every part has finished, so the order of keys in
        a job does not depend on scheduling.

        Args:
            part_paths: Local manifest part files, in manifest order
            jobs: One job per pattern, in declaration order

        Returns:
            Mapping of pattern text to the keys recorded during this call

        Raises:
            ManifestSchemaError: If a row does not fit the schema
            OSError: If a part cannot be read
        """
        semaphore = asyncio.Semaphore(self.max_parallel_parts)

        async def classify_with_semaphore(path: Path) -> PartResult:
            async with semaphore:
                self.logger.info("Processing manifest file", part=str(path))
                result = await asyncio.to_thread(self._classify_part, path, jobs)
                self.logger.info("All data in csv read", part=str(path), rows=result.rows)
                return result

        results = await asyncio.gather(
            *(classify_with_semaphore(path) for path in part_paths),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        recorded: dict[str, list[str]] = {job.pattern.raw: [] for job in jobs}
        for result in results:
            self.rows_classified += result.rows
            for job, keys in zip(jobs, result.matches):
                self.matches_found += len(keys)
                if self.metrics and keys:
                    self.metrics.keys_matched_total.labels(pattern=job.pattern.raw).inc(len(keys))
                if self.dry_run:
                    continue
                recorded[job.pattern.raw].extend(job.add_keys(keys))

        if self.metrics:
            self.metrics.rows_classified_total.inc(sum(r.rows for r in results))

        for job in jobs:
            self.logger.info(
                "Pattern classified",
                pattern=job.pattern.raw,
                matched=len(recorded[job.pattern.raw]),
                dry_run=self.dry_run,
            )
        return recorded

    def _classify_part(self, path: Path, jobs: Sequence[ArchiveJob]) -> PartResult:
        result = PartResult(path, len(jobs))
        patterns = [job.pattern for job in jobs]
        source = str(path)

        with open(path, encoding="utf-8", newline="") as f:
            reader = csv.reader(f)
            for line, row in enumerate(reader, start=1):
                if line == 1 and self.has_header:
                    continue
                if not row:
                    continue
                key = self.schema.key_of(row, source=source, line=line)
                result.rows += 1
                for position, pattern in enumerate(patterns):
                    if not pattern.matches(key):
                        continue
                    if self.dry_run:
                        self.logger.info("[DryRun] Pattern matched in file", pattern=pattern.raw, key=key)
                    result.matches[position].append(key)

        return result
