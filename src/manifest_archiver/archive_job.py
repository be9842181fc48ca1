"""Per-pattern archive job: collects matched keys and packs them into one zip."""

import asyncio
import zipfile
from collections import Counter
from enum import Enum
from pathlib import Path
from typing import Optional

import structlog

from manifest_archiver.exceptions import ArchiveMismatchError, ArchiverError
from manifest_archiver.fetcher import ObjectFetcher
from manifest_archiver.models import Pattern
from manifest_archiver.progress_tracker import ProgressTracker
from utils import key_basename, pattern_dirname
from utils.logging import get_logger


class JobState(str, Enum):
    """Lifecycle of an archive job."""

    COLLECTING = "collecting"
    PACKING = "packing"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"
    UPLOADED = "uploaded"
    DELETED = "deleted"
    FAILED = "failed"


_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.COLLECTING: frozenset({JobState.PACKING, JobState.FAILED}),
    JobState.PACKING: frozenset({JobState.FINALIZING, JobState.FAILED}),
    JobState.FINALIZING: frozenset({JobState.FINALIZED, JobState.FAILED}),
    JobState.FINALIZED: frozenset({JobState.UPLOADED, JobState.FAILED}),
    JobState.UPLOADED: frozenset({JobState.DELETED, JobState.FAILED}),
    JobState.DELETED: frozenset(),
    JobState.FAILED: frozenset(),
}


class ArchiveJob:
    """Owns the matched keys, local directory and archive file of one pattern.

    Keys are added by the classifier while the job is ``collecting``. ``run``
    then downloads and packs them one at a time, so a job never has more than
    one object in flight.
    """

    def __init__(
        self,
        pattern: Pattern,
        work_dir: Path,
        compression_level: int = 9,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize archive job.

        Args:
            pattern: Pattern selecting the keys of this job
            work_dir: Working directory holding the per-pattern directories
            compression_level: Deflate level for archive entries
            logger: Optional logger instance
        """
        self.pattern = pattern
        self.compression_level = compression_level
        dirname = pattern_dirname(pattern.raw)
        self.local_dir = Path(work_dir) / dirname
        self.archive_path = self.local_dir / f"output-{dirname}.zip"
        self.matched_keys: list[str] = []
        self.skipped_keys: list[str] = []
        self.processed_count = 0
        self.state = JobState.COLLECTING
        self.error: Optional[BaseException] = None
        self.logger = (logger or get_logger("archive_job")).bind(pattern=pattern.raw)

    def __repr__(self) -> str:
        return (
            f"ArchiveJob(pattern={self.pattern.raw!r}, state={self.state.value}, "
            f"processed={self.processed_count}/{len(self.matched_keys)})"
        )

    @property
    def is_empty(self) -> bool:
        return not self.matched_keys

    def add_keys(self, keys: list[str]) -> list[str]:
        """Append classified keys.

        Keys without a file name (ending in "/") have no cache file or archive
        entry of their own. They are set aside in ``skipped_keys`` and are
        never archived or deleted.

        Returns:
            The keys actually appended

        Raises:
            ArchiverError: If the job already left the collecting state
        """
        if self.state is not JobState.COLLECTING:
            raise ArchiverError(
                f"Cannot add keys to a job in state {self.state.value}",
                pattern=self.pattern.raw,
            )
        accepted = []
        for key in keys:
            if key_basename(key):
                accepted.append(key)
            else:
                self.skipped_keys.append(key)
                self.logger.warning("Skipping key without a file name", key=key)
        self.matched_keys.extend(accepted)
        return accepted

    def cache_path(self, key: str) -> Path:
        """Local cache file of ``key`` (named after its final path segment)."""
        return self.local_dir / key_basename(key)

    def transition(self, new_state: JobState) -> None:
        """Move to ``new_state``.

        Raises:
            ArchiverError: If the transition is not allowed
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise ArchiverError(
                f"Invalid job transition {self.state.value} -> {new_state.value}",
                pattern=self.pattern.raw,
            )
        self.logger.debug("Job state changed", previous=self.state.value, state=new_state.value)
        self.state = new_state

    def fail(self, error: BaseException) -> None:
        if self.state is not JobState.FAILED:
            self.state = JobState.FAILED
        self.error = error

    def prepare(self) -> None:
        """Create the pattern's local directory."""
        self.local_dir.mkdir(parents=True, exist_ok=True)

    def colliding_basenames(self) -> dict[str, int]:
        """Basenames shared by more than one matched key."""
        counts = Counter(key_basename(key) for key in self.matched_keys)
        return {name: count for name, count in counts.items() if count > 1}

    async def run(
        self,
        fetcher: ObjectFetcher,
        progress: Optional[ProgressTracker] = None,
    ) -> None:
        """Fetch every matched key and pack it into the archive.

        A job without keys is skipped and produces no archive.

        Raises:
            ObjectFetchError: If a key could not be downloaded
            ArchiveMismatchError: If the packed count differs from the matched count
        """
        if self.is_empty:
            self.logger.info("No matched keys, skipping archive")
            return

        collisions = self.colliding_basenames()
        if collisions:
            self.logger.warning(
                "Matched keys share file names, cache files and archive entries will collide",
                collisions=collisions,
            )

        planned = len(self.matched_keys)
        archive: Optional[zipfile.ZipFile] = None
        try:
            self.transition(JobState.PACKING)
            self.prepare()
            archive = await asyncio.to_thread(
                zipfile.ZipFile,
                self.archive_path,
                "w",
                zipfile.ZIP_DEFLATED,
                True,
                self.compression_level,
            )
            if progress:
                progress.start(planned)

            for key in self.matched_keys:
                local_path = self.cache_path(key)
                if not local_path.exists():
                    await fetcher.fetch_to(key, local_path, pattern=self.pattern.raw)

                await asyncio.to_thread(archive.write, local_path, key_basename(key))
                self.processed_count += 1
                if progress:
                    progress.update(self.processed_count)

                if self.processed_count == planned:
                    self.transition(JobState.FINALIZING)
                    self.logger.info("Finalizing zip", archive=str(self.archive_path))
                    await asyncio.to_thread(archive.close)
                    archive = None

            self._verify_finalized(planned)
            self.transition(JobState.FINALIZED)
        except Exception as e:
            if archive is not None:
                await asyncio.to_thread(archive.close)
            self.fail(e)
            if progress:
                progress.finish(success=False)
            raise

        if progress:
            progress.finish(success=True)

    def _verify_finalized(self, planned: int) -> None:
        if self.state is not JobState.FINALIZING or self.processed_count != planned:
            raise ArchiveMismatchError(
                f"Mismatch processed archived vs planned: {self.processed_count} vs {planned}",
                pattern=self.pattern.raw,
                context={"processed": self.processed_count, "planned": planned},
            )
        with zipfile.ZipFile(self.archive_path) as archive:
            entries = len(archive.infolist())
        if entries != planned:
            raise ArchiveMismatchError(
                f"Mismatch archive entries vs planned: {entries} vs {planned}",
                pattern=self.pattern.raw,
                context={"entries": entries, "planned": planned},
            )
        self.logger.info("Archive finalized", entries=entries, archive=str(self.archive_path))
