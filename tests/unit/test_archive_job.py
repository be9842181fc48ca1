"""Unit tests for the archive job state machine."""

import zipfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conftest import FakeS3Client
from manifest_archiver.archive_job import ArchiveJob, JobState
from manifest_archiver.exceptions import ArchiveMismatchError, ArchiverError, ObjectFetchError
from manifest_archiver.fetcher import ObjectFetcher
from manifest_archiver.models import Pattern
from manifest_archiver.progress_tracker import ProgressTracker


@pytest.fixture
def job(tmp_path: Path) -> ArchiveJob:
    """Create a job for the 'logs' pattern."""
    return ArchiveJob(Pattern.compile("logs"), work_dir=tmp_path)


def seed(fake_s3: FakeS3Client, *keys: str) -> None:
    for key in keys:
        fake_s3.put("files", key, f"content of {key}".encode())


def test_job_paths(tmp_path: Path) -> None:
    """Test directory and archive naming from the pattern text."""
    job = ArchiveJob(Pattern.compile("logs/2019/"), work_dir=tmp_path)
    assert job.local_dir == tmp_path / "logs_2019_"
    assert job.archive_path == tmp_path / "logs_2019_" / "output-logs_2019_.zip"
    assert job.cache_path("a/b/c.txt") == tmp_path / "logs_2019_" / "c.txt"
    assert job.state is JobState.COLLECTING


def test_invalid_transition(job: ArchiveJob) -> None:
    """Test that skipping states is refused."""
    with pytest.raises(ArchiverError, match="collecting -> uploaded"):
        job.transition(JobState.UPLOADED)


def test_colliding_basenames(job: ArchiveJob) -> None:
    """Test detection of keys sharing a final path segment."""
    job.add_keys(["a/logs/1.txt", "b/logs/1.txt", "c/logs/2.txt"])
    assert job.colliding_basenames() == {"1.txt": 2}


def test_add_keys_sets_aside_keys_without_file_name(job: ArchiveJob) -> None:
    """Test that folder-style keys never reach the archive plan."""
    accepted = job.add_keys(["a/logs/", "a/logs/1.txt"])

    assert accepted == ["a/logs/1.txt"]
    assert job.matched_keys == ["a/logs/1.txt"]
    assert job.skipped_keys == ["a/logs/"]


@pytest.mark.asyncio
async def test_run_packs_every_key(job: ArchiveJob, fake_s3: FakeS3Client) -> None:
    """Test the three-key example produces a three-entry archive."""
    keys = ["a/logs/1.txt", "b/logs/2.txt", "c/logs/3.txt"]
    seed(fake_s3, *keys)
    job.add_keys(keys)

    await job.run(ObjectFetcher(fake_s3, bucket="files"))

    assert job.state is JobState.FINALIZED
    assert job.processed_count == 3
    with zipfile.ZipFile(job.archive_path) as archive:
        assert archive.namelist() == ["1.txt", "2.txt", "3.txt"]
        assert archive.read("2.txt") == b"content of b/logs/2.txt"
        assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in archive.infolist())


@pytest.mark.asyncio
async def test_run_reuses_cached_files(job: ArchiveJob, fake_s3: FakeS3Client) -> None:
    """Test that existing cache files are not downloaded again."""
    seed(fake_s3, "a/logs/1.txt", "b/logs/2.txt")
    job.add_keys(["a/logs/1.txt", "b/logs/2.txt"])
    job.prepare()
    job.cache_path("a/logs/1.txt").write_bytes(b"cached")

    await job.run(ObjectFetcher(fake_s3, bucket="files"))

    assert [call[2] for call in fake_s3.operations("download_file")] == ["b/logs/2.txt"]
    with zipfile.ZipFile(job.archive_path) as archive:
        assert archive.read("1.txt") == b"cached"


@pytest.mark.asyncio
async def test_run_without_keys_is_skipped(job: ArchiveJob, fake_s3: FakeS3Client) -> None:
    """Test that an empty job produces no archive."""
    await job.run(ObjectFetcher(fake_s3, bucket="files"))

    assert job.state is JobState.COLLECTING
    assert not job.archive_path.exists()
    assert fake_s3.calls == []


@pytest.mark.asyncio
async def test_run_retries_transient_failures(job: ArchiveJob, fake_s3: FakeS3Client) -> None:
    """Test that a key failing four times still gets archived."""
    seed(fake_s3, "a/logs/1.txt")
    fake_s3.download_failures["a/logs/1.txt"] = 4
    job.add_keys(["a/logs/1.txt"])

    await job.run(ObjectFetcher(fake_s3, bucket="files"))

    assert job.state is JobState.FINALIZED


@pytest.mark.asyncio
async def test_run_fails_after_exhausted_retries(job: ArchiveJob, fake_s3: FakeS3Client) -> None:
    """Test that a key failing five times fails the job."""
    seed(fake_s3, "a/logs/1.txt", "b/logs/2.txt")
    fake_s3.download_failures["b/logs/2.txt"] = 5
    job.add_keys(["a/logs/1.txt", "b/logs/2.txt"])

    with pytest.raises(ObjectFetchError):
        await job.run(ObjectFetcher(fake_s3, bucket="files"))

    assert job.state is JobState.FAILED
    assert isinstance(job.error, ObjectFetchError)
    assert job.processed_count == 1


@pytest.mark.asyncio
async def test_run_detects_entry_mismatch(job: ArchiveJob, fake_s3: FakeS3Client) -> None:
    """Test that an archive whose entry count differs from the plan fails finalize."""
    seed(fake_s3, "a/logs/1.txt", "b/logs/2.txt")
    job.add_keys(["a/logs/1.txt", "b/logs/2.txt"])
    fetcher = ObjectFetcher(fake_s3, bucket="files")

    original_close = zipfile.ZipFile.close

    def close_after_truncating(archive: zipfile.ZipFile) -> None:
        # Drop the central directory record of the last entry
        if archive.mode == "w" and archive.filelist:
            archive.filelist.pop()
        original_close(archive)

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(zipfile.ZipFile, "close", close_after_truncating)
        with pytest.raises(ArchiveMismatchError, match="1 vs 2"):
            await job.run(fetcher)

    assert job.state is JobState.FAILED


@pytest.mark.asyncio
async def test_run_reports_progress(job: ArchiveJob, fake_s3: FakeS3Client) -> None:
    """Test that progress is started, updated per key and finished."""
    keys = ["a/logs/1.txt", "b/logs/2.txt"]
    seed(fake_s3, *keys)
    job.add_keys(keys)
    progress = MagicMock(spec=ProgressTracker)

    await job.run(ObjectFetcher(fake_s3, bucket="files"), progress=progress)

    progress.start.assert_called_once_with(2)
    assert [c.args for c in progress.update.call_args_list] == [(1,), (2,)]
    progress.finish.assert_called_once_with(success=True)


@pytest.mark.asyncio
async def test_add_keys_after_packing_refused(job: ArchiveJob, fake_s3: FakeS3Client) -> None:
    """Test that the key list is frozen once the job ran."""
    seed(fake_s3, "a/logs/1.txt")
    job.add_keys(["a/logs/1.txt"])
    await job.run(ObjectFetcher(fake_s3, bucket="files"))

    with pytest.raises(ArchiverError, match="Cannot add keys"):
        job.add_keys(["b/logs/2.txt"])
