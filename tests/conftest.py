"""Pytest configuration and shared fixtures."""

import gzip
import io
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Optional

import pytest

from manifest_archiver.config import ArchiverConfig
from manifest_archiver.exceptions import S3Error


class FakeS3Client:
    """In-memory stand-in for S3Client with failure injection.

    Objects live in ``self.buckets[bucket][key]``. Every call is recorded in
    ``self.calls`` as ``(operation, bucket, key_or_keys)``.
    """

    def __init__(self) -> None:
        self.buckets: dict[str, dict[str, bytes]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.download_failures: dict[str, int] = {}
        self.fail_uploads: set[str] = set()
        self.fail_deletes = False
        self.delete_errors: list[dict[str, str]] = []
        self.uploads: list[dict[str, Any]] = []

    def put(self, bucket: str, key: str, body: bytes) -> None:
        self.buckets.setdefault(bucket, {})[key] = body

    def _get(self, bucket: str, key: str) -> bytes:
        try:
            return self.buckets[bucket][key]
        except KeyError:
            raise S3Error(
                "Failed to get object from S3: NoSuchKey",
                context={"bucket": bucket, "key": key},
            ) from None

    def get_object_bytes(self, bucket: str, key: str) -> bytes:
        self.calls.append(("get_object", bucket, key))
        return self._get(bucket, key)

    def open_object(self, bucket: str, key: str) -> io.BytesIO:
        self.calls.append(("get_object", bucket, key))
        return io.BytesIO(self._get(bucket, key))

    def download_file(self, bucket: str, key: str, local_path: Path) -> None:
        self.calls.append(("download_file", bucket, key))
        remaining = self.download_failures.get(key, 0)
        if remaining:
            self.download_failures[key] = remaining - 1
            raise S3Error("Failed to download file from S3: SlowDown", context={"key": key})
        Path(local_path).write_bytes(self._get(bucket, key))

    def upload_file(
        self, bucket: str, key: str, file_path: Path, storage_class: str
    ) -> dict[str, Any]:
        self.calls.append(("put_object", bucket, key))
        if key in self.fail_uploads:
            raise S3Error("Failed to upload file to S3: AccessDenied", context={"key": key})
        body = Path(file_path).read_bytes()
        self.put(bucket, key, body)
        upload = {
            "bucket": bucket,
            "key": key,
            "size": len(body),
            "etag": '"fake-etag"',
            "storage_class": storage_class,
        }
        self.uploads.append(upload)
        return upload

    def delete_objects(self, bucket: str, keys: Sequence[str]) -> dict[str, Any]:
        self.calls.append(("delete_objects", bucket, list(keys)))
        if self.fail_deletes:
            raise S3Error("Failed to delete objects from S3: InternalError")
        if self.delete_errors:
            return {"deleted": [], "errors": self.delete_errors}
        for key in keys:
            self.buckets.get(bucket, {}).pop(key, None)
        return {"deleted": list(keys), "errors": []}

    def operations(self, name: str) -> list[tuple[str, str, Any]]:
        return [call for call in self.calls if call[0] == name]


def gzip_rows(rows: list[list[str]]) -> bytes:
    """Build a gzip-compressed CSV manifest part."""
    text = "".join(",".join(f'"{field}"' for field in row) + "\n" for row in rows)
    return gzip.compress(text.encode("utf-8"))


def inventory_row(key: str, bucket: str = "files") -> list[str]:
    """An inventory row with the object key in the third column."""
    return [bucket, "v1", key, "123"]


@pytest.fixture
def fake_s3() -> FakeS3Client:
    """Create an empty in-memory S3 fake."""
    return FakeS3Client()


@pytest.fixture
def make_config(tmp_path: Path):
    """Factory for archiver configurations rooted in a temporary directory."""

    def _make(
        patterns: Optional[list[str]] = None,
        dry_run: bool = False,
        **overrides: Any,
    ) -> ArchiverConfig:
        data: dict[str, Any] = {
            "s3": {"manifest_bucket": "manifests", "file_bucket": "files"},
            "manifest": {"name": "inventory/manifest.json"},
            "patterns": patterns or ["logs"],
            "dry_run": dry_run,
            "work_dir": str(tmp_path / "work"),
            "monitoring": {"metrics_enabled": False, "progress_update_interval": 0},
        }
        data.update(overrides)
        return ArchiverConfig.model_validate(data)

    return _make


@pytest.fixture
def publish_manifest(fake_s3: FakeS3Client):
    """Store a manifest index and its parts in the fake manifest bucket."""

    def _publish(
        parts: list[list[list[str]]],
        file_schema: Optional[str] = None,
        name: str = "inventory/manifest.json",
    ) -> None:
        files = []
        for position, rows in enumerate(parts):
            key = f"inventory/data/part-{position}.csv.gz"
            fake_s3.put("manifests", key, gzip_rows(rows))
            files.append({"key": key})
        document: dict[str, Any] = {"files": files}
        if file_schema is not None:
            document["fileSchema"] = file_schema
        fake_s3.put("manifests", name, json.dumps(document).encode("utf-8"))

    return _publish
