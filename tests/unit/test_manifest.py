"""Unit tests for manifest loading and part materialization."""

import gzip
import json
from pathlib import Path

import pytest

from conftest import FakeS3Client, gzip_rows, inventory_row
from manifest_archiver.exceptions import (
    DecompressionError,
    ManifestFetchError,
    ManifestParseError,
)
from manifest_archiver.manifest import ManifestLoader, parse_manifest_index
from manifest_archiver.models import ManifestIndex, ManifestPartRef


def test_parse_manifest_index() -> None:
    """Test parsing a manifest with a fileSchema."""
    index = parse_manifest_index(
        json.dumps(
            {
                "files": [{"key": "data/a.csv.gz"}, {"key": "data/b.csv.gz", "size": 10}],
                "fileSchema": "Bucket, VersionId, Key, Size",
            }
        ),
        source="test",
    )
    assert [part.remote_key for part in index.parts] == ["data/a.csv.gz", "data/b.csv.gz"]
    assert index.file_schema == ("Bucket", "VersionId", "Key", "Size")
    assert len(index) == 2


@pytest.mark.parametrize(
    "body, message",
    [
        ("not json", "not valid JSON"),
        ("[]", "no 'files'"),
        ('{"files": {}}', "no 'files'"),
        ('{"files": [{"name": "x"}]}', "no 'key'"),
        ('{"files": [{"key": ""}]}', "no 'key'"),
    ],
)
def test_parse_manifest_index_malformed(body: str, message: str) -> None:
    """Test malformed manifests."""
    with pytest.raises(ManifestParseError, match=message):
        parse_manifest_index(body, source="test")


@pytest.mark.asyncio
async def test_load_remote_manifest(fake_s3: FakeS3Client, make_config, publish_manifest) -> None:
    """Test fetching the manifest index from the manifest bucket."""
    publish_manifest([[inventory_row("a/logs/1.txt")], [inventory_row("b/logs/2.txt")]])
    loader = ManifestLoader(make_config(), fake_s3)

    index = await loader.load()

    assert len(index) == 2
    assert fake_s3.calls[0] == ("get_object", "manifests", "inventory/manifest.json")


@pytest.mark.asyncio
async def test_load_remote_manifest_missing(fake_s3: FakeS3Client, make_config) -> None:
    """Test that a missing manifest object is a fetch error."""
    loader = ManifestLoader(make_config(), fake_s3)
    with pytest.raises(ManifestFetchError, match="NoSuchKey"):
        await loader.load()


@pytest.mark.asyncio
async def test_load_local_manifest(fake_s3: FakeS3Client, make_config, tmp_path: Path) -> None:
    """Test reading the manifest index from disk."""
    manifest_file = tmp_path / "manifest.json"
    manifest_file.write_text(json.dumps({"files": [{"key": "data/a.csv.gz"}]}))
    config = make_config(manifest={"name": str(manifest_file), "use_local": True})

    index = await ManifestLoader(config, fake_s3).load()

    assert index.parts == (ManifestPartRef("data/a.csv.gz"),)
    assert fake_s3.calls == []


@pytest.mark.asyncio
async def test_load_local_manifest_missing(fake_s3: FakeS3Client, make_config, tmp_path: Path) -> None:
    """Test a local manifest path that does not exist."""
    config = make_config(manifest={"name": str(tmp_path / "nope.json"), "use_local": True})
    with pytest.raises(ManifestFetchError):
        await ManifestLoader(config, fake_s3).load()


@pytest.mark.asyncio
async def test_materialize_parts_decompresses(fake_s3: FakeS3Client, make_config) -> None:
    """Test that parts are downloaded and gunzipped into the working directory."""
    config = make_config()
    fake_s3.put("manifests", "inventory/data/p1.csv.gz", gzip_rows([inventory_row("a/logs/1.txt")]))
    index = ManifestIndex(parts=(ManifestPartRef("inventory/data/p1.csv.gz"),))

    paths = await ManifestLoader(config, fake_s3).materialize_parts(index)

    assert paths == [Path(config.work_dir) / "p1.csv"]
    assert paths[0].read_text() == '"files","v1","a/logs/1.txt","123"\n'
    assert not (Path(config.work_dir) / "p1.csv.part").exists()


@pytest.mark.asyncio
async def test_materialize_parts_skips_existing(fake_s3: FakeS3Client, make_config) -> None:
    """Test that an already materialized part is not fetched again."""
    config = make_config()
    work_dir = Path(config.work_dir)
    work_dir.mkdir(parents=True)
    (work_dir / "p1.csv").write_text("cached\n")
    index = ManifestIndex(parts=(ManifestPartRef("inventory/data/p1.csv.gz"),))

    paths = await ManifestLoader(config, fake_s3).materialize_parts(index)

    assert paths[0].read_text() == "cached\n"
    assert fake_s3.calls == []


@pytest.mark.asyncio
async def test_materialize_parts_bad_gzip(fake_s3: FakeS3Client, make_config) -> None:
    """Test that a corrupt part raises DecompressionError and leaves nothing behind."""
    config = make_config()
    fake_s3.put("manifests", "inventory/data/p1.csv.gz", b"definitely not gzip")
    index = ManifestIndex(parts=(ManifestPartRef("inventory/data/p1.csv.gz"),))

    with pytest.raises(DecompressionError):
        await ManifestLoader(config, fake_s3).materialize_parts(index)

    assert list(Path(config.work_dir).iterdir()) == []


@pytest.mark.asyncio
async def test_materialize_parts_truncated_gzip(fake_s3: FakeS3Client, make_config) -> None:
    """Test that a truncated gzip stream is a decompression error."""
    config = make_config()
    fake_s3.put("manifests", "inventory/data/p1.csv.gz", gzip.compress(b"a,b,c\n" * 100)[:-12])
    index = ManifestIndex(parts=(ManifestPartRef("inventory/data/p1.csv.gz"),))

    with pytest.raises(DecompressionError):
        await ManifestLoader(config, fake_s3).materialize_parts(index)


@pytest.mark.asyncio
async def test_materialize_parts_missing_object(fake_s3: FakeS3Client, make_config) -> None:
    """Test that a missing part is a fetch error."""
    index = ManifestIndex(parts=(ManifestPartRef("inventory/data/missing.csv.gz"),))
    with pytest.raises(ManifestFetchError):
        await ManifestLoader(make_config(), fake_s3).materialize_parts(index)
