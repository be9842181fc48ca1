"""Inventory manifest loading and part materialization."""

import asyncio
import gzip
import json
import shutil
import zlib
from pathlib import Path
from typing import Optional, Union

import structlog

from manifest_archiver.config import ArchiverConfig
from manifest_archiver.exceptions import (
    DecompressionError,
    ManifestFetchError,
    ManifestParseError,
    S3Error,
)
from manifest_archiver.models import ManifestIndex, ManifestPartRef
from manifest_archiver.s3_client import S3Client
from utils.logging import get_logger

_COPY_BUFFER_SIZE = 1024 * 1024


def parse_manifest_index(raw: Union[bytes, str], source: str) -> ManifestIndex:
    """Parse the JSON body of an inventory manifest.

    Args:
        raw: JSON document with a ``files`` array of ``{"key": ...}`` entries
        source: Where the document came from, for error context

    Returns:
        Parsed manifest index

    Raises:
        ManifestParseError: If the document does not have the expected shape
    """
    try:
        document = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestParseError(
            f"Manifest is not valid JSON: {e}", context={"source": source}
        ) from e

    if not isinstance(document, dict) or not isinstance(document.get("files"), list):
        raise ManifestParseError(
            "Manifest has no 'files' array", context={"source": source}
        )

    parts = []
    for position, entry in enumerate(document["files"]):
        if not isinstance(entry, dict) or not isinstance(entry.get("key"), str) or not entry["key"]:
            raise ManifestParseError(
                "Manifest entry has no 'key'",
                context={"source": source, "position": position},
            )
        parts.append(ManifestPartRef(remote_key=entry["key"]))

    file_schema = None
    raw_schema = document.get("fileSchema")
    if isinstance(raw_schema, str) and raw_schema.strip():
        file_schema = tuple(column.strip() for column in raw_schema.split(","))

    return ManifestIndex(parts=tuple(parts), file_schema=file_schema)


class ManifestLoader:
    """Loads the manifest index and materializes its parts on local disk."""

    def __init__(
        self,
        config: ArchiverConfig,
        s3_client: S3Client,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize manifest loader.

        Args:
            config: Archiver configuration
            s3_client: Storage client used for remote manifests
            logger: Optional logger instance
        """
        self.config = config
        self.s3_client = s3_client
        self.work_dir = Path(config.work_dir)
        self.logger = logger or get_logger("manifest")

    async def load(self) -> ManifestIndex:
        """Read the manifest index from disk or from the manifest bucket.

        Raises:
            ManifestFetchError: If the manifest cannot be read
            ManifestParseError: If the manifest is malformed
        """
        name = self.config.manifest.name
        if self.config.manifest.use_local:
            self.logger.info("Using local manifest", manifest=name)
            try:
                raw: bytes = await asyncio.to_thread(Path(name).read_bytes)
            except OSError as e:
                raise ManifestFetchError(
                    f"Failed to read local manifest: {e}", context={"path": name}
                ) from e
            index = parse_manifest_index(raw, source=name)
        else:
            bucket = self.config.s3.manifest_bucket
            self.logger.info("Downloading manifest", bucket=bucket, manifest=name)
            try:
                raw = await asyncio.to_thread(self.s3_client.get_object_bytes, bucket, name)
            except S3Error as e:
                raise ManifestFetchError(
                    f"Failed to fetch manifest: {e.message}",
                    context={"bucket": bucket, "key": name},
                ) from e
            index = parse_manifest_index(raw, source=f"s3://{bucket}/{name}")

        self.logger.info(
            "Manifest loaded",
            parts=len(index),
            file_schema=list(index.file_schema) if index.file_schema else None,
        )
        return index

    async def materialize_parts(self, index: ManifestIndex) -> list[Path]:
        """Make sure every part exists decompressed under the working directory.

        Parts already on disk are reused.

        Returns:
            Local paths of all parts, in manifest order

        Raises:
            ManifestFetchError: If a part cannot be fetched
            DecompressionError: If a part is not valid gzip
        """
        self.work_dir.mkdir(parents=True, exist_ok=True)
        semaphore = asyncio.Semaphore(self.config.concurrency.manifest_parts)

        async def materialize_with_semaphore(part: ManifestPartRef) -> Path:
            async with semaphore:
                return await self._materialize(part)

        results = await asyncio.gather(
            *(materialize_with_semaphore(part) for part in index.parts),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def _materialize(self, part: ManifestPartRef) -> Path:
        local_path = part.local_path(self.work_dir)
        if local_path.exists():
            self.logger.debug("Manifest part already present", part=part.remote_key, path=str(local_path))
            return local_path

        self.logger.info(
            "Local manifest file not found, downloading",
            part=part.remote_key,
            path=str(local_path),
        )
        await asyncio.to_thread(self._download_and_decompress, part, local_path)
        return local_path

    def _download_and_decompress(self, part: ManifestPartRef, local_path: Path) -> None:
        bucket = self.config.s3.manifest_bucket
        try:
            body = self.s3_client.open_object(bucket, part.remote_key)
        except S3Error as e:
            raise ManifestFetchError(
                f"Failed to fetch manifest part: {e.message}",
                context={"bucket": bucket, "key": part.remote_key},
            ) from e

        tmp_path = local_path.with_name(local_path.name + ".part")
        try:
            with gzip.GzipFile(fileobj=body, mode="rb") as source, open(tmp_path, "wb") as target:
                shutil.copyfileobj(source, target, _COPY_BUFFER_SIZE)
        except (gzip.BadGzipFile, EOFError, zlib.error) as e:
            tmp_path.unlink(missing_ok=True)
            raise DecompressionError(
                f"Failed to decompress manifest part: {e}",
                context={"key": part.remote_key},
            ) from e
        except Exception as e:
            tmp_path.unlink(missing_ok=True)
            raise ManifestFetchError(
                f"Failed to stream manifest part: {e}",
                context={"bucket": bucket, "key": part.remote_key},
            ) from e
        finally:
            close = getattr(body, "close", None)
            if close is not None:
                close()

        tmp_path.replace(local_path)
        self.logger.debug("Manifest part materialized", part=part.remote_key, path=str(local_path))
