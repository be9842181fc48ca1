"""S3 client for the manifest, object and archive buckets."""

from collections.abc import Sequence
from pathlib import Path
from typing import Any, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError
from structlog import BoundLogger

from manifest_archiver.config import S3Config
from manifest_archiver.exceptions import S3Error
from utils.logging import get_logger


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code", "Unknown")
    return type(error).__name__


class S3Client:
    """Thin boto3 wrapper raising S3Error for every storage failure.

    All methods are blocking; the pipeline runs them in worker threads.
    """

    def __init__(
        self,
        config: S3Config,
        logger: Optional[BoundLogger] = None,
    ) -> None:
        """Initialize S3 client.

        Args:
            config: S3 configuration
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or get_logger("s3")
        self._client: Optional[Any] = None

    @property
    def client(self) -> Any:
        """Get or create the boto3 S3 client."""
        if self._client is None:
            try:
                credentials = self.config.get_credentials()
                if credentials:
                    session = boto3.Session(
                        aws_access_key_id=credentials["aws_access_key_id"],
                        aws_secret_access_key=credentials["aws_secret_access_key"],
                    )
                else:
                    session = boto3.Session()

                s3_kwargs: dict[str, Any] = {
                    "service_name": "s3",
                    "region_name": self.config.region,
                }
                if self.config.endpoint:
                    s3_kwargs["endpoint_url"] = self.config.endpoint

                self._client = session.client(**s3_kwargs)
                self.logger.debug(
                    "S3 client initialized",
                    endpoint=self.config.endpoint or "AWS S3",
                    region=self.config.region,
                )
            except (BotoCoreError, ValueError) as e:
                raise S3Error(f"Failed to create S3 client: {e}") from e

        return self._client

    def get_object_bytes(self, bucket: str, key: str) -> bytes:
        """Read a whole object into memory.

        Raises:
            S3Error: If the object cannot be read
        """
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise S3Error(
                f"Failed to get object from S3: {_error_code(e)}",
                context={"bucket": bucket, "key": key},
            ) from e

    def open_object(self, bucket: str, key: str) -> Any:
        """Return the streaming body of an object.

        Raises:
            S3Error: If the request fails
        """
        try:
            return self.client.get_object(Bucket=bucket, Key=key)["Body"]
        except (ClientError, BotoCoreError) as e:
            raise S3Error(
                f"Failed to open object in S3: {_error_code(e)}",
                context={"bucket": bucket, "key": key},
            ) from e

    def download_file(self, bucket: str, key: str, local_path: Path) -> None:
        """Download an object to a local file.

        Raises:
            S3Error: If download fails
        """
        try:
            self.client.download_file(Bucket=bucket, Key=key, Filename=str(local_path))
        except (ClientError, BotoCoreError) as e:
            raise S3Error(
                f"Failed to download file from S3: {_error_code(e)}",
                context={"bucket": bucket, "key": key, "local_path": str(local_path)},
            ) from e

    def upload_file(
        self,
        bucket: str,
        key: str,
        file_path: Path,
        storage_class: str,
    ) -> dict[str, Any]:
        """Upload a local file through the managed transfer.

        Files above ``multipart_threshold_mb`` are sent as multipart uploads,
        so archives are not bound by the single PUT size limit.

        Returns:
            Dictionary with bucket, key, size and etag

        Raises:
            S3Error: If upload fails
        """
        size = file_path.stat().st_size
        threshold = self.config.multipart_threshold_mb * 1024 * 1024
        transfer_config = TransferConfig(multipart_threshold=threshold, multipart_chunksize=threshold)
        try:
            self.client.upload_file(
                Filename=str(file_path),
                Bucket=bucket,
                Key=key,
                ExtraArgs={"StorageClass": storage_class},
                Config=transfer_config,
            )
            head = self.client.head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise S3Error(
                f"Failed to upload file to S3: {_error_code(e)}",
                context={"bucket": bucket, "key": key, "size": size},
            ) from e

        self.logger.debug(
            "File upload successful",
            bucket=bucket,
            key=key,
            size=size,
            multipart=size > threshold,
        )
        return {
            "bucket": bucket,
            "key": key,
            "size": size,
            "etag": head.get("ETag", ""),
        }

    def delete_objects(self, bucket: str, keys: Sequence[str]) -> dict[str, Any]:
        """Delete up to 1000 keys in one request.

        Returns:
            Dictionary with 'deleted' and 'errors' lists from the response

        Raises:
            S3Error: If the request itself fails
        """
        if len(keys) > 1000:
            raise ValueError(f"DeleteObjects accepts at most 1000 keys, got {len(keys)}")
        try:
            response = self.client.delete_objects(
                Bucket=bucket,
                Delete={"Objects": [{"Key": key} for key in keys]},
            )
        except (ClientError, BotoCoreError) as e:
            raise S3Error(
                f"Failed to delete objects from S3: {_error_code(e)}",
                context={"bucket": bucket, "count": len(keys)},
            ) from e

        return {
            "deleted": [d.get("Key") for d in response.get("Deleted", [])],
            "errors": response.get("Errors", []),
        }
