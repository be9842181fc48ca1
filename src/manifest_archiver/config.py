"""Configuration management using YAML, environment variables and Pydantic."""

import json
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from manifest_archiver.exceptions import ConfigurationError


def _substitute_env_vars(value: str) -> str:
    """Substitute environment variables in string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with environment variables substituted
    """
    pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_value = os.getenv(var_name)
        if env_value is not None:
            return env_value
        if default is not None:
            return default
        raise ValueError(f"Environment variable {var_name} not set and no default provided")

    return re.sub(pattern, replacer, value)


def _substitute_env_in_dict(data: Any) -> Any:
    """Recursively substitute environment variables in a loaded YAML document."""
    if isinstance(data, dict):
        return {key: _substitute_env_in_dict(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_in_dict(item) for item in data]
    elif isinstance(data, str):
        return _substitute_env_vars(data)
    return data


class S3Config(BaseModel):
    """S3 configuration."""

    endpoint: Optional[str] = Field(
        default=None,
        description="S3 endpoint URL (null for AWS S3, or custom endpoint for S3-compatible)",
    )
    region: str = Field(default="us-east-1", description="AWS region")
    manifest_bucket: str = Field(description="Bucket holding the inventory manifest")
    file_bucket: str = Field(description="Bucket holding the objects to archive")
    archive_bucket: Optional[str] = Field(
        default=None,
        description="Destination bucket for archives (defaults to manifest_bucket)",
    )
    storage_class: str = Field(
        default="GLACIER",
        description="Storage class for uploaded archives (GLACIER, DEEP_ARCHIVE, GLACIER_IR, ...)",
    )
    multipart_threshold_mb: int = Field(
        default=10,
        description="File size threshold (MB) for multipart upload, also used as the part size",
        ge=5,
    )
    aws_access_key_id: Optional[str] = Field(default=None, alias="access_key_id")
    aws_secret_access_key: Optional[str] = Field(default=None, alias="secret_access_key")

    model_config = {"populate_by_name": True}

    @property
    def destination_bucket(self) -> str:
        """Bucket the archives are uploaded to."""
        return self.archive_bucket or self.manifest_bucket

    def get_credentials(self) -> Optional[dict[str, str]]:
        """Get explicit AWS credentials.

        Returns:
            Dictionary with 'aws_access_key_id' and 'aws_secret_access_key', or None
            if boto3 should use its default credential chain

        Raises:
            ValueError: If only one half of the key pair is set
        """
        has_key = bool(self.aws_access_key_id)
        has_secret = bool(self.aws_secret_access_key)
        if has_key and has_secret:
            return {
                "aws_access_key_id": self.aws_access_key_id,
                "aws_secret_access_key": self.aws_secret_access_key,
            }
        if has_key or has_secret:
            raise ValueError(
                "Both access_key_id and secret_access_key must be provided together"
            )
        return None


class ManifestConfig(BaseModel):
    """Inventory manifest location and row layout."""

    name: str = Field(description="Manifest key in the manifest bucket, or local path")
    use_local: bool = Field(
        default=False,
        description="Read the manifest index from a local file instead of the manifest bucket",
    )
    has_header: bool = Field(
        default=False,
        description="Skip the first row of every manifest part",
    )
    key_column_index: int = Field(
        default=2,
        description="Position of the object key in each CSV row",
        ge=0,
    )
    key_column_name: Optional[str] = Field(
        default=None,
        description="Column name of the object key, resolved against the manifest fileSchema",
    )

    @field_validator("key_column_name")
    @classmethod
    def validate_key_column_name(cls, v: Optional[str]) -> Optional[str]:
        """Reject blank column names."""
        if v is not None and not v.strip():
            raise ValueError("key_column_name must not be blank")
        return v


class ArchiveConfig(BaseModel):
    """Archive construction and cleanup settings."""

    compression_level: int = Field(
        default=9,
        description="Deflate level for archive entries (1=fastest, 9=best compression)",
        ge=1,
        le=9,
    )
    extension: str = Field(default="zip", description="Extension of the uploaded archive key")
    max_fetch_attempts: int = Field(
        default=5,
        description="Attempts per object download before the job fails",
        ge=1,
    )
    delete_chunk_size: int = Field(
        default=1000,
        description="Keys per DeleteObjects request (S3 accepts at most 1000)",
        ge=1,
        le=1000,
    )


class ConcurrencyConfig(BaseModel):
    """Per-stage concurrency limits."""

    manifest_parts: int = Field(
        default=1,
        description="Manifest parts downloaded at the same time",
        ge=1,
    )
    classification: int = Field(
        default=4,
        description="Manifest parts classified at the same time",
        ge=1,
    )
    archive_jobs: Optional[int] = Field(
        default=None,
        description="Archive jobs running at the same time (defaults to one per pattern)",
        ge=1,
    )


class MonitoringConfig(BaseModel):
    """Monitoring, metrics and progress configuration."""

    metrics_enabled: bool = Field(default=False, description="Expose Prometheus metrics")
    metrics_port: int = Field(
        default=8000,
        description="Port for Prometheus metrics endpoint",
        gt=0,
        lt=65536,
    )
    progress_enabled: bool = Field(default=True, description="Log per-pattern progress")
    progress_update_interval: float = Field(
        default=5.0,
        description="Progress update interval in seconds",
        ge=0,
    )
    quiet_mode: bool = Field(
        default=False,
        description="Quiet mode (suppress progress output for cron)",
    )


class ArchiverConfig(BaseModel):
    """Root configuration model."""

    version: str = Field(default="1.0", description="Configuration version")
    s3: S3Config = Field(description="S3 configuration")
    manifest: ManifestConfig = Field(description="Manifest configuration")
    patterns: list[str] = Field(
        description="Regular expressions selecting object keys, one archive each",
        min_length=1,
    )
    dry_run: bool = Field(
        default=True,
        description="Classify and log only; never upload or delete",
    )
    work_dir: Path = Field(
        default=Path("."),
        description="Directory for manifest parts, cache files and archives",
    )
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate configuration version."""
        if v != "1.0":
            raise ValueError(f"Unsupported configuration version: {v}")
        return v

    @field_validator("patterns")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        """Reject empty, duplicate or uncompilable patterns."""
        seen: set[str] = set()
        for raw in v:
            if not raw:
                raise ValueError("Patterns must not be empty strings")
            if raw in seen:
                raise ValueError(f"Duplicate pattern: {raw!r}")
            seen.add(raw)
            try:
                re.compile(raw)
            except re.error as e:
                raise ValueError(f"Invalid pattern {raw!r}: {e}") from e
        return v


def load_config(config_path: Path) -> ArchiverConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated configuration object

    Raises:
        ConfigurationError: If configuration is invalid
    """
    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from None
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

    if not raw_config:
        raise ConfigurationError("Configuration file is empty", context={"path": str(config_path)})

    try:
        config_data = _substitute_env_in_dict(raw_config)
        return ArchiverConfig.model_validate(config_data)
    except (ValidationError, ValueError) as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> ArchiverConfig:
    """Build configuration from the process environment.

    Recognizes REGION, ACCESS_KEY, SECRET_KEY, ENDPOINT, MANIFEST_BUCKET,
    FILE_BUCKET, MANIFEST, USE_LOCAL_MANIFEST, PATTERNS (JSON array), DRY_RUN
    and WORK_DIR. Dry-run stays on unless DRY_RUN is exactly "false".

    Args:
        environ: Mapping to read instead of os.environ

    Returns:
        Validated configuration object

    Raises:
        ConfigurationError: If a required variable is missing or invalid
    """
    env = os.environ if environ is None else environ

    missing = [name for name in ("MANIFEST_BUCKET", "FILE_BUCKET", "MANIFEST", "PATTERNS") if not env.get(name)]
    if missing:
        raise ConfigurationError(
            "Missing required environment variables",
            context={"missing": missing},
        )

    try:
        patterns = json.loads(env["PATTERNS"])
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"PATTERNS is not valid JSON: {e}") from e
    if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
        raise ConfigurationError("PATTERNS must be a JSON array of strings")

    data: dict[str, Any] = {
        "s3": {
            "region": env.get("REGION") or "us-east-1",
            "endpoint": env.get("ENDPOINT") or None,
            "manifest_bucket": env["MANIFEST_BUCKET"],
            "file_bucket": env["FILE_BUCKET"],
            "access_key_id": env.get("ACCESS_KEY") or None,
            "secret_access_key": env.get("SECRET_KEY") or None,
        },
        "manifest": {
            "name": env["MANIFEST"],
            "use_local": env.get("USE_LOCAL_MANIFEST") == "true",
        },
        "patterns": patterns,
        "dry_run": env.get("DRY_RUN") != "false",
    }
    if env.get("WORK_DIR"):
        data["work_dir"] = env["WORK_DIR"]

    try:
        return ArchiverConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e
