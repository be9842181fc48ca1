"""Unit tests for exception classes."""

from manifest_archiver.exceptions import (
    ArchiveMismatchError,
    ArchiverError,
    ConfigurationError,
    DecompressionError,
    DeleteError,
    ManifestFetchError,
    ManifestParseError,
    ManifestSchemaError,
    ObjectFetchError,
    S3Error,
    UploadError,
)


def test_archiver_error_basic() -> None:
    """Test basic ArchiverError."""
    error = ArchiverError("Test error")
    assert str(error) == "Test error"
    assert error.message == "Test error"
    assert error.pattern is None
    assert error.context == {}


def test_archiver_error_with_pattern_and_context() -> None:
    """Test ArchiverError formatting with pattern and context."""
    error = ArchiverError("Upload failed", pattern="logs/", context={"key": "logs/.zip"})
    assert "[pattern=logs/]" in str(error)
    assert "logs/.zip" in str(error)


def test_error_hierarchy() -> None:
    """Test exception hierarchy."""
    for error_type in (
        ConfigurationError,
        S3Error,
        ManifestFetchError,
        ManifestParseError,
        DecompressionError,
        ObjectFetchError,
        ArchiveMismatchError,
        UploadError,
        DeleteError,
    ):
        assert issubclass(error_type, ArchiverError)
    assert issubclass(ManifestSchemaError, ManifestParseError)
