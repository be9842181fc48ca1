"""Exception hierarchy for the manifest archiver."""

from typing import Any, Optional


class ArchiverError(Exception):
    """Base exception for all archiver errors."""

    def __init__(
        self,
        message: str,
        *,
        pattern: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize archiver error.

        Args:
            message: Error message
            pattern: Raw text of the pattern whose job raised the error, if any
            context: Optional context dictionary with additional details
        """
        super().__init__(message)
        self.message = message
        self.pattern = pattern
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [self.message]
        if self.pattern is not None:
            parts.append(f"[pattern={self.pattern}]")
        if self.context:
            parts.append(f"[context={self.context}]")
        return " ".join(parts)


class ConfigurationError(ArchiverError):
    """Configuration-related errors."""

    pass


class S3Error(ArchiverError):
    """Errors raised by the storage client."""

    pass


class ManifestFetchError(ArchiverError):
    """Manifest index or part could not be fetched."""

    pass


class ManifestParseError(ArchiverError):
    """Manifest index is not the expected JSON shape."""

    pass


class ManifestSchemaError(ManifestParseError):
    """A manifest row does not match the expected column layout."""

    pass


class DecompressionError(ArchiverError):
    """A manifest part could not be decompressed."""

    pass


class ObjectFetchError(ArchiverError):
    """An object could not be fetched after all attempts."""

    pass


class ArchiveMismatchError(ArchiverError):
    """Processed entry count diverged from the planned count at finalize."""

    pass


class UploadError(ArchiverError):
    """Archive upload to cold storage failed."""

    pass


class DeleteError(ArchiverError):
    """Batch delete of archived objects failed."""

    pass
