"""Manifest Archiver - Shared utilities."""

from collections.abc import Iterator, Sequence
from typing import TypeVar

T = TypeVar("T")


def key_basename(key: str) -> str:
    """Return the final path segment of an object key.

    Args:
        key: S3 object key (e.g. 'a/logs/1.txt')

    Returns:
        The segment after the last '/', or the key itself if it has none
    """
    return key.rsplit("/", 1)[-1]


def pattern_dirname(pattern: str) -> str:
    """Return the local directory name used for a pattern.

    Slashes are replaced with underscores so every pattern maps to a single
    directory level.
    """
    return pattern.replace("/", "_")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items.

    Raises:
        ValueError: If size is not positive
    """
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start : start + size]
