"""Value types shared by the pipeline stages."""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from manifest_archiver.exceptions import ManifestSchemaError
from utils import key_basename


@dataclass(frozen=True)
class Pattern:
    """A configured key pattern.

    ``raw`` is the operator-supplied text; it names the archive and the local
    directory. Matching is unanchored, like ``re.search``.
    """

    raw: str
    matcher: re.Pattern[str]

    @classmethod
    def compile(cls, raw: str) -> "Pattern":
        return cls(raw=raw, matcher=re.compile(raw))

    def matches(self, key: str) -> bool:
        return self.matcher.search(key) is not None


@dataclass(frozen=True)
class ManifestPartRef:
    """A compressed CSV part listed in the manifest index."""

    remote_key: str

    @property
    def local_name(self) -> str:
        """File name of the decompressed part on disk."""
        name = key_basename(self.remote_key)
        if name.endswith(".gz"):
            name = name[: -len(".gz")]
        return name

    def local_path(self, work_dir: Path) -> Path:
        return work_dir / self.local_name


@dataclass(frozen=True)
class ManifestIndex:
    """Ordered list of manifest parts plus the optional published column layout."""

    parts: tuple[ManifestPartRef, ...]
    file_schema: Optional[tuple[str, ...]] = None

    def __len__(self) -> int:
        return len(self.parts)


@dataclass(frozen=True)
class RowSchema:
    """Named accessor for the object key column of manifest rows.

    Rows are plain lists of strings. When the manifest publishes a
    ``fileSchema`` every row must carry exactly that many fields; otherwise a
    row only needs to reach the key column.
    """

    key_index: int = 2
    columns: Optional[tuple[str, ...]] = field(default=None)

    @classmethod
    def resolve(
        cls,
        file_schema: Optional[tuple[str, ...]],
        key_index: int = 2,
        key_name: Optional[str] = None,
    ) -> "RowSchema":
        """Build the schema for a manifest.

        Args:
            file_schema: Column names published by the manifest, if any
            key_index: Position of the key column when no name is given
            key_name: Column name of the key, looked up in file_schema

        Raises:
            ManifestSchemaError: If the key column cannot be located
        """
        if key_name is not None:
            if not file_schema:
                raise ManifestSchemaError(
                    f"Key column {key_name!r} requested but the manifest has no fileSchema"
                )
            normalized = [c.strip().lower() for c in file_schema]
            try:
                key_index = normalized.index(key_name.strip().lower())
            except ValueError:
                raise ManifestSchemaError(
                    f"Key column {key_name!r} not found in manifest fileSchema",
                    context={"file_schema": list(file_schema)},
                ) from None
        elif file_schema and key_index >= len(file_schema):
            raise ManifestSchemaError(
                f"Key column index {key_index} is outside the manifest fileSchema",
                context={"file_schema": list(file_schema)},
            )
        return cls(key_index=key_index, columns=file_schema)

    def key_of(self, row: list[str], source: str = "", line: int = 0) -> str:
        """Return the object key held by ``row``.

        Raises:
            ManifestSchemaError: If the row does not fit the schema
        """
        if self.columns is not None and len(row) != len(self.columns):
            raise ManifestSchemaError(
                f"Row has {len(row)} fields, manifest schema declares {len(self.columns)}",
                context={"part": source, "line": line},
            )
        if len(row) <= self.key_index:
            raise ManifestSchemaError(
                f"Row has {len(row)} fields, key column is at index {self.key_index}",
                context={"part": source, "line": line},
            )
        return row[self.key_index]
