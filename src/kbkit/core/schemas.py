"""Pydantic schemas for operations, manifests and verification reports.

These schemas define the value objects exchanged with callers:
- FileOperation / OperationBatch: what a transaction should do
- ManifestEntry / Manifest: the JSON manifest describing a bundle
- ChecksumMismatch / VerificationReport: the outcome of verifying a bundle

All schemas use Pydantic v2 and are immutable.
"""

from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from kbkit.core.constants import DIGEST_ALGORITHMS, MANIFEST_FORMAT_VERSION
from kbkit.core.errors import ValidationError


class OperationKind(str, Enum):
    """Kind of mutation requested by a FileOperation.

    Attributes:
        WRITE: Create or replace ``target_path`` with ``content``
        MOVE: Relocate ``source_path`` to ``target_path``
        DELETE: Remove ``source_path``
    """

    WRITE = "write"
    MOVE = "move"
    DELETE = "delete"


class FileOperation(BaseModel):
    """One requested mutation.

    Paths are either absolute or relative to the engine's managed root.
    Missing fields for the given kind raise kbkit's ``ValidationError``
    at construction time.
    """

    kind: OperationKind
    source_path: Path | None = None
    target_path: Path | None = None
    content: bytes | None = None

    model_config = {"frozen": True}

    @field_validator("content", mode="before")
    @classmethod
    def encode_text(cls, v: object) -> object:
        """Accept ``str`` content and store it as UTF-8 bytes."""
        if isinstance(v, str):
            return v.encode("utf-8")
        return v

    @model_validator(mode="after")
    def validate_fields_for_kind(self) -> Self:
        if self.kind in (OperationKind.MOVE, OperationKind.DELETE) and self.source_path is None:
            raise ValidationError(f"{self.kind.value} operation requires source_path")
        if self.kind in (OperationKind.WRITE, OperationKind.MOVE) and self.target_path is None:
            raise ValidationError(f"{self.kind.value} operation requires target_path")
        if self.kind is OperationKind.DELETE and self.target_path is not None:
            raise ValidationError("delete operation does not take target_path")
        if self.kind is not OperationKind.WRITE and self.content is not None:
            raise ValidationError(f"{self.kind.value} operation does not take content")
        return self

    @field_serializer("source_path", "target_path")
    def serialize_paths(self, path: Path | None) -> str | None:
        """Serialize Path to string for JSON."""
        return None if path is None else str(path)

    @classmethod
    def write(cls, target: str | Path, content: bytes | str = b"") -> "FileOperation":
        return cls(kind=OperationKind.WRITE, target_path=Path(target), content=content)

    @classmethod
    def move(cls, source: str | Path, target: str | Path) -> "FileOperation":
        return cls(kind=OperationKind.MOVE, source_path=Path(source), target_path=Path(target))

    @classmethod
    def delete(cls, source: str | Path) -> "FileOperation":
        return cls(kind=OperationKind.DELETE, source_path=Path(source))

    def paths(self) -> list[Path]:
        """Paths this operation reads or mutates, source first."""
        return [p for p in (self.source_path, self.target_path) if p is not None]

    def describe(self) -> str:
        if self.kind is OperationKind.MOVE:
            return f"[MOVE] {self.source_path} -> {self.target_path}"
        if self.kind is OperationKind.DELETE:
            return f"[DELETE] {self.source_path}"
        return f"[WRITE] {self.target_path}"


class OperationBatch(BaseModel):
    """Ordered, immutable list of operations consumed by one transaction."""

    operations: tuple[FileOperation, ...] = ()

    model_config = {"frozen": True}

    @classmethod
    def of(cls, *operations: FileOperation) -> "OperationBatch":
        return cls(operations=operations)

    def __len__(self) -> int:
        return len(self.operations)

    def touched_paths(self) -> list[Path]:
        """Every path touched by the batch, in submission order, deduplicated."""
        seen: dict[Path, None] = {}
        for op in self.operations:
            for path in op.paths():
                seen.setdefault(path, None)
        return list(seen)


class ManifestEntry(BaseModel):
    """Digest record for one file of a bundle.

    Attributes:
        relative_path: Forward-slash path relative to the bundle root
        digest_algorithm: Digest algorithm name (fixed per format version)
        digest_hex: Lowercase hex digest of the raw file bytes
        size_bytes: File size in bytes
    """

    relative_path: str = Field(alias="path", min_length=1)
    digest_algorithm: str = Field(default="sha256", alias="algorithm")
    digest_hex: str = Field(alias="digest", pattern=r"^[0-9a-f]+$")
    size_bytes: int = Field(alias="size", ge=0)

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("relative_path")
    @classmethod
    def validate_relative_path(cls, v: str) -> str:
        """Reject absolute paths, backslashes and parent-directory segments."""
        if "\\" in v:
            raise ValueError("manifest paths must use forward slashes")
        if PurePosixPath(v).is_absolute() or any(s in ("", ".", "..") for s in v.split("/")):
            raise ValueError(f"manifest path must be a normalized relative path: {v}")
        return v


class Manifest(BaseModel):
    """Deterministic description of a distributable bundle.

    Entries are sorted by path and unique; ``total_files`` must match the
    number of entries.
    """

    format_version: int = Field(default=MANIFEST_FORMAT_VERSION, alias="formatVersion")
    total_files: int = Field(alias="totalFiles", ge=0)
    entries: tuple[ManifestEntry, ...] = ()

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @model_validator(mode="after")
    def validate_consistency(self) -> Self:
        algorithm = DIGEST_ALGORITHMS.get(self.format_version)
        if algorithm is None:
            raise ValueError(f"unsupported manifest format version: {self.format_version}")
        if self.total_files != len(self.entries):
            raise ValueError(
                f"totalFiles is {self.total_files} but manifest lists {len(self.entries)} entries"
            )
        paths = [entry.relative_path for entry in self.entries]
        if paths != sorted(paths):
            raise ValueError("manifest entries must be sorted by path")
        if len(set(paths)) != len(paths):
            raise ValueError("manifest entries must have unique paths")
        for entry in self.entries:
            if entry.digest_algorithm != algorithm:
                raise ValueError(
                    f"{entry.relative_path}: algorithm {entry.digest_algorithm!r} "
                    f"does not match format version {self.format_version} ({algorithm})"
                )
        return self

    def by_path(self) -> dict[str, ManifestEntry]:
        return {entry.relative_path: entry for entry in self.entries}


class ChecksumMismatch(BaseModel):
    """A file present on both sides whose digest differs.

    Only digests and sizes are reported, never file content.
    """

    path: str
    expected_digest: str
    actual_digest: str
    expected_size: int
    actual_size: int

    model_config = {"frozen": True}


class VerificationReport(BaseModel):
    """Outcome of comparing a directory tree against a manifest.

    Attributes:
        missing: Paths listed in the manifest but absent on disk
        unexpected: Paths on disk that the manifest does not list
        corrupted: Paths present on both sides with a digest mismatch
        manifest_errors: Problems reading a bundle or its manifest (bundles only)
    """

    missing: list[str] = Field(default_factory=list)
    unexpected: list[str] = Field(default_factory=list)
    corrupted: list[ChecksumMismatch] = Field(default_factory=list)
    manifest_errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when the bundle is intact."""
        return not (self.missing or self.unexpected or self.corrupted or self.manifest_errors)
