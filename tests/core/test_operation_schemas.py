"""Tests for operation, manifest and report schemas."""

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from kbkit.core.errors import ValidationError
from kbkit.core.schemas import (
    FileOperation,
    Manifest,
    ManifestEntry,
    OperationBatch,
    OperationKind,
    VerificationReport,
)

DIGEST = "ab" * 32


class TestFileOperation:
    """Test FileOperation construction and validation."""

    def test_constructors(self) -> None:
        """Test the write, move and delete helpers."""
        write = FileOperation.write("a.md", "text")
        move = FileOperation.move("a.md", "b.md")
        delete = FileOperation.delete("b.md")

        assert write.kind is OperationKind.WRITE
        assert write.content == b"text"
        assert move.paths() == [Path("a.md"), Path("b.md")]
        assert delete.describe() == "[DELETE] b.md"

    def test_write_defaults_to_empty_content(self) -> None:
        """Test that a write without content creates an empty file."""
        assert FileOperation.write("a.md").content == b""

    @pytest.mark.parametrize(
        ("fields", "message"),
        [
            ({"kind": "move", "target_path": "b.md"}, "requires source_path"),
            ({"kind": "move", "source_path": "a.md"}, "requires target_path"),
            ({"kind": "delete"}, "requires source_path"),
            ({"kind": "write"}, "requires target_path"),
            ({"kind": "delete", "source_path": "a", "target_path": "b"}, "does not take"),
            ({"kind": "move", "source_path": "a", "target_path": "b", "content": "x"}, "content"),
        ],
    )
    def test_missing_or_extra_fields(self, fields: dict[str, str], message: str) -> None:
        """Test that field presence is validated per kind."""
        with pytest.raises(ValidationError, match=message):
            FileOperation(**fields)

    def test_frozen(self) -> None:
        """Test that operations are immutable."""
        op = FileOperation.write("a.md")

        with pytest.raises(PydanticValidationError):
            op.target_path = Path("b.md")  # type: ignore[misc]

    def test_serializes_paths(self) -> None:
        """Test JSON output of paths."""
        data = FileOperation.move("a.md", "sub/b.md").model_dump(mode="json")

        assert data["source_path"] == "a.md"
        assert data["target_path"] == "sub/b.md"


class TestOperationBatch:
    """Test OperationBatch."""

    def test_touched_paths_deduplicated_in_order(self) -> None:
        """Test that touched paths keep submission order."""
        batch = OperationBatch.of(
            FileOperation.move("a.md", "b.md"),
            FileOperation.write("b.md", "x"),
            FileOperation.delete("c.md"),
        )

        assert len(batch) == 3
        assert batch.touched_paths() == [Path("a.md"), Path("b.md"), Path("c.md")]


class TestManifestSchemas:
    """Test manifest invariants."""

    def test_accepts_aliases_and_names(self) -> None:
        """Test population by JSON alias or field name."""
        by_alias = ManifestEntry.model_validate(
            {"path": "a.md", "algorithm": "sha256", "digest": DIGEST, "size": 3}
        )
        by_name = ManifestEntry(relative_path="a.md", digest_hex=DIGEST, size_bytes=3)

        assert by_alias == by_name

    @pytest.mark.parametrize("path", ["/abs.md", "../up.md", "a//b.md", "a\\b.md", "./a.md"])
    def test_rejects_unsafe_paths(self, path: str) -> None:
        """Test that entry paths must be normalized relative paths."""
        with pytest.raises(PydanticValidationError):
            ManifestEntry(relative_path=path, digest_hex=DIGEST, size_bytes=1)

    def test_rejects_uppercase_digest(self) -> None:
        """Test that digests are lowercase hex."""
        with pytest.raises(PydanticValidationError):
            ManifestEntry(relative_path="a.md", digest_hex=DIGEST.upper(), size_bytes=1)

    def test_manifest_requires_sorted_unique_entries(self) -> None:
        """Test ordering and uniqueness of entries."""
        a = ManifestEntry(relative_path="a.md", digest_hex=DIGEST, size_bytes=1)
        b = ManifestEntry(relative_path="b.md", digest_hex=DIGEST, size_bytes=1)

        assert Manifest(total_files=2, entries=(a, b)).by_path()["b.md"] == b
        with pytest.raises(PydanticValidationError, match="sorted"):
            Manifest(total_files=2, entries=(b, a))
        with pytest.raises(PydanticValidationError, match="unique"):
            Manifest(total_files=2, entries=(a, a))
        with pytest.raises(PydanticValidationError, match="totalFiles"):
            Manifest(total_files=3, entries=(a, b))

    def test_report_ok(self) -> None:
        """Test the ok property of VerificationReport."""
        assert VerificationReport().ok
        assert not VerificationReport(missing=["a.md"]).ok
        assert not VerificationReport(manifest_errors=["no manifest"]).ok
