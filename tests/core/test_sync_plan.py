"""Tests for install/update planning."""

from pathlib import Path

import pytest

from kbkit.chains.migration_chain import TransactionalMigrationEngine
from kbkit.core.errors import ValidationError
from kbkit.core.options import EngineOptions
from kbkit.core.schemas import OperationKind
from kbkit.core.sync_plan import (
    Behavior,
    SyncOptions,
    plan_sync,
    resolve_behavior,
    validate_mirror_constraints,
)
from kbkit.fs.memory import InMemoryFileSystem

SOURCE = Path("/dataset")
TARGET = Path("/project/kb")


def _describe(batch) -> list[str]:
    return [op.describe() for op in batch.operations]


@pytest.fixture
def source() -> InMemoryFileSystem:
    return InMemoryFileSystem(
        {
            "/dataset/index.md": "index v2",
            "/dataset/guides/a.md": "a v2",
            "/dataset/guides/new.md": "new",
            "/dataset/adr/001.md": "adr",
        }
    )


@pytest.fixture
def target() -> InMemoryFileSystem:
    return InMemoryFileSystem(
        {
            "/project/kb/index.md": "index v1",
            "/project/kb/guides/a.md": "a v1",
            "/project/kb/guides/local.md": "local notes",
            "/project/kb/adr/001.md": "adr",
        }
    )


class TestResolveBehavior:
    """Test folder behavior lookup."""

    def test_longest_key_wins(self) -> None:
        """Test that the deepest configured folder decides."""
        options = SyncOptions(
            folder_behavior={"a": Behavior.ADD, "a/b": Behavior.OVERWRITE, "/c/": "mirror"}
        )

        assert resolve_behavior("a/b/c", options) is Behavior.OVERWRITE
        assert resolve_behavior("a/x", options) is Behavior.ADD
        assert resolve_behavior("c", options) is Behavior.MIRROR
        assert resolve_behavior("z", options) is Behavior.OVERWRITE

    def test_empty_key_overrides_default(self) -> None:
        """Test that the root key applies to everything unmatched."""
        options = SyncOptions(default_behavior=Behavior.ADD, folder_behavior={"": "skip"})

        assert resolve_behavior("anything/here", options) is Behavior.SKIP


class TestMirrorConstraints:
    """Test mirror validation."""

    def test_mirror_parent_with_other_child_rejected(self) -> None:
        """Test that a mirrored folder cannot contain non-mirrored folders."""
        options = SyncOptions(folder_behavior={"a": "mirror", "a/b": "add"})

        with pytest.raises(ValidationError, match="descendant 'a/b' must also be 'mirror'"):
            validate_mirror_constraints(options)

    def test_sibling_prefix_is_not_descendant(self) -> None:
        """Test that 'ab' is not treated as a child of 'a'."""
        validate_mirror_constraints(SyncOptions(folder_behavior={"a": "mirror", "ab": "add"}))


class TestPlanSync:
    """Test batch generation."""

    def test_overwrite_default(
        self, source: InMemoryFileSystem, target: InMemoryFileSystem
    ) -> None:
        """Test that new and changed files are written and nothing is deleted."""
        batch = plan_sync(source, SOURCE, target, TARGET)

        assert _describe(batch) == [
            "[WRITE] guides/a.md",
            "[WRITE] guides/new.md",
            "[WRITE] index.md",
        ]

    def test_add_only_writes_missing_files(
        self, source: InMemoryFileSystem, target: InMemoryFileSystem
    ) -> None:
        """Test that add leaves existing files alone."""
        options = SyncOptions(default_behavior=Behavior.ADD)

        batch = plan_sync(source, SOURCE, target, TARGET, options)

        assert _describe(batch) == ["[WRITE] guides/new.md"]

    def test_mirror_deletes_extra_files(
        self, source: InMemoryFileSystem, target: InMemoryFileSystem
    ) -> None:
        """Test that mirror removes target files absent from the source."""
        options = SyncOptions(folder_behavior={"guides": Behavior.MIRROR})

        batch = plan_sync(source, SOURCE, target, TARGET, options)

        assert _describe(batch)[-1] == "[DELETE] guides/local.md"
        assert batch.operations[-1].kind is OperationKind.DELETE

    def test_skip_folder(self, source: InMemoryFileSystem, target: InMemoryFileSystem) -> None:
        """Test that skipped folders produce no operations."""
        options = SyncOptions(folder_behavior={"guides": Behavior.SKIP})

        batch = plan_sync(source, SOURCE, target, TARGET, options)

        assert _describe(batch) == ["[WRITE] index.md"]

    def test_fresh_install_into_missing_target(self, source: InMemoryFileSystem) -> None:
        """Test that a missing target root means every file is new."""
        batch = plan_sync(source, SOURCE, InMemoryFileSystem(), TARGET)

        assert len(batch) == 4

    def test_invalid_mirror_config_rejected(
        self, source: InMemoryFileSystem, target: InMemoryFileSystem
    ) -> None:
        """Test that plan_sync validates folder behaviors first."""
        options = SyncOptions(folder_behavior={"": "mirror", "guides": "add"})

        with pytest.raises(ValidationError):
            plan_sync(source, SOURCE, target, TARGET, options)

    def test_plan_applies_through_engine(
        self, source: InMemoryFileSystem, target: InMemoryFileSystem
    ) -> None:
        """Test that the planned batch brings the target in line with the source."""
        options = SyncOptions(default_behavior=Behavior.MIRROR)
        batch = plan_sync(source, SOURCE, target, TARGET, options)

        result = TransactionalMigrationEngine(target, EngineOptions(root=TARGET)).apply(batch)

        assert result.committed
        assert plan_sync(source, SOURCE, target, TARGET, options).operations == ()
        assert target.read_file(TARGET / "guides" / "new.md") == b"new"
        assert not target.exists(TARGET / "guides" / "local.md")
