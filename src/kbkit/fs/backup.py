"""Snapshot-based backup and rollback for a single transaction.

A :class:`BackupScope` records the pre-transaction state of every path the
transaction touches. The first capture of a path wins, so a file modified
several times still rolls back to its state before the transaction began.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from kbkit.core.errors import ValidationError
from kbkit.fs.atomic import AtomicWriter
from kbkit.fs.paths import normalize_path
from kbkit.fs.service import FileSystemService
from kbkit.utils.debug import debug


@dataclass(frozen=True)
class BackupSnapshot:
    """State of one path before the transaction touched it.

    Attributes:
        original_path: Absolute path that was captured
        existed_before: False when the path did not exist (restore deletes it)
        original_content: Captured bytes, or None if the path did not exist
        captured_at: When the snapshot was taken
    """

    original_path: Path
    existed_before: bool
    original_content: bytes | None
    captured_at: datetime


@dataclass
class BackupScope:
    """Ordered set of snapshots owned by one transaction."""

    scope_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    snapshots: dict[Path, BackupSnapshot] = field(default_factory=dict)
    closed: bool = False

    def __contains__(self, path: Path) -> bool:
        return normalize_path(path) in self.snapshots

    def __len__(self) -> int:
        return len(self.snapshots)


class BackupService:
    """Captures, restores and discards snapshots through a FileSystemService."""

    def __init__(self, fs: FileSystemService) -> None:
        self.fs = fs
        self._writer = AtomicWriter(fs)

    def begin_scope(self) -> BackupScope:
        """Open a new, empty scope."""
        scope = BackupScope()
        debug("Opened backup scope", scope=scope.scope_id)
        return scope

    def capture(self, scope: BackupScope, path: Path) -> None:
        """Snapshot ``path`` unless it was already captured in ``scope``.

        Raises:
            ValidationError: If the scope was already restored or discarded
            OSError: If the current content cannot be read
        """
        self._ensure_open(scope)
        path = normalize_path(path)
        if path in scope.snapshots:
            return

        if self.fs.exists(path) and not self.fs.is_dir(path):
            snapshot = BackupSnapshot(
                original_path=path,
                existed_before=True,
                original_content=self.fs.read_file(path),
                captured_at=datetime.now(UTC),
            )
        else:
            snapshot = BackupSnapshot(
                original_path=path,
                existed_before=False,
                original_content=None,
                captured_at=datetime.now(UTC),
            )
        scope.snapshots[path] = snapshot
        debug("Captured", path=path, existed_before=snapshot.existed_before)

    def restore_all(self, scope: BackupScope) -> list[Exception]:
        """Restore every snapshot in reverse capture order.

        Every snapshot is attempted even when an earlier one fails.

        Returns:
            The restoration errors, empty when the tree was fully restored
        """
        self._ensure_open(scope)
        errors: list[Exception] = []

        for snapshot in reversed(list(scope.snapshots.values())):
            try:
                self._restore(snapshot)
            except Exception as e:
                debug("Failed to restore", path=snapshot.original_path, error=e)
                errors.append(e)

        scope.closed = True
        debug("Restored backup scope", scope=scope.scope_id, errors=len(errors))
        return errors

    def discard(self, scope: BackupScope) -> None:
        """Release the scope's snapshots without touching the filesystem."""
        self._ensure_open(scope)
        scope.snapshots.clear()
        scope.closed = True
        debug("Discarded backup scope", scope=scope.scope_id)

    def _restore(self, snapshot: BackupSnapshot) -> None:
        path = snapshot.original_path
        content = snapshot.original_content
        if content is not None:
            if self.fs.exists(path) and self.fs.read_file(path) == content:
                return
            self._writer.write_file_atomic(path, content)
        elif self.fs.exists(path) and not self.fs.is_dir(path):
            self.fs.unlink(path)

    @staticmethod
    def _ensure_open(scope: BackupScope) -> None:
        if scope.closed:
            raise ValidationError("Backup scope is already closed", scope.scope_id)
