"""Filesystem service abstraction.

The migration engine never touches ``os`` or ``pathlib`` I/O directly; it
talks to a :class:`FileSystemService`. Two implementations exist: the
OS-backed :class:`LocalFileSystem` defined here and the dict-backed
``InMemoryFileSystem`` in :mod:`kbkit.fs.memory`. Callers pick one at
construction time.

Every failing call raises ``OSError`` with ``filename`` set to the offending
path.
"""

import errno
import os
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from kbkit.utils.debug import debug


@dataclass(frozen=True)
class FileStat:
    """Subset of file metadata the engine relies on."""

    size: int
    mtime: datetime


@runtime_checkable
class FileSystemService(Protocol):
    """Primitive synchronous filesystem operations."""

    def read_file(self, path: Path) -> bytes: ...

    def write_file(self, path: Path, content: bytes) -> None: ...

    def mkdir(self, path: Path, *, recursive: bool = False) -> None: ...

    def rename(self, old_path: Path, new_path: Path) -> None: ...

    def unlink(self, path: Path) -> None: ...

    def exists(self, path: Path) -> bool: ...

    def is_dir(self, path: Path) -> bool: ...

    def stat(self, path: Path) -> FileStat: ...

    def list_files_recursive(self, root: Path) -> list[Path]: ...


class LocalFileSystem:
    """FileSystemService backed by the operating system."""

    def read_file(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def write_file(self, path: Path, content: bytes) -> None:
        with open(path, "wb") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())

    def mkdir(self, path: Path, *, recursive: bool = False) -> None:
        Path(path).mkdir(parents=recursive, exist_ok=recursive)

    def rename(self, old_path: Path, new_path: Path) -> None:
        """Rename a file, falling back to copy+unlink across devices."""
        try:
            os.replace(old_path, new_path)
            debug(f"Direct rename: {old_path} -> {new_path}")
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise
            # Cross-device move: copy + fsync + remove
            try:
                shutil.copy2(old_path, new_path)
                with open(new_path, "rb") as handle:
                    os.fsync(handle.fileno())
                os.unlink(old_path)
                debug(f"Cross-device move: {old_path} -> {new_path}")
            except OSError:
                # Clean up partial copy
                if os.path.exists(new_path) and os.path.exists(old_path):
                    try:
                        os.unlink(new_path)
                    except OSError as cleanup_error:
                        debug(f"Failed to remove partial copy {new_path}: {cleanup_error}")
                raise

    def unlink(self, path: Path) -> None:
        Path(path).unlink()

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def is_dir(self, path: Path) -> bool:
        return Path(path).is_dir()

    def stat(self, path: Path) -> FileStat:
        result = Path(path).stat()
        return FileStat(
            size=result.st_size,
            mtime=datetime.fromtimestamp(result.st_mtime, tz=UTC),
        )

    def list_files_recursive(self, root: Path) -> list[Path]:
        """Return every regular file under ``root``, sorted by relative path.

        Symbolic links are skipped so the walk can never leave the managed
        root.
        """
        root = Path(root)
        if not root.is_dir():
            raise NotADirectoryError(errno.ENOTDIR, "Not a directory", str(root))

        files: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [d for d in dirnames if not os.path.islink(os.path.join(dirpath, d))]
            for name in filenames:
                item = Path(dirpath) / name
                if item.is_file() and not item.is_symlink():
                    files.append(item)

        return sorted(files, key=lambda p: p.relative_to(root).as_posix())
