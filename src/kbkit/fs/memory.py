"""In-memory FileSystemService implementation.

Used for previews (dry runs that still exercise the full transaction),
for bundle verification (ZIP contents are extracted into memory), and as
the test double for engine tests.
"""

import errno
from datetime import UTC, datetime
from pathlib import Path

from kbkit.fs.paths import is_within, normalize_path
from kbkit.fs.service import FileStat, FileSystemService


def _not_found(path: Path) -> FileNotFoundError:
    return FileNotFoundError(errno.ENOENT, "No such file or directory", str(path))


class InMemoryFileSystem:
    """Dict-backed filesystem with POSIX semantics.

    Files map absolute paths to bytes. Directories are tracked explicitly so
    that ``mkdir`` without ``recursive`` and ``rename`` into a missing parent
    fail the same way they do on disk.
    """

    def __init__(
        self,
        initial: dict[str, bytes | str] | None = None,
        cwd: Path = Path("/"),
    ) -> None:
        self._cwd = normalize_path(cwd, Path("/"))
        self._files: dict[Path, bytes] = {}
        self._mtimes: dict[Path, datetime] = {}
        self._dirs: set[Path] = {Path("/")}
        self._add_parents(self._cwd / "_")

        for raw_path, content in (initial or {}).items():
            path = self._resolve(raw_path)
            self._add_parents(path)
            self._store(path, content.encode("utf-8") if isinstance(content, str) else content)

    def _resolve(self, path: str | Path) -> Path:
        return normalize_path(path, self._cwd)

    def _add_parents(self, path: Path) -> None:
        for parent in path.parents:
            self._dirs.add(parent)

    def _store(self, path: Path, content: bytes) -> None:
        self._files[path] = bytes(content)
        self._mtimes[path] = datetime.now(UTC)

    def read_file(self, path: Path) -> bytes:
        resolved = self._resolve(path)
        if resolved in self._dirs:
            raise IsADirectoryError(errno.EISDIR, "Is a directory", str(path))
        if resolved not in self._files:
            raise _not_found(path)
        return self._files[resolved]

    def write_file(self, path: Path, content: bytes) -> None:
        resolved = self._resolve(path)
        if resolved in self._dirs:
            raise IsADirectoryError(errno.EISDIR, "Is a directory", str(path))
        if resolved.parent not in self._dirs:
            raise _not_found(path)
        self._store(resolved, content)

    def mkdir(self, path: Path, *, recursive: bool = False) -> None:
        resolved = self._resolve(path)
        if resolved in self._files:
            raise FileExistsError(errno.EEXIST, "File exists", str(path))
        if recursive:
            for parent in resolved.parents:
                if parent in self._files:
                    raise NotADirectoryError(errno.ENOTDIR, "Not a directory", str(parent))
            self._add_parents(resolved)
        else:
            if resolved in self._dirs:
                raise FileExistsError(errno.EEXIST, "File exists", str(path))
            if resolved.parent not in self._dirs:
                raise _not_found(path)
        self._dirs.add(resolved)

    def rename(self, old_path: Path, new_path: Path) -> None:
        old = self._resolve(old_path)
        new = self._resolve(new_path)
        if new.parent not in self._dirs:
            raise _not_found(new_path)

        if old in self._files:
            if new in self._dirs:
                raise IsADirectoryError(errno.EISDIR, "Is a directory", str(new_path))
            self._files[new] = self._files.pop(old)
            self._mtimes[new] = self._mtimes.pop(old)
            return

        if old not in self._dirs:
            raise _not_found(old_path)
        if is_within(new, old):
            raise OSError(errno.EINVAL, "Cannot move a directory into itself", str(new_path))

        for path in [p for p in self._files if is_within(p, old)]:
            moved = new / path.relative_to(old)
            self._files[moved] = self._files.pop(path)
            self._mtimes[moved] = self._mtimes.pop(path)
        for path in [d for d in self._dirs if is_within(d, old)]:
            self._dirs.discard(path)
            self._dirs.add(new / path.relative_to(old))

    def unlink(self, path: Path) -> None:
        resolved = self._resolve(path)
        if resolved in self._dirs:
            raise IsADirectoryError(errno.EISDIR, "Is a directory", str(path))
        if resolved not in self._files:
            raise _not_found(path)
        del self._files[resolved]
        del self._mtimes[resolved]

    def exists(self, path: Path) -> bool:
        resolved = self._resolve(path)
        return resolved in self._files or resolved in self._dirs

    def is_dir(self, path: Path) -> bool:
        return self._resolve(path) in self._dirs

    def stat(self, path: Path) -> FileStat:
        resolved = self._resolve(path)
        if resolved in self._files:
            return FileStat(size=len(self._files[resolved]), mtime=self._mtimes[resolved])
        if resolved in self._dirs:
            return FileStat(size=0, mtime=datetime.fromtimestamp(0, tz=UTC))
        raise _not_found(path)

    def list_files_recursive(self, root: Path) -> list[Path]:
        resolved = self._resolve(root)
        if resolved not in self._dirs:
            raise NotADirectoryError(errno.ENOTDIR, "Not a directory", str(root))
        files = [p for p in self._files if is_within(p, resolved)]
        return sorted(files, key=lambda p: p.relative_to(resolved).as_posix())

    def snapshot(self) -> dict[str, bytes]:
        """Return a copy of every file, keyed by POSIX path string."""
        return {path.as_posix(): content for path, content in self._files.items()}


def clone_tree(source: FileSystemService, root: Path) -> InMemoryFileSystem:
    """Copy every file under ``root`` from ``source`` into a new in-memory filesystem.

    Paths keep their absolute location, so code configured for ``root`` works
    unchanged against the clone.
    """
    clone = InMemoryFileSystem(cwd=root)
    clone.mkdir(root, recursive=True)
    for path in source.list_files_recursive(root):
        clone.mkdir(path.parent, recursive=True)
        clone.write_file(path, source.read_file(path))
    return clone
