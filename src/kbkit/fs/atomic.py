"""Atomic single-file writes.

Content is written to a sibling temporary file and renamed onto the target,
so readers see either the old bytes or the new bytes and never a partial
file.
"""

from pathlib import Path

from kbkit.fs.paths import get_temp_path
from kbkit.fs.service import FileSystemService
from kbkit.utils.debug import debug


class AtomicWriter:
    """Writes files through a FileSystemService using temp-file-then-rename."""

    def __init__(self, fs: FileSystemService, *, dry_run: bool = False) -> None:
        """Initialize the writer.

        Args:
            fs: Filesystem to write through
            dry_run: If True, report success without touching the filesystem
        """
        self.fs = fs
        self.dry_run = dry_run

    def write_file_atomic(self, path: Path, content: bytes | str) -> None:
        """Replace ``path`` with ``content`` in a single visible step.

        Args:
            path: Target file path
            content: New content; ``str`` is encoded as UTF-8

        Raises:
            OSError: If any step fails. The temporary file is removed first.
        """
        if self.dry_run:
            debug("Dry run: skipped atomic write", path=path)
            return

        data = content.encode("utf-8") if isinstance(content, str) else content
        temp_path = get_temp_path(path)
        renamed = False
        try:
            self.fs.mkdir(path.parent, recursive=True)
            self.fs.write_file(temp_path, data)
            self.fs.rename(temp_path, path)
            renamed = True
            debug("Atomic write", temp=temp_path, path=path, size=len(data))
        finally:
            if not renamed:
                self._discard_temp(temp_path)

    def _discard_temp(self, temp_path: Path) -> None:
        try:
            if self.fs.exists(temp_path):
                self.fs.unlink(temp_path)
        except OSError as e:
            debug("Failed to remove temporary file", temp=temp_path, error=e)
