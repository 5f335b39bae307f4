"""Path utilities for filesystem operations.

This module provides path normalization and containment helpers shared by
the OS-backed and in-memory filesystems. None of the helpers touch the disk,
so they behave identically for paths that only exist in memory.
"""

import os
import posixpath
import unicodedata
import uuid
from pathlib import Path

from kbkit.core.constants import TEMP_FILE_INFIX


def normalize_path(path: str | Path, root: Path | None = None) -> Path:
    """Normalize a path for consistent handling.

    Args:
        path: Path to normalize
        root: Optional root directory for relative paths

    Returns:
        Normalized absolute path (lexically resolved, symlinks untouched)
    """
    # Convert to Path if needed
    if not isinstance(path, Path):
        path = Path(path)

    # Make absolute using root if provided
    if not path.is_absolute():
        base = root if root is not None else Path.cwd()
        path = base / path

    path = Path(os.path.normpath(path))

    # Normalize Unicode (NFC on macOS, NFD handling)
    if os.name == "posix":
        path = Path(unicodedata.normalize("NFC", str(path)))

    return path


def is_within(path: Path, root: Path) -> bool:
    """Check whether ``path`` equals ``root`` or lies underneath it.

    Both arguments must already be normalized.
    """
    return path == root or root in path.parents


def to_posix_relative(path: Path, root: Path) -> str:
    """Return ``path`` relative to ``root`` with forward-slash separators.

    Raises:
        ValueError: If ``path`` is not inside ``root``
    """
    return path.relative_to(root).as_posix()


def relative_link(from_dir: Path, target: Path) -> str:
    """Compute the forward-slash relative path from a directory to a target.

    Args:
        from_dir: Directory of the referencing document
        target: Absolute location of the referenced file

    Returns:
        Relative path such as ``sub/a.md`` or ``../guide.md``
    """
    rel = os.path.relpath(target, from_dir)
    return rel.replace(os.sep, posixpath.sep)


def get_temp_path(target: Path) -> Path:
    """Get a sibling temporary path for an atomic write.

    The temporary file lives in the same directory as the target so that the
    final rename never crosses a filesystem boundary.

    Args:
        target: Final destination path

    Returns:
        Unique temporary path next to ``target``
    """
    return target.with_name(f"{target.name}{TEMP_FILE_INFIX}{uuid.uuid4().hex[:8]}")


def is_temp_path(path: Path) -> bool:
    """Check whether a path looks like an atomic-writer temporary file."""
    return TEMP_FILE_INFIX in path.name
