"""Install/update planning.

Compares a source tree (the knowledge base being distributed) with a target
tree (the consumer's copy) and produces the OperationBatch that brings the
target up to date. Each folder can choose how it is synchronised:

- ``overwrite``: write new files and files whose digest differs (default)
- ``add``: write only files the target does not have yet
- ``mirror``: like overwrite, and delete target files absent from the source
- ``skip``: leave the folder untouched

Behaviors are keyed by forward-slash folder paths relative to the roots;
the longest matching key wins and ``""`` matches everything.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from kbkit.core.errors import ValidationError
from kbkit.core.schemas import FileOperation, OperationBatch
from kbkit.fs.manifest import compute_digest
from kbkit.fs.paths import normalize_path, to_posix_relative
from kbkit.fs.service import FileSystemService
from kbkit.utils.debug import debug


class Behavior(str, Enum):
    """How a folder is synchronised."""

    OVERWRITE = "overwrite"
    ADD = "add"
    MIRROR = "mirror"
    SKIP = "skip"


def normalize_key(key: str) -> str:
    """Normalize a folder key: forward slashes, no leading or trailing slash."""
    return key.replace("\\", "/").strip("/")


@dataclass
class SyncOptions:
    """Synchronisation settings.

    Attributes:
        default_behavior: Behavior for paths no folder key matches
        folder_behavior: Per-folder overrides keyed by relative folder path
    """

    default_behavior: Behavior = Behavior.OVERWRITE
    folder_behavior: dict[str, Behavior] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.default_behavior = Behavior(self.default_behavior)
        self.folder_behavior = {
            normalize_key(key): Behavior(value) for key, value in self.folder_behavior.items()
        }


def resolve_behavior(relative_path: str, options: SyncOptions) -> Behavior:
    """Pick the behavior of the longest folder key containing ``relative_path``."""
    key = normalize_key(relative_path)
    while key:
        if key in options.folder_behavior:
            return options.folder_behavior[key]
        key = _folder_of(key)
    return options.folder_behavior.get("", options.default_behavior)


def validate_mirror_constraints(options: SyncOptions) -> None:
    """Require every descendant of a mirrored folder to be mirrored too.

    Raises:
        ValidationError: If a ``mirror`` folder has a descendant key with
            another behavior
    """
    for parent, behavior in options.folder_behavior.items():
        if behavior is not Behavior.MIRROR:
            continue
        prefix = f"{parent}/" if parent else ""
        for child, child_behavior in options.folder_behavior.items():
            if child == parent or not child.startswith(prefix):
                continue
            if child_behavior is not Behavior.MIRROR:
                raise ValidationError(
                    f"Folder '{parent}' is 'mirror' so descendant '{child}' must also be 'mirror'"
                )


def plan_sync(
    source_fs: FileSystemService,
    source_root: Path,
    target_fs: FileSystemService,
    target_root: Path,
    options: SyncOptions | None = None,
) -> OperationBatch:
    """Build the batch that synchronises ``target_root`` with ``source_root``.

    Writes come first in path order, followed by mirror deletions in path
    order. The batch uses paths relative to ``target_root`` so it can be
    handed to an engine managing that root.

    Raises:
        ValidationError: If the folder behaviors are inconsistent
        OSError: If either tree cannot be read
    """
    options = options or SyncOptions()
    validate_mirror_constraints(options)
    source_root = normalize_path(source_root)
    target_root = normalize_path(target_root)

    source_files = {
        to_posix_relative(normalize_path(p), source_root): p
        for p in source_fs.list_files_recursive(source_root)
    }
    target_files: dict[str, Path] = {}
    if target_fs.is_dir(target_root):
        target_files = {
            to_posix_relative(normalize_path(p), target_root): p
            for p in target_fs.list_files_recursive(target_root)
        }

    writes: list[FileOperation] = []
    for relative, path in source_files.items():
        behavior = resolve_behavior(_folder_of(relative), options)
        if behavior is Behavior.SKIP:
            continue
        content = source_fs.read_file(path)
        if relative not in target_files:
            writes.append(FileOperation.write(relative, content))
            continue
        if behavior is Behavior.ADD:
            continue
        if compute_digest(content) != compute_digest(target_fs.read_file(target_files[relative])):
            writes.append(FileOperation.write(relative, content))

    deletes = [
        FileOperation.delete(relative)
        for relative in sorted(set(target_files) - set(source_files))
        if resolve_behavior(_folder_of(relative), options) is Behavior.MIRROR
    ]

    debug(f"Sync plan for {target_root}: {len(writes)} write(s), {len(deletes)} delete(s)")
    return OperationBatch.of(*writes, *deletes)


def _folder_of(relative: str) -> str:
    return relative.rsplit("/", 1)[0] if "/" in relative else ""
