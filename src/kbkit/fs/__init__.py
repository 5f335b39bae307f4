"""Filesystem layer: atomic writes, backups, manifests and bundles.

This package provides the FileSystemService abstraction with OS-backed and
in-memory implementations, plus the building blocks the migration engine
composes into transactions.
"""

from kbkit.fs.atomic import AtomicWriter
from kbkit.fs.backup import BackupScope, BackupService, BackupSnapshot
from kbkit.fs.bundle import pack_bundle, verify_bundle
from kbkit.fs.manifest import IntegrityVerifier
from kbkit.fs.memory import InMemoryFileSystem, clone_tree
from kbkit.fs.paths import normalize_path
from kbkit.fs.service import FileStat, FileSystemService, LocalFileSystem

__all__ = [
    "AtomicWriter",
    "BackupScope",
    "BackupService",
    "BackupSnapshot",
    "FileStat",
    "FileSystemService",
    "InMemoryFileSystem",
    "IntegrityVerifier",
    "LocalFileSystem",
    "clone_tree",
    "normalize_path",
    "pack_bundle",
    "verify_bundle",
]
