"""Checksum manifests for distributable bundles.

This module builds a deterministic manifest (SHA-256 over raw bytes, entries
sorted by forward-slash relative path) for a directory tree and verifies a
tree against a previously built manifest.

Manifest JSON format::

    {
      "formatVersion": 1,
      "totalFiles": 2,
      "entries": [
        {"path": "guide/a.md", "algorithm": "sha256", "digest": "...", "size": 12},
        ...
      ]
    }
"""

import hashlib
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from kbkit.core.constants import DIGEST_ALGORITHMS, MANIFEST_FILENAME, MANIFEST_FORMAT_VERSION
from kbkit.core.errors import ManifestValidationError
from kbkit.core.schemas import ChecksumMismatch, Manifest, ManifestEntry, VerificationReport
from kbkit.fs.paths import normalize_path, to_posix_relative
from kbkit.fs.service import FileSystemService
from kbkit.utils.debug import debug


def compute_digest(content: bytes, algorithm: str = "sha256") -> str:
    """Return the lowercase hex digest of ``content``."""
    return hashlib.new(algorithm, content).hexdigest()


class IntegrityVerifier:
    """Builds and checks manifests through a FileSystemService."""

    def __init__(self, fs: FileSystemService) -> None:
        self.fs = fs
        self.algorithm = DIGEST_ALGORITHMS[MANIFEST_FORMAT_VERSION]

    def build_manifest(self, root: Path) -> Manifest:
        """Digest every file under ``root``.

        A ``manifest.json`` directly under ``root`` is skipped so a bundle's
        own manifest never lists itself.

        Args:
            root: Directory to walk

        Returns:
            Manifest with entries sorted by relative path

        Raises:
            OSError: If the tree cannot be walked or a file cannot be read
        """
        entries = [
            self._entry(relative, self.fs.read_file(path))
            for relative, path in self._walk(root).items()
        ]
        debug(f"Built manifest for {root}: {len(entries)} file(s)")
        return Manifest(
            format_version=MANIFEST_FORMAT_VERSION,
            total_files=len(entries),
            entries=tuple(entries),
        )

    def verify(self, root: Path, manifest: Manifest) -> VerificationReport:
        """Compare the tree under ``root`` with ``manifest``.

        Returns:
            Report whose missing, unexpected and corrupted lists are disjoint
            and sorted. Verifying an untouched tree against its own manifest
            yields an empty report.
        """
        on_disk = self._walk(root)
        expected = manifest.by_path()

        missing = sorted(set(expected) - set(on_disk))
        unexpected = sorted(set(on_disk) - set(expected))
        corrupted: list[ChecksumMismatch] = []

        for relative in sorted(set(expected) & set(on_disk)):
            entry = expected[relative]
            content = self.fs.read_file(on_disk[relative])
            actual = compute_digest(content, entry.digest_algorithm)
            if actual != entry.digest_hex or len(content) != entry.size_bytes:
                corrupted.append(
                    ChecksumMismatch(
                        path=relative,
                        expected_digest=entry.digest_hex,
                        actual_digest=actual,
                        expected_size=entry.size_bytes,
                        actual_size=len(content),
                    )
                )

        report = VerificationReport(missing=missing, unexpected=unexpected, corrupted=corrupted)
        debug(
            f"Verified {root}: {len(missing)} missing, {len(unexpected)} unexpected, "
            f"{len(corrupted)} corrupted"
        )
        return report

    def dump_manifest(self, manifest: Manifest) -> str:
        """Serialize ``manifest`` to its JSON document form."""
        return manifest.model_dump_json(by_alias=True, indent=2) + "\n"

    def load_manifest(self, text: str | bytes) -> Manifest:
        """Parse a manifest document.

        Raises:
            ManifestValidationError: If the document is not valid JSON or
                breaks any manifest invariant
        """
        try:
            return Manifest.model_validate_json(text)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'manifest'}: {err['msg']}"
                for err in e.errors()
            )
            raise ManifestValidationError(f"Invalid manifest: {problems}") from e

    def _walk(self, root: Path) -> dict[str, Path]:
        root = normalize_path(root)
        files: dict[str, Path] = {}
        for path in self.fs.list_files_recursive(root):
            relative = to_posix_relative(normalize_path(path), root)
            if relative == MANIFEST_FILENAME:
                continue
            files[relative] = path
        return files

    def _entry(self, relative: str, content: bytes) -> ManifestEntry:
        return ManifestEntry(
            relative_path=relative,
            digest_algorithm=self.algorithm,
            digest_hex=compute_digest(content, self.algorithm),
            size_bytes=len(content),
        )
