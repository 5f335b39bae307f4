"""ZIP bundles with an embedded checksum manifest.

A bundle is a ZIP archive holding a documentation tree plus a
``manifest.json`` at its root. Packing is deterministic: entries are written
in manifest order with a fixed timestamp, so packing the same tree twice
yields identical bytes.
"""

import io
import zipfile
import zlib
from pathlib import Path, PurePosixPath

import structlog

from kbkit.core.constants import MANIFEST_FILENAME
from kbkit.core.errors import ManifestValidationError
from kbkit.core.schemas import Manifest, VerificationReport
from kbkit.fs.atomic import AtomicWriter
from kbkit.fs.manifest import IntegrityVerifier
from kbkit.fs.memory import InMemoryFileSystem
from kbkit.fs.paths import normalize_path
from kbkit.fs.service import FileSystemService

logger = structlog.get_logger(__name__)

# Earliest timestamp a ZIP entry can carry
_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_EXTRACT_ROOT = Path("/bundle")


def pack_bundle(fs: FileSystemService, source_root: Path, output_path: Path) -> Manifest:
    """Pack the tree under ``source_root`` into a ZIP at ``output_path``.

    Args:
        fs: Filesystem holding both the tree and the output
        source_root: Directory to pack
        output_path: Destination archive, written atomically

    Returns:
        The manifest embedded in the archive

    Raises:
        OSError: If the tree cannot be read or the archive cannot be written
    """
    source_root = normalize_path(source_root)
    verifier = IntegrityVerifier(fs)
    manifest = verifier.build_manifest(source_root)

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for entry in manifest.entries:
            content = fs.read_file(source_root / entry.relative_path)
            zf.writestr(_zip_info(entry.relative_path), content)
        zf.writestr(_zip_info(MANIFEST_FILENAME), verifier.dump_manifest(manifest))

    data = buffer.getvalue()
    AtomicWriter(fs).write_file_atomic(normalize_path(output_path), data)
    logger.info(
        "bundle.packed",
        source=str(source_root),
        output=str(output_path),
        files=manifest.total_files,
        size_bytes=len(data),
    )
    return manifest


def verify_bundle(fs: FileSystemService, bundle_path: Path) -> VerificationReport:
    """Check a bundle's contents against its embedded manifest.

    Problems with the archive, its entries or its manifest are reported in
    ``manifest_errors`` rather than raised. An entry whose compressed data
    fails to decode is also listed as missing.

    Raises:
        OSError: If the bundle file itself cannot be read
    """
    data = fs.read_file(normalize_path(bundle_path))
    errors: list[str] = []

    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        return VerificationReport(manifest_errors=[f"Not a valid ZIP archive: {e}"])

    extracted = InMemoryFileSystem()
    extracted.mkdir(_EXTRACT_ROOT, recursive=True)
    seen: set[str] = set()

    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            if not is_safe_entry_name(info.filename):
                errors.append(f"Unsafe entry name rejected: {info.filename}")
                continue
            if info.filename in seen:
                errors.append(f"Duplicate entry: {info.filename}")
                continue
            seen.add(info.filename)
            target = _EXTRACT_ROOT / info.filename
            try:
                content = archive.read(info)
            except (zipfile.BadZipFile, zlib.error, EOFError) as e:
                # left out of the extracted tree, so verify lists it as missing
                errors.append(f"Unreadable entry {info.filename}: {e}")
                continue
            extracted.mkdir(target.parent, recursive=True)
            extracted.write_file(target, content)

    verifier = IntegrityVerifier(extracted)
    manifest_path = _EXTRACT_ROOT / MANIFEST_FILENAME
    if not extracted.exists(manifest_path):
        errors.append(f"Bundle has no {MANIFEST_FILENAME}")
        return VerificationReport(manifest_errors=errors)

    try:
        manifest = verifier.load_manifest(extracted.read_file(manifest_path))
    except ManifestValidationError as e:
        errors.append(str(e))
        return VerificationReport(manifest_errors=errors)

    report = verifier.verify(_EXTRACT_ROOT, manifest)
    result = report.model_copy(update={"manifest_errors": errors})
    logger.info(
        "bundle.verified",
        bundle=str(bundle_path),
        ok=result.ok,
        missing=len(result.missing),
        unexpected=len(result.unexpected),
        corrupted=len(result.corrupted),
    )
    return result


def is_safe_entry_name(name: str) -> bool:
    """Reject absolute names, backslashes and parent-directory segments."""
    if not name or "\\" in name or PurePosixPath(name).is_absolute():
        return False
    return all(part not in ("", ".", "..") for part in name.split("/"))


def _zip_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=_FIXED_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    return info
