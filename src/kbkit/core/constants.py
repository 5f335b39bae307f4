"""Core constants for kbkit.

This module defines constants used throughout the package:
- Markdown document suffixes considered for link rewriting
- Manifest format and digest settings for distributable bundles
- Naming conventions for temporary files
"""

# ============================================================================
# Markdown Documents
# ============================================================================

#: File suffixes treated as markdown documents (links are scanned and rewritten)
MARKDOWN_SUFFIXES: tuple[str, ...] = (
    ".md",
    ".markdown",
    ".mdx",
)

# ============================================================================
# Manifest / Integrity
# ============================================================================

#: Current manifest format version
MANIFEST_FORMAT_VERSION: int = 1

#: Digest algorithm per manifest format version (lowercase hex output)
DIGEST_ALGORITHMS: dict[int, str] = {
    1: "sha256",
}

#: Name of the manifest embedded at the root of a bundle
MANIFEST_FILENAME: str = "manifest.json"

# ============================================================================
# Atomic Writes
# ============================================================================

#: Infix for sibling temporary files created by the atomic writer
TEMP_FILE_INFIX: str = ".tmp-"
