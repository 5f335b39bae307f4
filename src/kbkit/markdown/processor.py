"""Markdown link resolution and rewriting.

The processor turns scanned links into :class:`LinkReference` values,
computes the replacement target after a move, and splices replacements
back into the document text at the recorded offsets.
"""

import re
from collections.abc import Callable, Iterable
from pathlib import Path
from urllib.parse import quote

from kbkit.core.errors import LinkResolutionError
from kbkit.fs.paths import is_within, normalize_path, relative_link, to_posix_relative
from kbkit.fs.service import FileSystemService
from kbkit.markdown.links import (
    LineIndex,
    LinkKind,
    LinkReference,
    LinkStyle,
    classify_target,
    resolve_target,
    scan_links,
    split_link_parts,
)
from kbkit.utils.debug import debug

# Characters left alone when re-encoding a rewritten path
_QUOTE_SAFE = "/:@!$&'*+,;=-._~"
_NEEDS_ENCODING_RE = re.compile(r"[\s()<>]")

ExistsCheck = Callable[[Path], bool]


class MarkdownLinkProcessor:
    """Extracts, classifies and rewrites links in markdown documents."""

    def __init__(
        self,
        fs: FileSystemService,
        root: Path,
        doc_root: Path | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            fs: Filesystem used for the default existence check
            root: Managed root; internal links must resolve inside it
            doc_root: Directory absolute links resolve against (default ``root``)
        """
        self.fs = fs
        self.root = normalize_path(root)
        self.doc_root = self.root if doc_root is None else normalize_path(doc_root, self.root)

    def extract_links(
        self,
        document_path: Path,
        content: str | bytes,
        *,
        exists: ExistsCheck | None = None,
    ) -> list[LinkReference]:
        """Find and classify every link in a document.

        Args:
            document_path: Location used to resolve relative links
            content: Document text (bytes are decoded as UTF-8)
            exists: Existence check for internal targets; defaults to the
                filesystem. The engine passes a check against the
                pre-transaction tree.

        Returns:
            Links in document order
        """
        text = decode_markdown(content) if isinstance(content, bytes) else content
        document_path = normalize_path(document_path, self.root)
        check = exists if exists is not None else self.fs.exists
        lines = LineIndex(text)

        references: list[LinkReference] = []
        for raw in scan_links(text):
            kind = classify_target(raw.target)
            path_part, query, anchor = split_link_parts(raw.target)
            resolved: Path | None = None

            if kind in (LinkKind.RELATIVE_INTERNAL, LinkKind.ABSOLUTE_INTERNAL):
                resolved = resolve_target(document_path, path_part, self.doc_root)
                if not is_within(resolved, self.root) or not check(resolved):
                    kind = LinkKind.UNRESOLVABLE

            references.append(
                LinkReference(
                    containing_file=document_path,
                    raw_target=raw.target,
                    kind=kind,
                    syntax=raw.syntax,
                    start=raw.start,
                    end=raw.end,
                    line_start=lines.line_of(raw.start),
                    line_end=lines.line_of(max(raw.start, raw.end - 1)),
                    anchor_fragment=anchor or None,
                    query=query or None,
                    resolved_path=resolved,
                    bracketed=raw.bracketed,
                )
            )
        return references

    def rewrite_link(
        self,
        reference: LinkReference,
        old_target_path: Path,
        new_target_path: Path,
        referencing_file_new_path: Path,
    ) -> str | None:
        """Compute the replacement text for a link after a move.

        Args:
            reference: Link as extracted from the document
            old_target_path: Where the link's target lived before the move
            new_target_path: Where the target lives now
            referencing_file_new_path: Where the document containing the
                link lives now

        Returns:
            The new raw target, or None when the link needs no change
            (not internal, points elsewhere, or already correct)

        Raises:
            LinkResolutionError: If an absolute link's target left the
                document root
        """
        if not reference.is_internal:
            return None
        old_target = normalize_path(old_target_path, self.root)
        if reference.resolved_path != old_target:
            return None

        new_target = normalize_path(new_target_path, self.root)
        new_document = normalize_path(referencing_file_new_path, self.root)
        original_path, query, anchor = split_link_parts(reference.raw_target)

        if reference.kind is LinkKind.ABSOLUTE_INTERNAL:
            new_path = self._absolute_path(reference, new_target, "target moved")
        else:
            new_path = relative_link(new_document.parent, new_target)
            if original_path.startswith("./") and not new_path.startswith("./"):
                new_path = "./" + new_path

        return self._finish(reference, original_path, new_path, query, anchor)

    def restyle_link(self, reference: LinkReference, style: LinkStyle) -> str | None:
        """Convert an internal link between relative and absolute form.

        The target file is unchanged; only the way the link is written
        changes. Anchor, query and trailing slash are kept.

        Returns:
            The new raw target, or None when the link already has ``style``
            or is not internal

        Raises:
            LinkResolutionError: If an absolute form is requested for a
                target outside the document root
        """
        if not reference.is_internal or reference.resolved_path is None:
            return None
        original_path, query, anchor = split_link_parts(reference.raw_target)

        if style is LinkStyle.ABSOLUTE:
            if reference.kind is LinkKind.ABSOLUTE_INTERNAL:
                return None
            new_path = self._absolute_path(reference, reference.resolved_path, "target is")
        elif style is LinkStyle.RELATIVE:
            if reference.kind is LinkKind.RELATIVE_INTERNAL:
                return None
            new_path = relative_link(reference.containing_file.parent, reference.resolved_path)
        else:
            raise ValueError(f"Cannot restyle a link to {style.value!r}")

        return self._finish(reference, original_path, new_path, query, anchor)

    def _absolute_path(self, reference: LinkReference, target: Path, what: str) -> str:
        if not is_within(target, self.doc_root):
            raise LinkResolutionError(
                str(reference.containing_file),
                reference.raw_target,
                f"{what} outside the document root {self.doc_root}",
                line=reference.line_start,
            )
        new_path = "/" + to_posix_relative(target, self.doc_root)
        return "/" if new_path == "/." else new_path

    @staticmethod
    def _finish(
        reference: LinkReference, original_path: str, new_path: str, query: str, anchor: str
    ) -> str | None:
        if original_path.endswith("/") and not new_path.endswith("/"):
            new_path += "/"
        if "%" in original_path or (
            not reference.bracketed and _NEEDS_ENCODING_RE.search(new_path)
        ):
            new_path = quote(new_path, safe=_QUOTE_SAFE)

        new_raw = f"{new_path}{query}{anchor}"
        if new_raw == reference.raw_target:
            return None
        return new_raw

    def apply_rewrites(
        self,
        content: str,
        rewrites: Iterable[tuple[LinkReference, str]],
    ) -> tuple[str, int]:
        """Splice replacement targets into ``content``.

        Replacements are applied from the end of the document backwards so
        earlier offsets stay valid. A reference whose recorded span no longer
        holds its raw target is skipped.

        Returns:
            Tuple of (new content, number of replacements applied)
        """
        applied = 0
        for reference, replacement in sorted(rewrites, key=lambda r: r[0].start, reverse=True):
            if content[reference.start : reference.end] != reference.raw_target:
                debug(
                    f"Skipping stale rewrite in {reference.containing_file} "
                    f"at offset {reference.start}"
                )
                continue
            content = content[: reference.start] + replacement + content[reference.end :]
            applied += 1
        return content, applied


def decode_markdown(content: bytes) -> str:
    """Decode document bytes so that re-encoding reproduces them exactly."""
    return content.decode("utf-8", errors="surrogateescape")


def encode_markdown(text: str) -> bytes:
    return text.encode("utf-8", errors="surrogateescape")
