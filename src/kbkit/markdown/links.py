"""Markdown link scanning and classification.

Uses regex heuristics rather than a full Markdown parser. Fenced code blocks
and inline code spans are masked with spaces before scanning so that offsets
stay valid and links inside code are never reported.

Recognised syntax:
    [text](target "title")      inline link
    ![alt](target)              image
    [text](<target with space>) angle-bracket destination
    [label]: target             reference definition
    <https://example.com>       autolink (always external)
"""

import re
from bisect import bisect_right
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import unquote

from kbkit.fs.paths import normalize_path

# Fence opener: up to three spaces of indent, then ``` or ~~~ (3+)
FENCE_OPEN_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")
INLINE_CODE_RE = re.compile(r"(?<!`)(`+)(?!`)(.+?)(?<!`)\1(?!`)", re.DOTALL)

# Link text allows one level of nested brackets: [a [b] c](target)
INLINE_LINK_RE = re.compile(
    r"(?P<bang>!?)\[(?:[^\[\]\n]|\[[^\[\]\n]*\])*\]"
    r"\([ \t]*(?:<(?P<angle>[^<>\n]*)>|(?P<bare>[^\s()<>]*(?:\([^\s()]*\)[^\s()<>]*)*))"
    r"(?:[ \t]+(?:\"[^\"\n]*\"|'[^'\n]*'|\([^()\n]*\)))?[ \t]*\)"
)
REF_DEF_RE = re.compile(
    r"^ {0,3}\[(?P<label>[^\]\n]+)\]:[ \t]*(?:<(?P<angle>[^<>\n]*)>|(?P<bare>\S+))",
    re.MULTILINE,
)
AUTOLINK_RE = re.compile(
    r"<(?P<target>[A-Za-z][A-Za-z0-9+.\-]{1,31}:[^<>\s]*|[^<>\s@]+@[^<>\s@]+\.[^<>\s@]+)>"
)
SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]{1,31}:")


class LinkKind(str, Enum):
    """Closed set of link classifications.

    Attributes:
        RELATIVE_INTERNAL: Relative path to a file under the managed root
        ABSOLUTE_INTERNAL: ``/``-rooted path resolved against the document root
        EXTERNAL: Has a URI scheme (``https:``, ``mailto:``) or is protocol-relative
        ANCHOR_ONLY: Points into the same document (``#section``)
        UNRESOLVABLE: Internal-looking target that does not exist under the root
    """

    RELATIVE_INTERNAL = "relative_internal"
    ABSOLUTE_INTERNAL = "absolute_internal"
    EXTERNAL = "external"
    ANCHOR_ONLY = "anchor_only"
    UNRESOLVABLE = "unresolvable"


class LinkSyntax(str, Enum):
    """Markdown construct the link was found in."""

    INLINE = "inline"
    IMAGE = "image"
    REFERENCE = "reference"
    AUTOLINK = "autolink"


class LinkStyle(str, Enum):
    """How internal links are written.

    AUTO picks whichever of RELATIVE or ABSOLUTE the tree already uses most.
    """

    RELATIVE = "relative"
    ABSOLUTE = "absolute"
    AUTO = "auto"


@dataclass(frozen=True)
class RawLink:
    """A link target located in a document, before classification."""

    syntax: LinkSyntax
    target: str
    start: int
    end: int
    bracketed: bool = False


@dataclass(frozen=True)
class LinkReference:
    """A single link found inside a markdown document.

    Derived from document content on every pass, never persisted.

    Attributes:
        containing_file: Document the link was found in
        raw_target: Link target exactly as written (without angle brackets)
        kind: Classification of the target
        syntax: Markdown construct the link came from
        start: Offset of ``raw_target`` in the document text
        end: Offset one past the end of ``raw_target``
        line_start: 1-based line where the target starts
        line_end: 1-based line where the target ends
        anchor_fragment: ``#fragment`` suffix, preserved verbatim
        query: ``?query`` suffix, preserved verbatim
        resolved_path: Absolute target location for internal links
        bracketed: Target was written as ``<...>``
    """

    containing_file: Path
    raw_target: str
    kind: LinkKind
    syntax: LinkSyntax
    start: int
    end: int
    line_start: int
    line_end: int
    anchor_fragment: str | None = None
    query: str | None = None
    resolved_path: Path | None = None
    bracketed: bool = False

    @property
    def is_internal(self) -> bool:
        return self.kind in (LinkKind.RELATIVE_INTERNAL, LinkKind.ABSOLUTE_INTERNAL)


def split_link_parts(target: str) -> tuple[str, str, str]:
    """Split a link target into path, query (with ``?``) and anchor (with ``#``)."""
    hash_idx = target.find("#")
    query_idx = target.find("?")
    if hash_idx >= 0 and 0 <= hash_idx < query_idx:
        # '?' inside the fragment belongs to the fragment
        query_idx = -1

    path_end = len(target)
    if hash_idx >= 0:
        path_end = min(path_end, hash_idx)
    if query_idx >= 0:
        path_end = min(path_end, query_idx)

    path = target[:path_end]
    query = target[query_idx : hash_idx if hash_idx >= 0 else None] if query_idx >= 0 else ""
    anchor = target[hash_idx:] if hash_idx >= 0 else ""
    return path, query, anchor


def classify_target(target: str) -> LinkKind:
    """Classify a target by syntax alone (existence is checked elsewhere)."""
    stripped = target.strip()
    if SCHEME_RE.match(stripped) or stripped.startswith("//"):
        return LinkKind.EXTERNAL
    if stripped.startswith("#") or not split_link_parts(stripped)[0]:
        return LinkKind.ANCHOR_ONLY
    if stripped.startswith("/"):
        return LinkKind.ABSOLUTE_INTERNAL
    return LinkKind.RELATIVE_INTERNAL


def resolve_target(document_path: Path, path_part: str, doc_root: Path) -> Path:
    """Resolve the path part of an internal link to an absolute location."""
    decoded = unquote(path_part)
    if decoded.startswith("/"):
        return normalize_path(decoded.lstrip("/") or ".", doc_root)
    return normalize_path(decoded, document_path.parent)


def mask_code(content: str) -> str:
    """Blank out fenced code blocks and inline code spans.

    Every masked character becomes a space (newlines are kept), so offsets in
    the masked text are offsets in the original.
    """
    chars = list(content)
    fence: str | None = None
    offset = 0
    unfenced: list[tuple[int, int]] = []
    segment_start = 0

    for line in content.splitlines(keepends=True):
        stripped = line.rstrip("\r\n")
        if fence is None:
            match = FENCE_OPEN_RE.match(stripped)
            if match:
                fence = match.group(1)
                unfenced.append((segment_start, offset))
                _blank(chars, offset, offset + len(stripped))
        else:
            _blank(chars, offset, offset + len(stripped))
            candidate = stripped.strip()
            if (
                candidate
                and set(candidate) == {fence[0]}
                and len(candidate) >= len(fence)
                and len(stripped) - len(stripped.lstrip(" ")) <= 3
            ):
                fence = None
                segment_start = offset + len(line)
        offset += len(line)

    if fence is None:
        unfenced.append((segment_start, len(content)))

    masked = "".join(chars)
    for seg_start, seg_end in unfenced:
        for match in INLINE_CODE_RE.finditer(masked, seg_start, seg_end):
            _blank(chars, match.start(), match.end())
    return "".join(chars)


def _blank(chars: list[str], start: int, end: int) -> None:
    for i in range(start, end):
        if chars[i] not in "\r\n":
            chars[i] = " "


def scan_links(content: str) -> list[RawLink]:
    """Locate every link target outside code, ordered by position."""
    masked = mask_code(content)
    found: list[RawLink] = []
    taken: list[tuple[int, int]] = []

    def overlaps(start: int, end: int) -> bool:
        return any(start < t_end and t_start < end for t_start, t_end in taken)

    for match in INLINE_LINK_RE.finditer(masked):
        group = "angle" if match.group("angle") is not None else "bare"
        if not match.group(group):
            continue
        syntax = LinkSyntax.IMAGE if match.group("bang") else LinkSyntax.INLINE
        found.append(
            RawLink(
                syntax=syntax,
                target=content[match.start(group) : match.end(group)],
                start=match.start(group),
                end=match.end(group),
                bracketed=group == "angle",
            )
        )
        taken.append(match.span())

    for match in REF_DEF_RE.finditer(masked):
        if match.group("label").startswith("^") or overlaps(*match.span()):
            # footnote definitions are not links
            continue
        group = "angle" if match.group("angle") is not None else "bare"
        if not match.group(group):
            continue
        found.append(
            RawLink(
                syntax=LinkSyntax.REFERENCE,
                target=content[match.start(group) : match.end(group)],
                start=match.start(group),
                end=match.end(group),
                bracketed=group == "angle",
            )
        )
        taken.append(match.span())

    for match in AUTOLINK_RE.finditer(masked):
        if overlaps(*match.span()):
            continue
        found.append(
            RawLink(
                syntax=LinkSyntax.AUTOLINK,
                target=match.group("target"),
                start=match.start("target"),
                end=match.end("target"),
            )
        )

    return sorted(found, key=lambda link: link.start)


class LineIndex:
    """Maps character offsets to 1-based line numbers."""

    def __init__(self, content: str) -> None:
        self._starts = [0]
        for match in re.finditer(r"\n", content):
            self._starts.append(match.end())

    def line_of(self, offset: int) -> int:
        return bisect_right(self._starts, offset)
