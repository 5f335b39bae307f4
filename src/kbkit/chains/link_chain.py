"""Knowledge-base wide link maintenance.

Two passes over every markdown document under the managed root:

    check_links        report internal links whose target is missing
    update_link_style  rewrite internal links as relative or absolute,
                       committed through the migration engine
"""

from pathlib import Path
from typing import Any

import structlog

from kbkit.chains.migration_chain import TransactionalMigrationEngine, TransactionResult
from kbkit.core.errors import LinkResolutionError
from kbkit.core.options import EngineOptions
from kbkit.core.schemas import FileOperation, OperationBatch
from kbkit.fs.paths import is_within
from kbkit.fs.service import FileSystemService
from kbkit.markdown.links import LinkKind, LinkReference, LinkStyle
from kbkit.markdown.processor import MarkdownLinkProcessor, decode_markdown, encode_markdown

logger = structlog.get_logger(__name__)


def _documents(
    fs: FileSystemService, options: EngineOptions
) -> list[tuple[Path, str, list[LinkReference]]]:
    processor = MarkdownLinkProcessor(fs, options.root, options.doc_root)
    documents = []
    for path in fs.list_files_recursive(options.root):
        if not options.is_markdown(path):
            continue
        text = decode_markdown(fs.read_file(path))
        documents.append((path, text, processor.extract_links(path, text)))
    return documents


def check_links(fs: FileSystemService, options: EngineOptions) -> list[LinkResolutionError]:
    """Find internal links that do not resolve to a file under the root.

    External and anchor-only links are not checked.

    Returns:
        One error per broken link, in document then position order
    """
    broken: list[LinkResolutionError] = []
    documents = _documents(fs, options)

    for path, _, references in documents:
        for reference in references:
            if reference.kind is not LinkKind.UNRESOLVABLE:
                continue
            if reference.resolved_path is not None and not is_within(
                reference.resolved_path, options.root
            ):
                reason = "target is outside the managed root"
            else:
                reason = "target does not exist"
            broken.append(
                LinkResolutionError(
                    str(path), reference.raw_target, reason, line=reference.line_start
                )
            )

    logger.info(
        "links.checked",
        root=str(options.root),
        documents=len(documents),
        broken=len(broken),
    )
    return broken


def detect_link_style(fs: FileSystemService, options: EngineOptions) -> LinkStyle:
    """Return the style most internal links under the root already use.

    Ties, and trees without internal links, count as relative.
    """
    relative = absolute = 0
    for _, _, references in _documents(fs, options):
        for reference in references:
            if reference.kind in (LinkKind.EXTERNAL, LinkKind.ANCHOR_ONLY):
                continue
            if reference.raw_target.startswith("/"):
                absolute += 1
            else:
                relative += 1

    style = LinkStyle.RELATIVE if relative >= absolute else LinkStyle.ABSOLUTE
    logger.debug("links.style_detected", relative=relative, absolute=absolute, style=style.value)
    return style


def update_link_style(
    fs: FileSystemService,
    options: EngineOptions,
    style: LinkStyle,
    log: Any = None,
) -> TransactionResult:
    """Rewrite every resolvable internal link in ``style``.

    The rewritten documents are submitted as one batch of writes, so the
    conversion is all-or-nothing. Links that cannot take the requested form
    (an absolute link to a target outside the document root) are left as
    they are and reported in ``link_issues``. ``options.dry_run`` previews
    the conversion without touching the tree.

    Args:
        fs: Filesystem holding the knowledge base
        options: Managed root and document root
        style: Target style; AUTO keeps the tree's dominant style
        log: Optional structlog logger, passed on to the engine
    """
    if style is LinkStyle.AUTO:
        style = detect_link_style(fs, options)

    processor = MarkdownLinkProcessor(fs, options.root, options.doc_root)
    operations: list[FileOperation] = []
    issues: list[LinkResolutionError] = []
    converted = 0

    for path, text, references in _documents(fs, options):
        rewrites = []
        for reference in references:
            try:
                replacement = processor.restyle_link(reference, style)
            except LinkResolutionError as issue:
                issues.append(issue)
                continue
            if replacement is not None:
                rewrites.append((reference, replacement))
        if not rewrites:
            continue
        new_text, count = processor.apply_rewrites(text, rewrites)
        converted += count
        operations.append(FileOperation.write(path, encode_markdown(new_text)))

    logger.info(
        "links.restyle",
        root=str(options.root),
        style=style.value,
        documents=len(operations),
        links=converted,
        issues=len(issues),
    )
    engine = TransactionalMigrationEngine(fs, options, logger=log)
    result = engine.apply(OperationBatch.of(*operations))
    if result.committed:
        result.rewritten_links += converted
        result.rewritten_files.extend(Path(op.target_path) for op in operations)
    result.link_issues.extend(issues)
    return result
