"""Engine configuration.

Configuration is passed explicitly into every engine instance. The
``resolve_engine_options`` helper lets an outer layer fill gaps from the
environment, but the engine itself never reads process-wide state.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from kbkit.core.constants import MARKDOWN_SUFFIXES
from kbkit.fs.paths import is_within, normalize_path

__all__ = ["EngineOptions", "resolve_engine_options"]

_TRUTHY = ("1", "true", "yes")


@dataclass(frozen=True)
class EngineOptions:
    """Options for one migration engine.

    Attributes:
        root: Managed root; every operation must stay inside it
        doc_root: Directory that absolute links (``/guide.md``) resolve
            against. Defaults to ``root``.
        dry_run: Skip every write in the atomic writer
        markdown_suffixes: File suffixes whose links are scanned and rewritten
    """

    root: Path
    doc_root: Path | None = None
    dry_run: bool = False
    markdown_suffixes: tuple[str, ...] = field(default=MARKDOWN_SUFFIXES)

    def __post_init__(self) -> None:
        root = normalize_path(self.root)
        doc_root = root if self.doc_root is None else normalize_path(self.doc_root, root)
        if not is_within(doc_root, root):
            raise ValueError(f"doc_root {doc_root} must be inside the managed root {root}")
        object.__setattr__(self, "root", root)
        object.__setattr__(self, "doc_root", doc_root)
        object.__setattr__(
            self, "markdown_suffixes", tuple(s.lower() for s in self.markdown_suffixes)
        )

    def is_markdown(self, path: Path) -> bool:
        return path.suffix.lower() in self.markdown_suffixes


def resolve_engine_options(
    root: str | Path,
    *,
    doc_root: str | Path | None = None,
    dry_run: bool | None = None,
) -> EngineOptions:
    """Build EngineOptions, falling back to environment defaults.

    Args:
        root: Managed root directory
        doc_root: Explicit document root; else ``KBKIT_DOC_ROOT``, else ``root``.
            Relative values are taken relative to ``root``.
        dry_run: Explicit flag; else ``KBKIT_DRY_RUN`` (``1``/``true``/``yes``)

    Returns:
        Fully resolved options
    """
    chosen_doc_root: str | Path | None = doc_root
    env_doc_root = os.getenv("KBKIT_DOC_ROOT")
    if chosen_doc_root is None and env_doc_root:
        chosen_doc_root = env_doc_root

    if dry_run is None:
        dry_run = os.getenv("KBKIT_DRY_RUN", "").lower() in _TRUTHY

    resolved_root = normalize_path(Path(root).expanduser())
    resolved_doc_root = (
        None
        if chosen_doc_root is None
        else normalize_path(Path(chosen_doc_root).expanduser(), resolved_root)
    )
    return EngineOptions(root=resolved_root, doc_root=resolved_doc_root, dry_run=dry_run)
