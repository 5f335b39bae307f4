"""Transactional migration engine.

This module provides the TransactionalMigrationEngine, which applies an
ordered OperationBatch to a managed root as a single all-or-nothing unit:

    validate -> back up -> apply -> rewrite links -> commit
                                 \\-> roll back (on any failure)

Moved markdown files and every document that referenced a moved file get
their relative links recomputed, so the tree never contains a link that was
valid before the batch and broken after it.
"""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from kbkit.core.errors import LinkResolutionError, PartialFailureError, ValidationError
from kbkit.core.options import EngineOptions
from kbkit.core.schemas import FileOperation, OperationBatch, OperationKind
from kbkit.fs.atomic import AtomicWriter
from kbkit.fs.backup import BackupScope, BackupService
from kbkit.fs.memory import clone_tree
from kbkit.fs.paths import is_within, normalize_path
from kbkit.fs.service import FileSystemService
from kbkit.markdown.processor import MarkdownLinkProcessor, decode_markdown, encode_markdown


class EngineState(str, Enum):
    """Lifecycle of one transaction.

    IDLE -> BACKING_UP -> APPLYING -> LINK_REWRITING -> COMMITTED, or
    any in-flight state -> ROLLING_BACK -> FAILED.
    """

    IDLE = "idle"
    BACKING_UP = "backing_up"
    APPLYING = "applying"
    LINK_REWRITING = "link_rewriting"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"


@dataclass
class TransactionResult:
    """Outcome of one ``apply`` call.

    Attributes:
        committed: True when every operation and link rewrite took effect
        transaction_id: Identifier bound into every log event
        state: Terminal engine state (COMMITTED or FAILED)
        applied_operations: Operations whose every step completed, in order,
            before commit or failure
        rewritten_links: Number of link targets replaced
        rewritten_files: Documents whose links changed, at their new paths
        link_issues: Links that could not be re-pointed; they did not block
            the commit
        error: Present if and only if the transaction was rolled back
    """

    committed: bool
    transaction_id: str
    state: EngineState
    applied_operations: list[FileOperation] = field(default_factory=list)
    rewritten_links: int = 0
    rewritten_files: list[Path] = field(default_factory=list)
    link_issues: list[LinkResolutionError] = field(default_factory=list)
    error: PartialFailureError | None = None


@dataclass(frozen=True)
class _Step:
    """One concrete file-level action derived from a FileOperation.

    ``source`` and ``target`` are the same path for writes and deletes.
    """

    index: int
    kind: OperationKind
    source: Path
    target: Path
    content: bytes = b""


@dataclass
class _Plan:
    steps: list[_Step]
    directory_moves: list[tuple[Path, Path]]
    files_before: set[Path]

    def touched_paths(self) -> list[Path]:
        seen: dict[Path, None] = {}
        for step in self.steps:
            seen.setdefault(step.source, None)
            seen.setdefault(step.target, None)
        return list(seen)


class TransactionalMigrationEngine:
    """Applies operation batches atomically and keeps markdown links valid."""

    def __init__(
        self,
        fs: FileSystemService,
        options: EngineOptions,
        logger: Any = None,
    ) -> None:
        """Initialize the engine.

        Args:
            fs: Filesystem every read and mutation goes through
            options: Managed root, document root and dry-run flag
            logger: Optional structlog logger instance
        """
        self.fs = fs
        self.options = options
        self.state = EngineState.IDLE
        self._logger = logger or structlog.get_logger()
        self._backup = BackupService(fs)
        self._writer = AtomicWriter(fs)
        self._links = MarkdownLinkProcessor(fs, options.root, options.doc_root)

    @property
    def root(self) -> Path:
        return self.options.root

    def apply(self, batch: OperationBatch) -> TransactionResult:
        """Apply ``batch`` as a single transaction.

        Args:
            batch: Ordered operations to apply

        Returns:
            TransactionResult; ``error`` is set when the batch was rolled back

        Raises:
            ValidationError: If the batch is malformed. Raised before any
                filesystem mutation; no backup scope is opened.
        """
        transaction_id = uuid.uuid4().hex[:12]
        log = self._logger.bind(
            transaction_id=transaction_id,
            root=str(self.root),
            operations=len(batch),
        )

        if self.options.dry_run:
            log.info("migration.dry_run")
            return self.preview(batch)

        self.state = EngineState.IDLE
        plan = self._plan(batch)
        log.info("migration.begin", steps=len(plan.steps))

        self.state = EngineState.BACKING_UP
        scope = self._backup.begin_scope()
        applied: list[FileOperation] = []
        failing_index: int | None = None
        # Position of the last expanded step of each operation
        last_step = {step.index: position for position, step in enumerate(plan.steps)}

        try:
            for path in plan.touched_paths():
                self._backup.capture(scope, path)

            self.state = EngineState.APPLYING
            for position, step in enumerate(plan.steps):
                failing_index = step.index
                self._execute(step)
                log.debug(
                    "migration.step",
                    index=step.index,
                    kind=step.kind.value,
                    source=str(step.source),
                    target=str(step.target),
                )
                if last_step[step.index] == position:
                    applied.append(batch.operations[step.index])
            failing_index = None

            self.state = EngineState.LINK_REWRITING
            rewritten_links, rewritten_files, issues = self._rewrite_links(plan, scope, log)
        except Exception as e:
            return self._roll_back(scope, e, failing_index, applied, transaction_id, log)
        except BaseException:
            # Interrupts still restore the tree before propagating
            self.state = EngineState.ROLLING_BACK
            log.warning("migration.interrupted", operation_index=failing_index)
            self._backup.restore_all(scope)
            self.state = EngineState.FAILED
            raise

        self._backup.discard(scope)
        self.state = EngineState.COMMITTED
        log.info(
            "migration.commit",
            applied_operations=len(applied),
            rewritten_links=rewritten_links,
            rewritten_files=len(rewritten_files),
            link_issues=len(issues),
        )
        return TransactionResult(
            committed=True,
            transaction_id=transaction_id,
            state=self.state,
            applied_operations=applied,
            rewritten_links=rewritten_links,
            rewritten_files=rewritten_files,
            link_issues=issues,
        )

    def preview(self, batch: OperationBatch) -> TransactionResult:
        """Run ``batch`` against an in-memory copy of the managed root.

        The real tree is only read. Validation errors are raised exactly as
        ``apply`` would raise them.
        """
        self._require_root()
        clone = clone_tree(self.fs, self.root)
        engine = TransactionalMigrationEngine(
            clone,
            replace(self.options, dry_run=False),
            logger=self._logger,
        )
        return engine.apply(batch)

    def _roll_back(
        self,
        scope: BackupScope,
        cause: BaseException,
        operation_index: int | None,
        applied: list[FileOperation],
        transaction_id: str,
        log: Any,
    ) -> TransactionResult:
        self.state = EngineState.ROLLING_BACK
        log.warning(
            "migration.rollback",
            error=str(cause),
            error_type=type(cause).__name__,
            operation_index=operation_index,
            snapshots=len(scope),
        )
        restore_errors = self._backup.restore_all(scope)
        error = PartialFailureError(cause, restore_errors, operation_index)
        self.state = EngineState.FAILED

        if error.rollback_failed:
            log.error("migration.rollback_incomplete", **error.to_dict())
        else:
            log.info("migration.rolled_back", operation_index=operation_index)

        return TransactionResult(
            committed=False,
            transaction_id=transaction_id,
            state=self.state,
            applied_operations=applied,
            error=error,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _require_root(self) -> None:
        if not self.fs.is_dir(self.root):
            raise ValidationError("Managed root is not a directory", str(self.root))

    def _resolve(self, path: Path) -> Path:
        resolved = normalize_path(path, self.root)
        if resolved == self.root or not is_within(resolved, self.root):
            raise ValidationError("Path escapes the managed root", str(path))
        return resolved

    def _plan(self, batch: OperationBatch) -> _Plan:
        """Validate the batch against a simulated tree and expand it into steps."""
        self._require_root()
        files_before = set(self.fs.list_files_recursive(self.root))
        present = set(files_before)
        produced: set[Path] = set()
        steps: list[_Step] = []
        directory_moves: list[tuple[Path, Path]] = []

        def under(directory: Path) -> list[Path]:
            return sorted(p for p in present if directory in p.parents)

        def claim(target: Path, *, overwrite: bool) -> None:
            if target in produced:
                raise ValidationError("Two operations produce the same path", str(target))
            if not overwrite and target in present:
                raise ValidationError("Target already exists", str(target))
            if under(target):
                raise ValidationError("Target is an existing directory", str(target))
            if any(parent in present for parent in target.parents):
                raise ValidationError("Parent of target is a file", str(target))

        for index, op in enumerate(batch.operations):
            if op.kind is OperationKind.WRITE:
                # Writes replace existing files; moves never do
                target = self._resolve(op.target_path)
                claim(target, overwrite=True)
                steps.append(_Step(index, op.kind, target, target, op.content or b""))
                present.add(target)
                produced.add(target)
                continue

            source = self._resolve(op.source_path)
            if source in present:
                sources = [source]
            else:
                sources = under(source)
                if not sources:
                    raise ValidationError("Source does not exist", str(op.source_path))

            if op.kind is OperationKind.DELETE:
                for path in sources:
                    steps.append(_Step(index, op.kind, path, path))
                    present.discard(path)
                    produced.discard(path)
                continue

            target = self._resolve(op.target_path)
            if target == source:
                raise ValidationError("Source and target are the same", str(target))
            if source in present:
                pairs = [(source, target)]
            else:
                if is_within(target, source):
                    raise ValidationError(
                        "Cannot move a directory into its own subtree", str(target)
                    )
                pairs = [(path, target / path.relative_to(source)) for path in sources]
                directory_moves.append((source, target))

            for old, _ in pairs:
                present.discard(old)
                produced.discard(old)
            for old, new in pairs:
                claim(new, overwrite=False)
                steps.append(_Step(index, op.kind, old, new))
                present.add(new)
                produced.add(new)

        return _Plan(steps=steps, directory_moves=directory_moves, files_before=files_before)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(self, step: _Step) -> None:
        if step.kind is OperationKind.WRITE:
            self._writer.write_file_atomic(step.target, step.content)
        elif step.kind is OperationKind.MOVE:
            self.fs.mkdir(step.target.parent, recursive=True)
            self.fs.rename(step.source, step.target)
        else:
            self.fs.unlink(step.source)

    # ------------------------------------------------------------------
    # Link rewriting
    # ------------------------------------------------------------------

    def _rewrite_links(
        self,
        plan: _Plan,
        scope: BackupScope,
        log: Any,
    ) -> tuple[int, list[Path], list[LinkResolutionError]]:
        """Re-point links affected by the applied steps.

        Every markdown file is read at its current location but its links are
        resolved from where it lived before the transaction, against the
        pre-transaction tree. Files whose content the batch wrote are taken
        as authored for their final location and left alone.

        Returns:
            Tuple of (links rewritten, files rewritten, unresolvable links)
        """
        authored_at: dict[Path, Path] = {}
        fresh: set[Path] = set()
        for step in plan.steps:
            if step.kind is OperationKind.WRITE:
                authored_at.pop(step.target, None)
                fresh.add(step.target)
            elif step.kind is OperationKind.MOVE:
                authored_at[step.target] = authored_at.pop(step.source, step.source)
                if step.source in fresh:
                    fresh.discard(step.source)
                    fresh.add(step.target)
            else:
                authored_at.pop(step.source, None)
                fresh.discard(step.source)

        moved = {
            old: new for new, old in authored_at.items() if old != new and old in plan.files_before
        }
        files_after = self.fs.list_files_recursive(self.root)
        deleted = plan.files_before - set(moved) - set(files_after)
        if not moved and not deleted:
            return 0, [], []

        dirs_before = {
            parent
            for path in plan.files_before
            for parent in path.parents
            if is_within(parent, self.root)
        }

        def existed_before(path: Path) -> bool:
            return path in plan.files_before or path in dirs_before

        def new_location(old: Path) -> Path:
            if old in moved:
                return moved[old]
            location = old
            for old_dir, new_dir in plan.directory_moves:
                if is_within(location, old_dir):
                    location = new_dir / location.relative_to(old_dir)
            return location

        rewritten_links = 0
        rewritten_files: list[Path] = []
        issues: list[LinkResolutionError] = []

        for current in files_after:
            if current in fresh or not self.options.is_markdown(current):
                continue
            authored = authored_at.get(current, current)
            text = decode_markdown(self.fs.read_file(current))
            rewrites = []

            for reference in self._links.extract_links(authored, text, exists=existed_before):
                if not reference.is_internal or reference.resolved_path is None:
                    continue
                old_target = reference.resolved_path
                if old_target in deleted:
                    issue = LinkResolutionError(
                        str(current),
                        reference.raw_target,
                        "target was deleted by this batch",
                        line=reference.line_start,
                    )
                    issues.append(issue)
                    log.warning("migration.dangling_link", **issue.to_dict())
                    continue

                new_target = new_location(old_target)
                if new_target == old_target and current == authored:
                    continue
                try:
                    replacement = self._links.rewrite_link(
                        reference, old_target, new_target, current
                    )
                except LinkResolutionError as issue:
                    issues.append(issue)
                    log.warning("migration.unresolvable_link", **issue.to_dict())
                    continue
                if replacement is not None:
                    rewrites.append((reference, replacement))

            if not rewrites:
                continue
            new_text, count = self._links.apply_rewrites(text, rewrites)
            if count:
                self._backup.capture(scope, current)
                self._writer.write_file_atomic(current, encode_markdown(new_text))
                rewritten_links += count
                rewritten_files.append(current)
                log.debug("migration.links_rewritten", document=str(current), links=count)

        return rewritten_links, rewritten_files, issues
