"""Custom exceptions for kbkit.

This module defines the typed exceptions raised by the migration engine and
its collaborators. Plain filesystem failures propagate as ``OSError``; they
are wrapped into :class:`PartialFailureError` once a transaction has started.
"""

from typing import Any


class KbKitError(Exception):
    """Base exception for all kbkit errors.

    All custom exceptions inherit from this base class to allow for broad
    exception handling when needed.
    """

    pass


class ValidationError(KbKitError):
    """Raised when an operation batch is malformed.

    Validation happens before any filesystem access, so no backup scope is
    opened and nothing needs to be rolled back.

    Attributes:
        path: Offending path, if the problem is tied to one
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        if path is not None:
            message = f"{message}: {path}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for structured output."""
        result: dict[str, Any] = {"error": "validation_error", "message": str(self)}
        if self.path is not None:
            result["path"] = self.path
        return result

    def __repr__(self) -> str:
        return f"ValidationError({str(self)!r})"


class LinkResolutionError(KbKitError):
    """Raised when a link's new location cannot be computed.

    The typical cause is a link whose target was deleted by the same batch
    without being re-pointed. The engine records these instead of aborting:
    the specific rewrite is skipped, unrelated changes still commit.

    Attributes:
        document: Markdown file containing the link
        raw_target: Link target exactly as written
        reason: Human-readable explanation
        line: 1-based line of the link, if known
    """

    def __init__(
        self,
        document: str,
        raw_target: str,
        reason: str,
        line: int | None = None,
    ) -> None:
        self.document = document
        self.raw_target = raw_target
        self.reason = reason
        self.line = line

        location = document if line is None else f"{document}:{line}"
        super().__init__(f"Cannot resolve link '{raw_target}' in {location}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for structured output."""
        result: dict[str, Any] = {
            "error": "link_resolution_error",
            "document": self.document,
            "raw_target": self.raw_target,
            "reason": self.reason,
        }
        if self.line is not None:
            result["line"] = self.line
        return result

    def __repr__(self) -> str:
        return (
            f"LinkResolutionError(document={self.document!r}, "
            f"raw_target={self.raw_target!r}, reason={self.reason!r})"
        )


class PartialFailureError(KbKitError):
    """Raised when a batch fails midway and the tree was rolled back.

    Wraps the failure that triggered the rollback together with every error
    encountered while restoring snapshots. A non-empty ``restore_errors``
    list means the tree may be inconsistent and needs manual attention.

    Attributes:
        cause: The exception that aborted the batch
        restore_errors: Errors raised while restoring snapshots
        operation_index: Index of the failing operation, if any
    """

    def __init__(
        self,
        cause: BaseException,
        restore_errors: list[BaseException] | None = None,
        operation_index: int | None = None,
    ) -> None:
        self.cause = cause
        self.restore_errors = list(restore_errors or [])
        self.operation_index = operation_index

        message = f"Batch failed and was rolled back: {cause}"
        if operation_index is not None:
            message = f"Batch failed at operation {operation_index} and was rolled back: {cause}"
        if self.restore_errors:
            message += (
                f" ({len(self.restore_errors)} restore error(s); "
                "tree may be inconsistent: "
                + "; ".join(str(e) for e in self.restore_errors)
                + ")"
            )
        super().__init__(message)

    @property
    def rollback_failed(self) -> bool:
        """True when at least one snapshot could not be restored."""
        return bool(self.restore_errors)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for structured output."""
        result: dict[str, Any] = {
            "error": "partial_failure",
            "cause": str(self.cause),
            "cause_type": type(self.cause).__name__,
            "rollback_failed": self.rollback_failed,
            "restore_errors": [str(e) for e in self.restore_errors],
        }
        if self.operation_index is not None:
            result["operation_index"] = self.operation_index
        return result

    def __repr__(self) -> str:
        return (
            f"PartialFailureError(cause={self.cause!r}, "
            f"restore_errors={len(self.restore_errors)}, "
            f"operation_index={self.operation_index})"
        )


class ManifestValidationError(KbKitError):
    """Raised when a manifest document cannot be parsed or is inconsistent.

    Bundle verification converts this into report data; it only escapes
    from direct calls to ``IntegrityVerifier.load_manifest``.
    """

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for structured output."""
        return {"error": "manifest_validation_error", "message": str(self)}
