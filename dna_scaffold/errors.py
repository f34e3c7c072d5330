"""Error taxonomy shared by the transaction log and the generation pipeline.

Every error raised on purpose by dna-scaffold derives from ``ScaffoldError``
and carries a stable ``code``, an optional human ``suggestion`` and a
``context`` mapping with the values that explain the failure.  The CLI
prints the message and suggestion; tests match on the type and ``code``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class ScaffoldError(Exception):
    """Base class for every dna-scaffold error."""

    default_code = "SCAFFOLD_ERROR"
    recoverable = True

    def __init__(
        self,
        message: str,
        code: str | None = None,
        suggestion: str | None = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.suggestion = suggestion
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly description of the error."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "recoverable": self.recoverable,
            "context": {k: _jsonable(v) for k, v in self.context.items()},
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ScaffoldError):
    """The generation request is invalid; nothing has been touched yet."""

    default_code = "VALIDATION_FAILED"


class MissingSystemToolError(ValidationError):
    def __init__(self, tool: str, reason: str = "") -> None:
        self.tool = tool
        super().__init__(
            f"Required tool '{tool}' not found" + (f": {reason}" if reason else ""),
            code="MISSING_SYSTEM_TOOL",
            suggestion=f"Install '{tool}' and make sure it is on your PATH",
            tool=tool,
        )


class UnsupportedToolVersionError(ValidationError):
    def __init__(self, tool: str, current: str, required: str) -> None:
        self.tool = tool
        self.current = current
        self.required = required
        super().__init__(
            f"{tool} {current} is not supported (requires {required} or newer)",
            code="UNSUPPORTED_TOOL_VERSION",
            suggestion=f"Upgrade {tool} to version {required} or newer",
            tool=tool,
            current=current,
            required=required,
        )


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TemplateError(ScaffoldError):
    default_code = "TEMPLATE_ERROR"


class TemplateNotFoundError(TemplateError):
    def __init__(self, template_id: str, available: list[str] | None = None) -> None:
        self.template_id = template_id
        self.available = list(available or [])
        listing = ", ".join(self.available) or "none"
        super().__init__(
            f"Template '{template_id}' not found",
            code="TEMPLATE_NOT_FOUND",
            suggestion=f"Available templates: {listing}",
            template_id=template_id,
            available=self.available,
        )


class TemplateRenderError(TemplateError):
    def __init__(self, template_id: str, reason: str) -> None:
        self.template_id = template_id
        super().__init__(
            f"Template '{template_id}' failed to render: {reason}",
            code="TEMPLATE_RENDER_FAILED",
            suggestion="Check the template files and the variables passed with --var",
            template_id=template_id,
        )


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


class FilesystemError(ScaffoldError):
    """A filesystem mutation failed (permissions, disk space, bad path)."""

    default_code = "FILESYSTEM_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        suggestion: str | None = None,
        *,
        path: str | Path | None = None,
        **context: Any,
    ) -> None:
        self.path = Path(path) if path is not None else None
        super().__init__(
            message,
            code=code,
            suggestion=suggestion or "Check the path and its permissions",
            path=self.path,
            **context,
        )


class DirectoryExistsError(FilesystemError):
    def __init__(self, path: str | Path) -> None:
        super().__init__(
            f"Directory already exists: {path}",
            code="DIRECTORY_EXISTS",
            suggestion="Choose another path or pass --overwrite (with --backup to keep a copy)",
            path=path,
        )


class InsufficientPermissionsError(FilesystemError):
    def __init__(self, path: str | Path, action: str) -> None:
        self.action = action
        super().__init__(
            f"Insufficient permissions to {action}: {path}",
            code="INSUFFICIENT_PERMISSIONS",
            suggestion=f"Make sure you are allowed to {action} in {path}",
            path=path,
            action=action,
        )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


class DependencyInstallError(ScaffoldError):
    """Dependency installation failed after every retry."""

    default_code = "DEPENDENCY_INSTALL_FAILED"

    def __init__(
        self,
        package_manager: str,
        exit_code: int,
        output: str = "",
        attempts: int = 1,
        code: str | None = None,
        message: str | None = None,
    ) -> None:
        self.package_manager = package_manager
        self.exit_code = exit_code
        self.output = output
        self.attempts = attempts
        super().__init__(
            message
            or (
                f"Dependency installation failed with {package_manager} "
                f"(exit code: {exit_code}, attempts: {attempts})"
            ),
            code=code,
            suggestion=(
                f"The project files were kept. Run '{package_manager} install' "
                "inside the project once the problem is fixed"
            ),
            package_manager=package_manager,
            exit_code=exit_code,
            output=output,
            attempts=attempts,
        )


class PackageManagerNotFoundError(DependencyInstallError):
    def __init__(self, package_manager: str, reason: str = "") -> None:
        super().__init__(
            package_manager,
            exit_code=-1,
            output=reason,
            attempts=0,
            code="PACKAGE_MANAGER_NOT_FOUND",
            message=f"Package manager '{package_manager}' not found",
        )


# ---------------------------------------------------------------------------
# Transactions / rollback
# ---------------------------------------------------------------------------


class RollbackError(ScaffoldError):
    default_code = "ROLLBACK_ERROR"


class TransactionNotFoundError(RollbackError):
    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(
            f"Transaction not found or no longer active: {transaction_id}",
            code="TRANSACTION_NOT_FOUND",
            suggestion="Ensure the transaction was started and not already committed or rolled back",
            transaction_id=transaction_id,
        )


class SnapshotNotFoundError(RollbackError):
    def __init__(self, snapshot_id: str) -> None:
        self.snapshot_id = snapshot_id
        super().__init__(
            f"Snapshot not found: {snapshot_id}",
            code="SNAPSHOT_NOT_FOUND",
            snapshot_id=snapshot_id,
        )


class RollbackFailedError(RollbackError):
    """Some operations could not be undone.

    ``undone`` and ``failed`` hold operation ids; ``unrestored_paths`` lists
    the filesystem paths the user has to inspect by hand.  ``cause`` is the
    error that triggered the rollback, when there was one.
    """

    recoverable = False

    def __init__(
        self,
        transaction_id: str,
        undone: list[str] | None = None,
        failed: list[str] | None = None,
        unrestored_paths: list[str | Path] | None = None,
        cause: BaseException | None = None,
        emergency_cleanup: bool | None = None,
    ) -> None:
        self.transaction_id = transaction_id
        self.undone = list(undone or [])
        self.failed = list(failed or [])
        self.unrestored_paths = [Path(p) for p in unrestored_paths or []]
        self.cause = cause
        self.emergency_cleanup = emergency_cleanup

        message = (
            f"Rollback of {transaction_id} incomplete: "
            f"{len(self.failed)} operation(s) could not be undone, "
            f"{len(self.undone)} undone"
        )
        if cause is not None:
            message += f" (triggered by {type(cause).__name__}: {cause})"
        paths = "\n".join(f"  - {p}" for p in self.unrestored_paths)
        suggestion = "Manual cleanup may be required"
        if paths:
            suggestion += f" for:\n{paths}"
        super().__init__(
            message,
            code="ROLLBACK_FAILED",
            suggestion=suggestion,
            transaction_id=transaction_id,
            undone=self.undone,
            failed=self.failed,
            unrestored_paths=self.unrestored_paths,
            emergency_cleanup=emergency_cleanup,
        )


class EmergencyCleanupError(RollbackError):
    recoverable = False

    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = Path(path)
        super().__init__(
            f"Emergency cleanup of {path} failed: {reason}",
            code="EMERGENCY_CLEANUP_FAILED",
            suggestion=f"Remove {path} manually",
            path=self.path,
        )


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class ConcurrentGenerationError(ScaffoldError):
    def __init__(self, path: str | Path, lock_path: str | Path) -> None:
        super().__init__(
            f"Another generation is already running for {path}",
            code="GENERATION_IN_PROGRESS",
            suggestion=f"Wait for it to finish, or delete the stale lock file {lock_path}",
            path=Path(path),
            lock_path=Path(lock_path),
        )


class PipelineError(ScaffoldError):
    """Raised when the pipeline is driven incorrectly (e.g. stages out of order)."""

    default_code = "PIPELINE_ERROR"

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        super().__init__(f"Stage '{stage}': {message}", stage=stage)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
