"""Unit tests for the error taxonomy (dna_scaffold.errors)."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from dna_scaffold.errors import (
    ConcurrentGenerationError,
    DependencyInstallError,
    DirectoryExistsError,
    EmergencyCleanupError,
    FilesystemError,
    InsufficientPermissionsError,
    MissingSystemToolError,
    PackageManagerNotFoundError,
    PipelineError,
    RollbackError,
    RollbackFailedError,
    ScaffoldError,
    SnapshotNotFoundError,
    TemplateError,
    TemplateNotFoundError,
    TemplateRenderError,
    TransactionNotFoundError,
    UnsupportedToolVersionError,
    ValidationError,
)

pytestmark = pytest.mark.unit


class TestHierarchy:
    @pytest.mark.parametrize(
        "error, parent, code",
        [
            (MissingSystemToolError("node"), ValidationError, "MISSING_SYSTEM_TOOL"),
            (UnsupportedToolVersionError("node", "16.0.0", ">=18"), ValidationError, "UNSUPPORTED_TOOL_VERSION"),
            (TemplateNotFoundError("x"), TemplateError, "TEMPLATE_NOT_FOUND"),
            (TemplateRenderError("x", "boom"), TemplateError, "TEMPLATE_RENDER_FAILED"),
            (DirectoryExistsError("/tmp/x"), FilesystemError, "DIRECTORY_EXISTS"),
            (InsufficientPermissionsError("/tmp/x", "write"), FilesystemError, "INSUFFICIENT_PERMISSIONS"),
            (PackageManagerNotFoundError("yarn"), DependencyInstallError, "PACKAGE_MANAGER_NOT_FOUND"),
            (TransactionNotFoundError("tx_1"), RollbackError, "TRANSACTION_NOT_FOUND"),
            (SnapshotNotFoundError("snap_1"), RollbackError, "SNAPSHOT_NOT_FOUND"),
            (RollbackFailedError("tx_1"), RollbackError, "ROLLBACK_FAILED"),
            (EmergencyCleanupError("/tmp/x", "busy"), RollbackError, "EMERGENCY_CLEANUP_FAILED"),
            (ConcurrentGenerationError("/tmp/x", "/tmp/l"), ScaffoldError, "GENERATION_IN_PROGRESS"),
            (PipelineError("install", "out of order"), ScaffoldError, "PIPELINE_ERROR"),
        ],
    )
    def test_codes_and_parents(self, error: ScaffoldError, parent: type, code: str):
        assert isinstance(error, parent)
        assert isinstance(error, ScaffoldError)
        assert error.code == code

    def test_default_code(self):
        assert ScaffoldError("x").code == "SCAFFOLD_ERROR"
        assert ValidationError("x").code == "VALIDATION_FAILED"
        assert ValidationError("x", code="CUSTOM").code == "CUSTOM"


class TestToDict:
    def test_json_serialisable(self):
        err = FilesystemError("write failed", code="WRITE_FAILED", path=Path("/tmp/a"), attempt=2)
        data = err.to_dict()
        assert data["name"] == "FilesystemError"
        assert data["code"] == "WRITE_FAILED"
        assert data["recoverable"] is True
        assert data["context"] == {"path": "/tmp/a", "attempt": 2}
        json.dumps(data)

    def test_rollback_failed_not_recoverable(self):
        assert RollbackFailedError("tx_1").to_dict()["recoverable"] is False


class TestRollbackFailedError:
    def test_message_and_suggestion(self):
        cause = OSError("disk full")
        err = RollbackFailedError(
            "tx_1",
            undone=["op_1"],
            failed=["op_2"],
            unrestored_paths=["/tmp/a"],
            cause=cause,
            emergency_cleanup=True,
        )
        assert "1 operation(s) could not be undone" in err.message
        assert "OSError: disk full" in err.message
        assert "/tmp/a" in err.suggestion
        assert err.unrestored_paths == [Path("/tmp/a")]
        assert err.cause is cause
        assert err.emergency_cleanup is True


class TestDependencyInstallError:
    def test_attributes(self):
        err = DependencyInstallError("npm", 1, "ERR!", attempts=3)
        assert err.exit_code == 1
        assert err.attempts == 3
        assert err.output == "ERR!"
        assert "npm install" in err.suggestion

    def test_package_manager_not_found(self):
        err = PackageManagerNotFoundError("bun", "not on PATH")
        assert err.message == "Package manager 'bun' not found"
        assert err.attempts == 0
        assert err.output == "not on PATH"
