"""Pydantic models for the transaction log.

An ``Operation`` is one recorded filesystem mutation; a ``Transaction`` is
the ordered list of operations protecting one directory; a ``Snapshot`` is a
frozen copy of that list at a point in time.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


def new_id(prefix: str) -> str:
    """Return a unique identifier such as ``tx_5f1c9a0e2b7d``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OperationKind(str, Enum):
    CREATE_FILE = "create_file"
    CREATE_DIRECTORY = "create_directory"
    MODIFY_FILE = "modify_file"
    DELETE_FILE = "delete_file"
    DELETE_DIRECTORY = "delete_directory"
    MOVE_FILE = "move_file"
    COPY_FILE = "copy_file"


class TransactionStatus(str, Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Operation(BaseModel):
    """A single recorded mutation.

    ``completed`` only becomes ``True`` after the mutation itself returned
    without error; ``rolled_back`` is set once a rollback undid it.
    """

    id: str = Field(default_factory=lambda: new_id("op"))
    kind: OperationKind
    target: Path
    backup_path: Path | None = None
    payload: str | None = Field(
        default=None, description="Original source path for move/copy operations"
    )
    timestamp: datetime = Field(default_factory=_utcnow)
    completed: bool = False
    rolled_back: bool = False

    @property
    def replayable(self) -> bool:
        """Whether a rollback should undo this operation."""
        return self.completed and not self.rolled_back


class Transaction(BaseModel):
    id: str = Field(default_factory=lambda: new_id("tx"))
    description: str = ""
    root_path: Path
    backup_dir: Path
    status: TransactionStatus = TransactionStatus.ACTIVE
    operations: list[Operation] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is TransactionStatus.ACTIVE

    @property
    def journal_path(self) -> Path:
        return self.backup_dir / "journal.jsonl"

    @property
    def lock_path(self) -> Path:
        return self.backup_dir / "owner.lock"

    def completed_operations(self) -> list[Operation]:
        return [op for op in self.operations if op.completed]

    def find_operation(self, operation_id: str) -> Operation | None:
        for op in self.operations:
            if op.id == operation_id:
                return op
        return None


class Snapshot(BaseModel):
    """Immutable copy of a transaction's operation list."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("snap"))
    transaction_id: str
    description: str = ""
    operations: tuple[Operation, ...] = ()
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def operation_ids(self) -> frozenset[str]:
        return frozenset(op.id for op in self.operations)


class TransactionStatusInfo(BaseModel):
    exists: bool
    status: TransactionStatus | None = None
    operation_count: int = 0
    completed_count: int = 0


class RollbackReport(BaseModel):
    """Outcome of a rollback: which operation ids were undone, failed or skipped."""

    transaction_id: str
    snapshot_id: str | None = None
    undone: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
    unrestored_paths: list[Path] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed
