"""Inverse actions for recorded operations.

``undo_operation`` runs synchronously (inside a worker thread) and either
returns ``None`` when the operation was reversed, returns a warning string
when it deliberately left something in place, or raises ``OSError`` when
the reversal failed.

Backups are restored by copy and left in place; the transaction log purges
them together with the transaction's storage.  Undoing a file operation a
second time therefore restores the same content again instead of finding
the backup gone.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable
from pathlib import Path

from .fsops import path_exists, remove_path, restore_path
from .models import Operation, OperationKind


def undo_operation(op: Operation) -> str | None:
    """Reverse *op* on disk.  See the module docstring for the contract."""
    handler = _HANDLERS.get(op.kind)
    if handler is None:
        raise ValueError(f"Unknown operation kind: {op.kind}")
    return handler(op)


def _has_backup(op: Operation) -> bool:
    return op.backup_path is not None and path_exists(op.backup_path)


def _undo_create_file(op: Operation) -> str | None:
    if path_exists(op.target):
        remove_path(op.target)
    return None


def _undo_create_directory(op: Operation) -> str | None:
    target = op.target
    if not target.exists():
        return None
    if not target.is_dir():
        return f"Cannot roll back directory {target}: path is no longer a directory"
    if any(target.iterdir()):
        return f"Cannot roll back directory {target}: not empty"
    target.rmdir()
    return None


def _undo_modify_file(op: Operation) -> str | None:
    if _has_backup(op):
        restore_path(op.backup_path, op.target)
    elif path_exists(op.target):
        remove_path(op.target)
    return None


def _undo_copy_file(op: Operation) -> str | None:
    if path_exists(op.target):
        remove_path(op.target)
    if _has_backup(op):
        restore_path(op.backup_path, op.target)
    return None


def _undo_move_file(op: Operation) -> str | None:
    if op.payload is None:
        raise ValueError(f"Move operation {op.id} has no source path recorded")
    source = Path(op.payload)

    if _has_backup(op):
        restore_path(op.backup_path, source)
        if path_exists(op.target):
            remove_path(op.target)
        return None

    # Backup vanished: put the moved object back if nothing took its place.
    if path_exists(op.target) and not path_exists(source):
        shutil.move(str(op.target), str(source))
        return None
    raise FileNotFoundError(f"No backup left to restore {source}")


def _undo_delete(op: Operation) -> str | None:
    if _has_backup(op):
        restore_path(op.backup_path, op.target)
        return None
    return f"Deletion of {op.target} is irreversible (no backup was taken)"


_HANDLERS: dict[OperationKind, Callable[[Operation], str | None]] = {
    OperationKind.CREATE_FILE: _undo_create_file,
    OperationKind.CREATE_DIRECTORY: _undo_create_directory,
    OperationKind.MODIFY_FILE: _undo_modify_file,
    OperationKind.COPY_FILE: _undo_copy_file,
    OperationKind.MOVE_FILE: _undo_move_file,
    OperationKind.DELETE_FILE: _undo_delete,
    OperationKind.DELETE_DIRECTORY: _undo_delete,
}
