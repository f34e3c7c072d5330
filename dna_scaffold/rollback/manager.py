"""Transactional tracking of filesystem mutations.

``TransactionLog`` is the only component allowed to mutate paths inside a
generated project.  Every mutation is appended to its transaction as an
``Operation`` *before* it is attempted and flagged ``completed`` only once it
returned, so a rollback replays exactly the mutations that happened, in
reverse order.

Several transactions can be active at once (one per concurrent pipeline);
each has its own ``asyncio.Lock`` so appends, commit and rollback on one
transaction are serialised without blocking the others.

With a durable journal each transaction also holds an OS-level lock on
``<backup_dir>/owner.lock`` until it finishes.  ``recover`` only touches
journals whose lock it can take, i.e. whose owning process is gone.
"""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import socket
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dna_scaffold.config import DEFAULT_BACKUP_DIRNAME, Settings
from dna_scaffold.errors import (
    EmergencyCleanupError,
    FilesystemError,
    RollbackFailedError,
    SnapshotNotFoundError,
    TransactionNotFoundError,
)
from dna_scaffold.utils import print_debug, print_warning

from .fsops import (
    OwnerLock,
    copy_path,
    missing_parents,
    path_exists,
    remove_path,
    write_atomic,
)
from .models import (
    Operation,
    OperationKind,
    RollbackReport,
    Snapshot,
    Transaction,
    TransactionStatus,
    TransactionStatusInfo,
    new_id,
)
from .undo import undo_operation


class TransactionLog:
    """Records filesystem operations per transaction and reverses them on demand.

    Args:
        backup_root: Directory holding one private backup directory per
            transaction.  Defaults to ``./.dna-temp``.
        durable: When ``True``, every event is appended to the
            transaction's ``journal.jsonl`` and fsync'd before the mutation
            runs, so :meth:`recover` can undo transactions left behind by a
            crashed process.
        verbose: Print a debug line for every recorded operation.
    """

    # Committed/rolled-back transactions kept for status lookups.
    max_finished = 256

    def __init__(
        self,
        backup_root: str | Path | None = None,
        *,
        durable: bool = False,
        verbose: bool = False,
    ) -> None:
        self.backup_root = Path(backup_root) if backup_root else Path.cwd() / DEFAULT_BACKUP_DIRNAME
        self.durable = durable
        self.verbose = verbose
        self._active: dict[str, Transaction] = {}
        self._finished: dict[str, Transaction] = {}
        self._snapshots: dict[str, Snapshot] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._owner_locks: dict[str, OwnerLock] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "TransactionLog":
        return cls(
            settings.backup_dir,
            durable=settings.durable_journal,
            verbose=settings.verbose,
        )

    # ------------------------------------------------------------------
    # Transaction lifecycle
    # ------------------------------------------------------------------

    async def start_transaction(self, description: str, root_path: str | Path) -> str:
        """Open a new active transaction scoped to *root_path*.

        Raises:
            FilesystemError: If the private backup directory cannot be created.
        """
        tx_id = new_id("tx")
        backup_dir = self.backup_root / tx_id
        tx = Transaction(
            id=tx_id,
            description=description,
            root_path=Path(root_path),
            backup_dir=backup_dir,
        )
        owner: OwnerLock | None = None
        try:
            await asyncio.to_thread(backup_dir.mkdir, parents=True, exist_ok=True)
            if self.durable:
                owner = await asyncio.to_thread(OwnerLock.try_acquire, tx.lock_path)
        except OSError as exc:
            raise FilesystemError(
                f"Cannot create backup storage {backup_dir}: {exc}",
                code="BACKUP_DIR_FAILED",
                path=backup_dir,
            ) from exc
        if self.durable and owner is None:
            raise FilesystemError(
                f"Backup storage {backup_dir} is locked by another process",
                code="BACKUP_DIR_FAILED",
                path=backup_dir,
            )

        self._active[tx_id] = tx
        self._locks[tx_id] = asyncio.Lock()
        if owner is not None:
            self._owner_locks[tx_id] = owner
        await self._journal(
            tx,
            "begin",
            description=description,
            root_path=str(tx.root_path),
            pid=os.getpid(),
            host=socket.gethostname(),
        )
        print_debug(f"Started transaction {tx_id}: {description}", self.verbose)
        return tx_id

    async def commit_transaction(self, transaction_id: str) -> None:
        """Release the transaction's backups and mark it committed.

        Target files are never touched.

        Raises:
            TransactionNotFoundError: If the id is unknown or already terminal.
        """
        tx = self._require_active(transaction_id)
        async with self._locks[transaction_id]:
            self._require_active(transaction_id)
            await self._journal(tx, "commit")
            for op in tx.operations:
                if op.backup_path is not None and path_exists(op.backup_path):
                    try:
                        await asyncio.to_thread(remove_path, op.backup_path)
                    except OSError as exc:
                        print_warning(f"Failed to clean up backup {op.backup_path}: {exc}")
            self._finish(tx, TransactionStatus.COMMITTED)
        await self._release_storage(tx)
        print_debug(f"Committed transaction {transaction_id}", self.verbose)

    async def rollback_transaction(self, transaction_id: str) -> RollbackReport:
        """Undo every completed operation of the transaction, newest first.

        Individual failures do not stop the walk.  If any operation could not
        be undone the transaction stays active (a retry replays only what is
        left) and ``RollbackFailedError`` is raised.

        Raises:
            TransactionNotFoundError: If the id is unknown or already terminal.
            RollbackFailedError: If at least one operation could not be undone.
        """
        tx = self._require_active(transaction_id)
        async with self._locks[transaction_id]:
            self._require_active(transaction_id)
            report = RollbackReport(transaction_id=transaction_id)
            await self._undo_all(tx, list(reversed(tx.operations)), report)

            if report.failed:
                raise RollbackFailedError(
                    transaction_id,
                    undone=report.undone,
                    failed=report.failed,
                    unrestored_paths=report.unrestored_paths,
                )

            await self._journal(tx, "rollback")
            self._finish(tx, TransactionStatus.ROLLED_BACK)
        await self._release_storage(tx)
        print_debug(
            f"Rolled back transaction {transaction_id} ({len(report.undone)} operation(s))",
            self.verbose,
        )
        return report

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def create_snapshot(self, transaction_id: str, description: str) -> str:
        """Capture the transaction's current operation list by value."""
        tx = self._require_active(transaction_id)
        async with self._locks[transaction_id]:
            snapshot = Snapshot(
                transaction_id=transaction_id,
                description=description,
                operations=tuple(op.model_copy(deep=True) for op in tx.operations),
            )
            self._snapshots[snapshot.id] = snapshot
        print_debug(f"Created snapshot {snapshot.id}: {description}", self.verbose)
        return snapshot.id

    async def rollback_to_snapshot(self, snapshot_id: str) -> RollbackReport:
        """Undo the operations recorded after *snapshot_id* was taken.

        The transaction stays active; undone operations remain in its list
        flagged ``rolled_back`` so a later full rollback skips them.

        Raises:
            SnapshotNotFoundError: If the snapshot is unknown or was discarded.
            TransactionNotFoundError: If its transaction is no longer active.
            RollbackFailedError: If at least one operation could not be undone.
        """
        snapshot = self._snapshots.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(snapshot_id)
        tx = self._require_active(snapshot.transaction_id)
        async with self._locks[tx.id]:
            self._require_active(tx.id)
            captured = snapshot.operation_ids
            later = [op for op in tx.operations if op.id not in captured]
            report = RollbackReport(transaction_id=tx.id, snapshot_id=snapshot_id)
            await self._undo_all(tx, list(reversed(later)), report)

        if report.failed:
            raise RollbackFailedError(
                tx.id,
                undone=report.undone,
                failed=report.failed,
                unrestored_paths=report.unrestored_paths,
            )
        print_debug(
            f"Rolled back to snapshot {snapshot_id} ({len(report.undone)} operation(s))",
            self.verbose,
        )
        return report

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def record_file_creation(
        self, transaction_id: str, path: str | Path, content: str | bytes
    ) -> Operation:
        """Create a new file with *content*, creating missing parents.

        Raises:
            FilesystemError: If the file exists already or cannot be written.
        """
        target = Path(path)
        async with self._locked(transaction_id) as tx:
            await self._record_parents(tx, target)
            op = Operation(kind=OperationKind.CREATE_FILE, target=target)
            return await self._apply(
                tx, op, lambda: write_atomic(target, content, exclusive=True), "create file"
            )

    async def record_directory_creation(self, transaction_id: str, path: str | Path) -> Operation:
        """Create a directory (and any missing parents, each recorded)."""
        target = Path(path)
        async with self._locked(transaction_id) as tx:
            await self._record_parents(tx, target)
            op = Operation(kind=OperationKind.CREATE_DIRECTORY, target=target)
            return await self._apply(tx, op, target.mkdir, "create directory")

    async def record_file_modification(
        self, transaction_id: str, path: str | Path, new_content: str | bytes
    ) -> Operation:
        """Overwrite *path*, backing up its previous content when it existed."""
        target = Path(path)
        async with self._locked(transaction_id) as tx:
            await self._record_parents(tx, target)
            op = Operation(kind=OperationKind.MODIFY_FILE, target=target)
            existed = target.is_file()
            if existed:
                op.backup_path = self._backup_path_for(tx, op, target)

            def _mutate() -> None:
                if existed:
                    copy_path(target, op.backup_path)
                write_atomic(target, new_content)

            return await self._apply(tx, op, _mutate, "modify file")

    async def record_file_copy(
        self, transaction_id: str, source: str | Path, dest: str | Path
    ) -> Operation:
        """Copy *source* to *dest*; an existing *dest* is backed up first."""
        src, target = Path(source), Path(dest)
        async with self._locked(transaction_id) as tx:
            await self._record_parents(tx, target)
            op = Operation(kind=OperationKind.COPY_FILE, target=target, payload=str(src))
            existed = path_exists(target)
            if existed:
                op.backup_path = self._backup_path_for(tx, op, target)

            def _mutate() -> None:
                if not path_exists(src):
                    raise FileNotFoundError(f"No such file or directory: {src}")
                if existed:
                    copy_path(target, op.backup_path)
                    remove_path(target)
                try:
                    copy_path(src, target)
                except OSError:
                    if existed:
                        remove_path(target)
                        copy_path(op.backup_path, target)
                    raise

            return await self._apply(tx, op, _mutate, "copy file")

    async def record_file_move(
        self, transaction_id: str, source: str | Path, dest: str | Path
    ) -> Operation:
        """Move *source* (file or directory) to *dest*, backing up the source.

        Raises:
            FilesystemError: If *source* is missing, *dest* exists, or the
                move fails.
        """
        src, target = Path(source), Path(dest)
        async with self._locked(transaction_id) as tx:
            await self._record_parents(tx, target)
            op = Operation(kind=OperationKind.MOVE_FILE, target=target, payload=str(src))
            existed = path_exists(src)
            if existed:
                op.backup_path = self._backup_path_for(tx, op, src)

            def _mutate() -> None:
                if not existed:
                    raise FileNotFoundError(f"No such file or directory: {src}")
                if path_exists(target):
                    raise FileExistsError(f"Destination already exists: {target}")
                copy_path(src, op.backup_path)
                shutil.move(str(src), str(target))

            return await self._apply(tx, op, _mutate, "move")

    async def record_deletion(
        self, transaction_id: str, path: str | Path, *, backup: bool = False
    ) -> Operation:
        """Delete a file or directory tree.

        Without *backup* the deletion is irreversible: a rollback leaves the
        path missing and reports the operation as skipped with a warning.
        """
        target = Path(path)
        async with self._locked(transaction_id) as tx:
            is_dir = target.is_dir() and not target.is_symlink()
            kind = OperationKind.DELETE_DIRECTORY if is_dir else OperationKind.DELETE_FILE
            op = Operation(kind=kind, target=target)
            if backup and path_exists(target):
                op.backup_path = self._backup_path_for(tx, op, target)

            def _mutate() -> None:
                if not path_exists(target):
                    raise FileNotFoundError(f"No such file or directory: {target}")
                if op.backup_path is not None:
                    copy_path(target, op.backup_path)
                remove_path(target)

            return await self._apply(tx, op, _mutate, "delete")

    # ------------------------------------------------------------------
    # Emergency cleanup
    # ------------------------------------------------------------------

    async def emergency_cleanup(self, root_path: str | Path) -> None:
        """Remove *root_path* outright, without per-operation bookkeeping.

        Active transactions scoped to *root_path* are discarded and their
        backups purged.  Used when a transaction id is lost or a full
        rollback failed.

        Raises:
            EmergencyCleanupError: If *root_path* is a filesystem root or the
                home directory, or cannot be removed.
        """
        root = Path(root_path)
        resolved = root.expanduser().resolve()
        if resolved == Path(resolved.anchor) or resolved == Path.home().resolve():
            raise EmergencyCleanupError(root, "refusing to remove a root or home directory")

        try:
            await asyncio.to_thread(remove_path, root)
        except OSError as exc:
            raise EmergencyCleanupError(root, str(exc)) from exc
        print_warning(f"Emergency cleanup: removed {root}")

        for tx in [t for t in self._active.values() if t.root_path == root]:
            lock = self._locks.get(tx.id)
            if lock is None:
                continue
            async with lock:
                if not tx.is_active:
                    continue
                await self._journal(tx, "rollback", emergency=True)
                self._finish(tx, TransactionStatus.ROLLED_BACK)
            await self._release_storage(tx)

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    async def recover(self) -> list[RollbackReport]:
        """Roll back transactions a crashed process left in the journal.

        Scans ``<backup_root>/*/journal.jsonl`` for transactions this
        instance does not own.  A journal whose ``owner.lock`` is still held
        belongs to a live run (in this or another process) and is left
        alone.  Orphaned journals that reached commit or rollback only have
        their storage purged; the rest are rebuilt and rolled back, skipping
        operations an earlier rollback already undid.  Only meaningful when
        journals were written (``durable=True``).
        """
        reports: list[RollbackReport] = []
        if not self.backup_root.is_dir():
            return reports

        for journal in sorted(self.backup_root.glob("*/journal.jsonl")):
            tx_id = journal.parent.name
            if tx_id in self._active or tx_id in self._finished:
                continue
            try:
                owner = await asyncio.to_thread(
                    OwnerLock.try_acquire, journal.parent / "owner.lock"
                )
            except FileNotFoundError:
                continue
            if owner is None:
                print_debug(
                    f"Skipping transaction {tx_id}: owned by a running process", self.verbose
                )
                continue

            try:
                tx, terminal = await asyncio.to_thread(_load_journal, journal)
            except FileNotFoundError:
                owner.release()
                continue
            if tx is None or terminal:
                owner.release()
                await asyncio.to_thread(remove_path, journal.parent)
                continue

            self._active[tx.id] = tx
            self._locks[tx.id] = asyncio.Lock()
            self._owner_locks[tx.id] = owner
            print_warning(f"Recovering interrupted transaction {tx.id}: {tx.description}")
            reports.append(await self.rollback_transaction(tx.id))
        return reports

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        return self._active.get(transaction_id) or self._finished.get(transaction_id)

    def get_transaction_status(self, transaction_id: str) -> TransactionStatusInfo:
        tx = self.get_transaction(transaction_id)
        if tx is None:
            return TransactionStatusInfo(exists=False)
        return TransactionStatusInfo(
            exists=True,
            status=tx.status,
            operation_count=len(tx.operations),
            completed_count=len(tx.completed_operations()),
        )

    def active_transactions(self) -> list[str]:
        return list(self._active)

    def snapshots(self, transaction_id: str | None = None) -> list[Snapshot]:
        return [
            s
            for s in self._snapshots.values()
            if transaction_id is None or s.transaction_id == transaction_id
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_active(self, transaction_id: str) -> Transaction:
        tx = self._active.get(transaction_id)
        if tx is None or not tx.is_active:
            raise TransactionNotFoundError(transaction_id)
        return tx

    def _locked(self, transaction_id: str) -> "_TransactionGuard":
        self._require_active(transaction_id)
        return _TransactionGuard(self, transaction_id)

    def _backup_path_for(self, tx: Transaction, op: Operation, original: Path) -> Path:
        return tx.backup_dir / f"{op.id}-{original.name}"

    async def _record_parents(self, tx: Transaction, target: Path) -> None:
        """Create and record each missing ancestor of *target*, outermost first."""
        for parent in missing_parents(target):
            op = Operation(kind=OperationKind.CREATE_DIRECTORY, target=parent)
            await self._apply(tx, op, parent.mkdir, "create directory")

    async def _apply(
        self,
        tx: Transaction,
        op: Operation,
        mutation: Callable[[], Any],
        action: str,
    ) -> Operation:
        """Append *op*, run *mutation*, then flag the operation completed.

        The caller must hold the transaction's lock.
        """
        tx.operations.append(op)
        await self._journal(tx, "record", operation=op.model_dump(mode="json"))
        try:
            await asyncio.to_thread(mutation)
        except OSError as exc:
            raise FilesystemError(
                f"Failed to {action}: {op.target} ({exc})",
                code=f"{op.kind.value.upper()}_FAILED",
                path=op.target,
                operation_id=op.id,
            ) from exc
        op.completed = True
        await self._journal(tx, "complete", operation_id=op.id)
        print_debug(f"Recorded {op.kind.value}: {op.target}", self.verbose)
        return op

    async def _undo_all(
        self, tx: Transaction, operations: list[Operation], report: RollbackReport
    ) -> None:
        """Undo *operations* in the given order, journaling each one undone.

        The caller must hold the transaction's lock.
        """
        for op in operations:
            if not op.replayable:
                continue
            try:
                warning = await asyncio.to_thread(undo_operation, op)
            except (OSError, ValueError) as exc:
                print_warning(f"Failed to roll back {op.kind.value} {op.target}: {exc}")
                report.failed.append(op.id)
                report.errors[op.id] = str(exc)
                report.unrestored_paths.append(
                    Path(op.payload) if op.kind is OperationKind.MOVE_FILE and op.payload else op.target
                )
                continue

            op.rolled_back = True
            await self._journal(tx, "undone", operation_id=op.id)
            if warning:
                print_warning(warning)
                report.warnings.append(warning)
                report.skipped.append(op.id)
            else:
                report.undone.append(op.id)
            print_debug(f"Rolled back {op.kind.value}: {op.target}", self.verbose)

    def _finish(self, tx: Transaction, status: TransactionStatus) -> None:
        tx.status = status
        tx.finished_at = datetime.now(timezone.utc)
        self._active.pop(tx.id, None)
        self._locks.pop(tx.id, None)
        owner = self._owner_locks.pop(tx.id, None)
        if owner is not None:
            owner.release()

        self._finished[tx.id] = tx
        while len(self._finished) > self.max_finished:
            del self._finished[next(iter(self._finished))]
        for snapshot_id in [s.id for s in self.snapshots(tx.id)]:
            del self._snapshots[snapshot_id]

    async def _release_storage(self, tx: Transaction) -> None:
        """Remove the transaction's backup directory, and the root when empty."""
        try:
            await asyncio.to_thread(remove_path, tx.backup_dir)
            if self.backup_root.is_dir() and not any(self.backup_root.iterdir()):
                await asyncio.to_thread(self.backup_root.rmdir)
        except OSError as exc:
            print_warning(f"Failed to clean up backup storage {tx.backup_dir}: {exc}")

    async def _journal(self, tx: Transaction, event: str, **data: Any) -> None:
        if not self.durable:
            return
        line = json.dumps(
            {"event": event, "tx": tx.id, "at": datetime.now(timezone.utc).isoformat(), **data},
            default=str,
        )
        try:
            await asyncio.to_thread(_append_line, tx.journal_path, line)
        except OSError as exc:
            raise FilesystemError(
                f"Cannot write transaction journal {tx.journal_path}: {exc}",
                code="JOURNAL_WRITE_FAILED",
                path=tx.journal_path,
            ) from exc


class _TransactionGuard:
    """``async with`` helper: hold a transaction's lock and yield it if still active."""

    def __init__(self, log: TransactionLog, transaction_id: str) -> None:
        self._log = log
        self._transaction_id = transaction_id
        self._lock = log._locks[transaction_id]

    async def __aenter__(self) -> Transaction:
        await self._lock.acquire()
        try:
            return self._log._require_active(self._transaction_id)
        except TransactionNotFoundError:
            self._lock.release()
            raise

    async def __aexit__(self, *exc_info: object) -> None:
        self._lock.release()


def _append_line(path: Path, line: str) -> None:
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(line + "\n")
        fh.flush()
        os.fsync(fh.fileno())


def _load_journal(path: Path) -> tuple[Transaction | None, bool]:
    """Rebuild a transaction from its journal.

    Returns ``(transaction, terminal)`` where *terminal* is ``True`` when the
    journal reached commit or rollback.  A truncated last line (crash during
    the write) is ignored.
    """
    tx: Transaction | None = None
    terminal = False
    for raw in path.read_text(encoding="utf-8").splitlines():
        try:
            entry = json.loads(raw)
        except json.JSONDecodeError:
            continue
        event = entry.get("event")
        if event == "begin":
            tx = Transaction(
                id=entry["tx"],
                description=entry.get("description", ""),
                root_path=Path(entry["root_path"]),
                backup_dir=path.parent,
            )
        elif tx is None:
            continue
        elif event == "record":
            tx.operations.append(Operation.model_validate(entry["operation"]))
        elif event == "complete":
            op = tx.find_operation(entry["operation_id"])
            if op is not None:
                op.completed = True
        elif event == "undone":
            op = tx.find_operation(entry["operation_id"])
            if op is not None:
                op.rolled_back = True
        elif event in ("commit", "rollback"):
            terminal = True
    return tx, terminal
