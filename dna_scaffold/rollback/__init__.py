"""Transactional filesystem mutations with backup-based rollback."""

from .manager import TransactionLog
from .models import (
    Operation,
    OperationKind,
    RollbackReport,
    Snapshot,
    Transaction,
    TransactionStatus,
    TransactionStatusInfo,
)

__all__ = [
    "Operation",
    "OperationKind",
    "RollbackReport",
    "Snapshot",
    "Transaction",
    "TransactionLog",
    "TransactionStatus",
    "TransactionStatusInfo",
]
