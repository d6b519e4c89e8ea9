"""Data models for the reconciliation engine."""

from .enums import (
    SettlementState,
    ReconciliationType,
    SplitType,
    SplitMode,
    EntryKind,
    SessionState,
    AuditAction,
)
from .transaction import (
    Transaction,
    SplitChildTransaction,
    SettlementEntry,
    ContractPercentageRule,
    ReconciliationMetadata,
)
from .reconciliation import (
    DayBucket,
    SessionSnapshot,
    CommitResult,
    ImportSummary,
    AuditEntry,
)

__all__ = [
    # Enums
    "SettlementState",
    "ReconciliationType",
    "SplitType",
    "SplitMode",
    "EntryKind",
    "SessionState",
    "AuditAction",
    # Ledger
    "Transaction",
    "SplitChildTransaction",
    "SettlementEntry",
    "ContractPercentageRule",
    "ReconciliationMetadata",
    # Reconciliation
    "DayBucket",
    "SessionSnapshot",
    "CommitResult",
    "ImportSummary",
    "AuditEntry",
]
