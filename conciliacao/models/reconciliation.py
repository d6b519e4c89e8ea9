"""Session, commit and import result models."""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import AuditAction, ReconciliationType, SessionState
from .transaction import SettlementEntry, SplitChildTransaction, Transaction


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DayBucket:
    """
    Candidate transactions of one calendar day, plus the settlement
    entries dated inside the day's lookback window.
    """
    day: date
    window_days: int = 0
    transactions: List[Transaction] = field(default_factory=list)
    entries: List[SettlementEntry] = field(default_factory=list)

    @property
    def window_start(self) -> date:
        return self.day - timedelta(days=self.window_days)

    @property
    def transaction_total_cents(self) -> int:
        return sum(t.amount_cents for t in self.transactions)

    @property
    def entry_total_cents(self) -> int:
        return sum(e.value_cents for e in self.entries)

    def get_entry(self, entry_id: str) -> Optional[SettlementEntry]:
        return next((e for e in self.entries if e.id == entry_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "window_start": self.window_start.isoformat(),
            "window_days": self.window_days,
            "transaction_total_cents": self.transaction_total_cents,
            "entry_total_cents": self.entry_total_cents,
            "transactions": [t.to_dict() for t in self.transactions],
            "entries": [e.to_dict() for e in self.entries],
        }


@dataclass
class SessionSnapshot:
    """Read-only view of a match session returned to the presentation layer."""
    session_id: str
    flow: str
    day: date
    state: SessionState

    candidate_transaction_ids: List[str] = field(default_factory=list)
    candidate_entry_ids: List[str] = field(default_factory=list)
    cost_entry_ids: List[str] = field(default_factory=list)

    selected_transaction_ids: List[str] = field(default_factory=list)
    selected_entry_ids: List[str] = field(default_factory=list)

    # Totals (in cents)
    transactions_total_cents: int = 0
    generated_total_cents: int = 0
    difference_cents: int = 0

    generated_preview: List[SplitChildTransaction] = field(default_factory=list)

    # Entry id -> reason the split could not be generated
    blocked_entries: Dict[str, str] = field(default_factory=dict)
    # Selected cost entries waiting for the whole day to be selected
    deferred_cost_entry_ids: List[str] = field(default_factory=list)

    commit_key: Optional[str] = None

    @property
    def is_balanced(self) -> bool:
        return self.state == SessionState.BALANCED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "flow": self.flow,
            "day": self.day.isoformat(),
            "state": self.state.value,
            "is_balanced": self.is_balanced,
            "candidate_transaction_ids": self.candidate_transaction_ids,
            "candidate_entry_ids": self.candidate_entry_ids,
            "cost_entry_ids": self.cost_entry_ids,
            "selected_transaction_ids": self.selected_transaction_ids,
            "selected_entry_ids": self.selected_entry_ids,
            "transactions_total_cents": self.transactions_total_cents,
            "generated_total_cents": self.generated_total_cents,
            "difference_cents": self.difference_cents,
            "generated_preview": [c.to_dict() for c in self.generated_preview],
            "blocked_entries": self.blocked_entries,
            "deferred_cost_entry_ids": self.deferred_cost_entry_ids,
            "commit_key": self.commit_key,
        }


@dataclass
class CommitResult:
    """Outcome of a successful reconciliation commit."""
    commit_key: str
    reconciliation_type: ReconciliationType
    day: date

    reconciled_parent_ids: List[str] = field(default_factory=list)
    created_children: List[SplitChildTransaction] = field(default_factory=list)
    consumed_entry_ids: List[str] = field(default_factory=list)

    # Amounts (in cents)
    transactions_total_cents: int = 0
    generated_total_cents: int = 0
    difference_cents: int = 0

    override_used: bool = False
    committed_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commit_key": self.commit_key,
            "reconciliation_type": self.reconciliation_type.value,
            "day": self.day.isoformat(),
            "reconciled_parent_ids": self.reconciled_parent_ids,
            "created_children": [c.to_dict() for c in self.created_children],
            "consumed_entry_ids": self.consumed_entry_ids,
            "transactions_total_cents": self.transactions_total_cents,
            "generated_total_cents": self.generated_total_cents,
            "difference_cents": self.difference_cents,
            "override_used": self.override_used,
            "committed_at": self.committed_at.isoformat(),
        }


@dataclass
class ImportSummary:
    """Counts reported after an import batch."""
    total: int = 0
    added: int = 0
    duplicates: int = 0
    parse_errors: int = 0
    skipped: int = 0  # Rows deliberately ignored (e.g. unpaid agenda lines)

    duplicate_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def add_parse_error(self, row: Optional[int], reason: str) -> None:
        self.parse_errors += 1
        prefix = f"Row {row}: " if row is not None else ""
        self.errors.append(f"{prefix}{reason}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "added": self.added,
            "duplicates": self.duplicates,
            "parse_errors": self.parse_errors,
            "skipped": self.skipped,
            "duplicate_ids": self.duplicate_ids,
            "errors": self.errors,
        }


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=_utcnow)

    # Action
    action: AuditAction = AuditAction.STATEMENT_IMPORTED

    # Context
    transaction_ids: List[str] = field(default_factory=list)
    entry_ids: List[str] = field(default_factory=list)
    session_id: Optional[str] = None

    # Details
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    success: bool = True
    error_message: Optional[str] = None
