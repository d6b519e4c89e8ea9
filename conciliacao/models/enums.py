"""Enumerations for the reconciliation engine."""

from enum import Enum


class SettlementState(str, Enum):
    """
    Lifecycle state of a ledger transaction.

    PENDING: Imported from a statement, not yet explained
    CLASSIFIED: Carries a final classification (directly or as a split child)
    RECONCILED: Parent that was replaced by its split children
    """
    PENDING = "pending"
    CLASSIFIED = "classified"
    RECONCILED = "reconciled"


class ReconciliationType(str, Enum):
    """Reconciliation flow that produced a split child."""
    INTER_PAG_N_TO_M = "inter_pag_n_to_m"
    PIX_INTER_N_TO_M = "pix_inter_n_to_m"
    TON_MANUAL_N_TO_M = "ton_manual_n_to_m"
    CREMACAO_CREATE_NEW = "cremacao_create_new"


class SplitType(str, Enum):
    """Share of a settlement entry that a child transaction books."""
    CATALOG = "catalogo"
    PLANS = "planos"
    COST = "custo"          # Operational cost absorbed by the bucket
    LEDGER = "ledger"       # Manually pasted ledger line
    FALLBACK = "fallback"   # Whole entry booked without a rule


class SplitMode(str, Enum):
    """How a flow turns settlement entries into children."""
    PERCENTAGE = "percentage"      # Contract percentage rule per entry
    PRODUCT_TYPE = "product_type"  # Entry type names the product (100%)
    LEDGER = "ledger"              # One child per ledger line


class EntryKind(str, Enum):
    """Result of the operational-cost heuristic on an entry type."""
    REVENUE = "revenue"
    OPERATIONAL_COST = "operational_cost"


class SessionState(str, Enum):
    """
    State of a match session.

    EMPTY: Nothing selected
    SELECTING: Only one side (transactions or entries) selected
    BALANCED: Both sides selected and generated total matches within tolerance
    UNBALANCED: Both sides selected, totals differ
    COMMITTING: Commit in flight, selection is locked
    CLOSED: Committed or cancelled
    """
    EMPTY = "empty"
    SELECTING = "selecting"
    BALANCED = "balanced"
    UNBALANCED = "unbalanced"
    COMMITTING = "committing"
    CLOSED = "closed"


class AuditAction(str, Enum):
    """Type of audit action."""
    STATEMENT_IMPORTED = "statement_imported"
    SETTLEMENTS_IMPORTED = "settlements_imported"
    RULES_IMPORTED = "rules_imported"
    PARSE_FAILED = "parse_failed"
    SESSION_OPENED = "session_opened"
    SELECTION_REJECTED = "selection_rejected"
    COMMIT_STARTED = "commit_started"
    COMMIT_COMPLETED = "commit_completed"
    COMMIT_FAILED = "commit_failed"
    SESSION_CANCELLED = "session_cancelled"
