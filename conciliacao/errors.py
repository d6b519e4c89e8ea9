"""Exceptions raised by the reconciliation engine."""

from typing import Any, List, Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation engine errors."""
    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ParseError(ReconciliationError):
    """A raw value (amount, date, ledger line) could not be parsed."""
    def __init__(self, message: str, raw: Optional[str] = None, row: Optional[int] = None):
        super().__init__(message, details={"raw": raw, "row": row})
        self.raw = raw
        self.row = row


class InvalidRuleError(ReconciliationError):
    """Percentage rule is malformed (shares out of range or not adding to 100)."""
    def __init__(self, message: str, contract_id: Optional[str] = None):
        super().__init__(message, details={"contract_id": contract_id})
        self.contract_id = contract_id


class NoRuleError(ReconciliationError):
    """No percentage rule exists for a settlement entry."""
    def __init__(self, message: str, entry_id: Optional[str] = None):
        super().__init__(message, details={"entry_id": entry_id})
        self.entry_id = entry_id


class ImbalancedSelectionError(ReconciliationError):
    """Generated children do not add up to the selected transactions."""
    def __init__(self, message: str, difference_cents: int = 0):
        super().__init__(message, details={"difference_cents": difference_cents})
        self.difference_cents = difference_cents


class AlreadyConsumedError(ReconciliationError):
    """Settlement entries were consumed by another reconciliation."""
    def __init__(self, message: str, entry_ids: Optional[List[str]] = None):
        self.entry_ids = list(entry_ids or [])
        super().__init__(message, details={"entry_ids": self.entry_ids})


class AlreadyReconciledError(ReconciliationError):
    """Parent transactions were reconciled by another commit."""
    def __init__(self, message: str, transaction_ids: Optional[List[str]] = None):
        self.transaction_ids = list(transaction_ids or [])
        super().__init__(message, details={"transaction_ids": self.transaction_ids})


class PersistenceError(ReconciliationError):
    """The ledger store failed or timed out."""


class SelectionError(ReconciliationError):
    """Selection refers to unknown ids or is not committable."""


class SessionStateError(ReconciliationError):
    """Operation is not allowed in the session's current state."""
