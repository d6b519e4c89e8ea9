"""Ledger storage backends."""

from .base import LedgerStore, TransactionFilter, SettlementEntryFilter
from .memory import InMemoryLedgerStore
from .json_store import JsonFileLedgerStore

__all__ = [
    "LedgerStore",
    "TransactionFilter",
    "SettlementEntryFilter",
    "InMemoryLedgerStore",
    "JsonFileLedgerStore",
]
