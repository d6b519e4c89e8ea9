"""Ingestion module for bank statements, settlement reports and pasted ledgers."""

from .amounts import parse_amount, parse_amount_cents, parse_amount_strict, parse_date, to_cents
from .dedup import DedupResult, ImportDeduplicator
from .identity import (
    assign_occurrence_indices,
    child_transaction_id,
    commit_key,
    transaction_identity,
)
from .settlement_importer import PercentageRow, SettlementImporter, SettlementRow
from .statement_importer import RawStatementLine, StatementImporter

__all__ = [
    "parse_amount",
    "parse_amount_cents",
    "parse_amount_strict",
    "parse_date",
    "to_cents",
    "DedupResult",
    "ImportDeduplicator",
    "assign_occurrence_indices",
    "child_transaction_id",
    "commit_key",
    "transaction_identity",
    "PercentageRow",
    "SettlementImporter",
    "SettlementRow",
    "RawStatementLine",
    "StatementImporter",
]
