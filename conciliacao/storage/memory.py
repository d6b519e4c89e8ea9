"""In-memory ledger store."""

import copy
from typing import Collection, Dict, Iterable, List, Optional, Tuple

import structlog

from ..errors import PersistenceError
from ..models import (
    ContractPercentageRule,
    SettlementEntry,
    SettlementState,
    Transaction,
)
from .base import LedgerStore, SettlementEntryFilter, TransactionFilter

logger = structlog.get_logger()


class InMemoryLedgerStore(LedgerStore):
    """
    Dictionary-backed store.

    Objects are copied on the way in and out, so callers never hold a
    reference into stored state.
    """

    def __init__(
        self,
        transactions: Optional[Iterable[Transaction]] = None,
        entries: Optional[Iterable[SettlementEntry]] = None,
        rules: Optional[Iterable[ContractPercentageRule]] = None,
    ):
        self.transactions: Dict[str, Transaction] = {}
        self.entries: Dict[str, SettlementEntry] = {}
        self.rules: Dict[Tuple[Optional[str], str], ContractPercentageRule] = {}

        for transaction in transactions or []:
            self.transactions[transaction.id] = copy.deepcopy(transaction)
        for entry in entries or []:
            self.entries[entry.id] = copy.deepcopy(entry)
        for rule in rules or []:
            self.rules[(rule.settlement_entry_id, rule.contract_id)] = copy.deepcopy(rule)

    async def list_transactions(self, filter: Optional[TransactionFilter] = None) -> List[Transaction]:
        criteria = filter or TransactionFilter()
        return [
            copy.deepcopy(t) for t in self.transactions.values()
            if criteria.matches(t)
        ]

    async def list_settlement_entries(
        self, filter: Optional[SettlementEntryFilter] = None
    ) -> List[SettlementEntry]:
        criteria = filter or SettlementEntryFilter()
        return [
            copy.deepcopy(e) for e in self.entries.values()
            if criteria.matches(e)
        ]

    async def list_percentage_rules(
        self,
        entry_ids: Optional[Collection[str]] = None,
        contract_ids: Optional[Collection[str]] = None,
    ) -> List[ContractPercentageRule]:
        if entry_ids is None and contract_ids is None:
            return [copy.deepcopy(r) for r in self.rules.values()]

        entry_ids = set(entry_ids or [])
        contract_ids = set(contract_ids or [])
        return [
            copy.deepcopy(r) for r in self.rules.values()
            if r.settlement_entry_id in entry_ids or r.contract_id in contract_ids
        ]

    async def write_transactions(self, batch: Iterable[Transaction]) -> None:
        count = 0
        for transaction in batch:
            self.transactions[transaction.id] = copy.deepcopy(transaction)
            count += 1
        logger.debug("Transactions written", count=count)

    async def write_settlement_entries(self, batch: Iterable[SettlementEntry]) -> List[str]:
        inserted = []
        for entry in batch:
            if entry.id in self.entries:
                continue
            self.entries[entry.id] = copy.deepcopy(entry)
            inserted.append(entry.id)
        return inserted

    async def write_percentage_rules(self, batch: Iterable[ContractPercentageRule]) -> None:
        for rule in batch:
            self.rules[(rule.settlement_entry_id, rule.contract_id)] = copy.deepcopy(rule)

    async def mark_entries_consumed(
        self, entry_ids: Iterable[str], consumed_by: Optional[str] = None
    ) -> None:
        entry_ids = list(entry_ids)
        missing = [i for i in entry_ids if i not in self.entries]
        if missing:
            raise PersistenceError(f"Unknown settlement entries: {', '.join(missing)}")

        for entry_id in entry_ids:
            entry = self.entries[entry_id]
            entry.consumed = True
            entry.consumed_by = consumed_by

    async def update_transaction_state(
        self,
        transaction_id: str,
        new_state: SettlementState,
        reconciliation_group: Optional[str] = None,
    ) -> None:
        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            raise PersistenceError(f"Unknown transaction: {transaction_id}")

        transaction.state = new_state
        if reconciliation_group is not None:
            transaction.reconciliation_group = reconciliation_group
