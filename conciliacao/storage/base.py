"""
Persistence boundary of the reconciliation engine.

Every method is a suspension point. Implementations raise
PersistenceError when the backing store fails.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Collection, Iterable, List, Optional

from ..models import (
    ContractPercentageRule,
    SettlementEntry,
    SettlementState,
    Transaction,
)


def _contains(haystack: str, needle: str) -> bool:
    return needle.upper() in (haystack or "").upper()


@dataclass
class TransactionFilter:
    """Criteria for listing ledger transactions. None means no restriction."""
    ids: Optional[Collection[str]] = None
    sources: Optional[Collection[str]] = None
    accounts: Optional[Collection[str]] = None
    states: Optional[Collection[SettlementState]] = None
    classifications: Optional[Collection[str]] = None
    sign: Optional[int] = None  # 1 credits only, -1 debits only
    description_contains: Optional[str] = None
    description_excludes: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    candidates_only: bool = False

    def matches(self, transaction: Transaction) -> bool:
        if self.ids is not None and transaction.id not in self.ids:
            return False
        if self.sources is not None and transaction.source.upper() not in {s.upper() for s in self.sources}:
            return False
        if self.accounts is not None and (transaction.account or "").upper() not in {a.upper() for a in self.accounts}:
            return False
        if self.states is not None and transaction.state not in self.states:
            return False
        if self.classifications is not None and transaction.classification not in self.classifications:
            return False
        if self.sign is not None and transaction.amount_cents * self.sign <= 0:
            return False
        if self.description_contains and not _contains(transaction.origin_description, self.description_contains):
            return False
        if self.description_excludes and _contains(transaction.origin_description, self.description_excludes):
            return False
        if self.date_from or self.date_to:
            if transaction.transaction_date is None:
                return False
            if self.date_from and transaction.transaction_date < self.date_from:
                return False
            if self.date_to and transaction.transaction_date > self.date_to:
                return False
        if self.candidates_only and not transaction.is_candidate:
            return False
        return True


@dataclass
class SettlementEntryFilter:
    """Criteria for listing settlement entries. Consumed entries are hidden by default."""
    ids: Optional[Collection[str]] = None
    channels: Optional[Collection[str]] = None
    contract_ids: Optional[Collection[str]] = None
    include_consumed: bool = False
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def matches(self, entry: SettlementEntry) -> bool:
        if self.ids is not None and entry.id not in self.ids:
            return False
        if self.channels is not None and entry.channel not in self.channels:
            return False
        if self.contract_ids is not None and entry.contract_id not in self.contract_ids:
            return False
        if entry.consumed and not self.include_consumed:
            return False
        if self.date_from or self.date_to:
            if entry.entry_date is None:
                return False
            if self.date_from and entry.entry_date < self.date_from:
                return False
            if self.date_to and entry.entry_date > self.date_to:
                return False
        return True


class LedgerStore(ABC):
    """Abstract async store for transactions, settlement entries and rules."""

    @abstractmethod
    async def list_transactions(self, filter: Optional[TransactionFilter] = None) -> List[Transaction]:
        ...

    @abstractmethod
    async def list_settlement_entries(
        self, filter: Optional[SettlementEntryFilter] = None
    ) -> List[SettlementEntry]:
        ...

    @abstractmethod
    async def list_percentage_rules(
        self,
        entry_ids: Optional[Collection[str]] = None,
        contract_ids: Optional[Collection[str]] = None,
    ) -> List[ContractPercentageRule]:
        """Rules attached to any of the entry ids or contract ids (all rules when both are None)."""

    @abstractmethod
    async def write_transactions(self, batch: Iterable[Transaction]) -> None:
        """Upsert transactions by id."""

    @abstractmethod
    async def write_settlement_entries(self, batch: Iterable[SettlementEntry]) -> List[str]:
        """Insert entries whose id is not yet stored. Returns the ids actually inserted."""

    @abstractmethod
    async def write_percentage_rules(self, batch: Iterable[ContractPercentageRule]) -> None:
        """Upsert rules by (settlement entry id, contract id)."""

    @abstractmethod
    async def mark_entries_consumed(
        self, entry_ids: Iterable[str], consumed_by: Optional[str] = None
    ) -> None:
        ...

    @abstractmethod
    async def update_transaction_state(
        self,
        transaction_id: str,
        new_state: SettlementState,
        reconciliation_group: Optional[str] = None,
    ) -> None:
        ...

    async def get_transactions(self, ids: Collection[str]) -> List[Transaction]:
        return await self.list_transactions(TransactionFilter(ids=set(ids)))

    async def get_settlement_entries(self, ids: Collection[str]) -> List[SettlementEntry]:
        return await self.list_settlement_entries(
            SettlementEntryFilter(ids=set(ids), include_consumed=True)
        )

    async def existing_transaction_ids(self, ids: Collection[str]) -> List[str]:
        return [t.id for t in await self.get_transactions(ids)]
