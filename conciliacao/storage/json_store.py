"""
Flat-file ledger store.

The whole ledger lives in one JSON document. Every write rewrites the
document to a temporary file and atomically replaces the old one. A write
that cannot be saved is rolled back in memory too, so readers never see
state that is not on disk.
"""

import asyncio
import copy
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Collection, Dict, Iterable, List, Optional

import structlog

from ..errors import PersistenceError
from ..models import (
    ContractPercentageRule,
    SettlementEntry,
    SettlementState,
    Transaction,
)
from .base import SettlementEntryFilter, TransactionFilter
from .memory import InMemoryLedgerStore

logger = structlog.get_logger()

FORMAT_VERSION = 1


class JsonFileLedgerStore(InMemoryLedgerStore):
    """InMemoryLedgerStore persisted to a JSON file after every write."""

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._loaded = False
        self._lock = asyncio.Lock()

    def _read_document(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_document(self, document: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.path)

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        try:
            document = await asyncio.to_thread(self._read_document)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read ledger file {self.path}: {e}") from e

        if document:
            self.transactions = {
                d["id"]: Transaction.from_dict(d) for d in document.get("transactions", [])
            }
            self.entries = {
                d["id"]: SettlementEntry.from_dict(d) for d in document.get("settlement_entries", [])
            }
            self.rules = {}
            for d in document.get("percentage_rules", []):
                rule = ContractPercentageRule.from_dict(d)
                self.rules[(rule.settlement_entry_id, rule.contract_id)] = rule
            logger.info(
                "Ledger loaded",
                path=str(self.path),
                transactions=len(self.transactions),
                entries=len(self.entries),
            )
        self._loaded = True

    async def _save(self) -> None:
        document = {
            "version": FORMAT_VERSION,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "transactions": [t.to_dict() for t in self.transactions.values()],
            "settlement_entries": [e.to_dict() for e in self.entries.values()],
            "percentage_rules": [r.to_dict() for r in self.rules.values()],
        }
        try:
            await asyncio.to_thread(self._write_document, document)
        except OSError as e:
            raise PersistenceError(f"Could not write ledger file {self.path}: {e}") from e

    async def _write(
        self,
        mutate: Callable[[], Awaitable[Any]],
        save: Callable[[Any], bool] = lambda _: True,
    ) -> Any:
        """Apply `mutate` to the cache and save; restore the cache if either step fails."""
        async with self._lock:
            await self._ensure_loaded()
            snapshot = copy.deepcopy((self.transactions, self.entries, self.rules))
            try:
                result = await mutate()
                if save(result):
                    await self._save()
            except Exception:
                self.transactions, self.entries, self.rules = snapshot
                logger.warning("Ledger write rolled back", path=str(self.path))
                raise
            return result

    async def list_transactions(self, filter: Optional[TransactionFilter] = None) -> List[Transaction]:
        await self._ensure_loaded()
        return await super().list_transactions(filter)

    async def list_settlement_entries(
        self, filter: Optional[SettlementEntryFilter] = None
    ) -> List[SettlementEntry]:
        await self._ensure_loaded()
        return await super().list_settlement_entries(filter)

    async def list_percentage_rules(
        self,
        entry_ids: Optional[Collection[str]] = None,
        contract_ids: Optional[Collection[str]] = None,
    ) -> List[ContractPercentageRule]:
        await self._ensure_loaded()
        return await super().list_percentage_rules(entry_ids, contract_ids)

    async def write_transactions(self, batch: Iterable[Transaction]) -> None:
        await self._write(lambda: super(JsonFileLedgerStore, self).write_transactions(batch))

    async def write_settlement_entries(self, batch: Iterable[SettlementEntry]) -> List[str]:
        # Nothing to save when every entry was already known
        return await self._write(
            lambda: super(JsonFileLedgerStore, self).write_settlement_entries(batch),
            save=bool,
        )

    async def write_percentage_rules(self, batch: Iterable[ContractPercentageRule]) -> None:
        await self._write(lambda: super(JsonFileLedgerStore, self).write_percentage_rules(batch))

    async def mark_entries_consumed(
        self, entry_ids: Iterable[str], consumed_by: Optional[str] = None
    ) -> None:
        await self._write(
            lambda: super(JsonFileLedgerStore, self).mark_entries_consumed(entry_ids, consumed_by)
        )

    async def update_transaction_state(
        self,
        transaction_id: str,
        new_state: SettlementState,
        reconciliation_group: Optional[str] = None,
    ) -> None:
        await self._write(
            lambda: super(JsonFileLedgerStore, self).update_transaction_state(
                transaction_id, new_state, reconciliation_group
            )
        )
