"""
Tests for the in-memory and JSON file ledger stores.
"""

import pytest
from datetime import date
from decimal import Decimal

from conciliacao.errors import PersistenceError
from conciliacao.models import (
    ReconciliationMetadata,
    ReconciliationType,
    SettlementState,
    SplitChildTransaction,
    SplitType,
)
from conciliacao.storage import (
    InMemoryLedgerStore,
    JsonFileLedgerStore,
    SettlementEntryFilter,
    TransactionFilter,
)


@pytest.fixture
def child():
    """A persisted split child."""
    return SplitChildTransaction(
        id="RC0123456789ABCDEFCAT",
        source="Inter",
        amount_cents=15000,
        transaction_date=date(2025, 7, 10),
        description="REC. A. C. IND. - CTR-IND",
        classification="leaf",
        reconciliation_group="GROUP",
        reconciliation_metadata=ReconciliationMetadata(
            reconciliation_type=ReconciliationType.INTER_PAG_N_TO_M,
            parent_transaction_ids=["T1"],
            settlement_entry_id="E1",
            split_type=SplitType.CATALOG,
            split_percentage=Decimal("30"),
            entry_date=date(2025, 7, 9),
            entry_value_cents=50000,
        ),
    )


class TestInMemoryLedgerStore:
    """Tests for InMemoryLedgerStore."""

    @pytest.mark.asyncio
    async def test_returned_objects_are_copies(self, make_transaction):
        store = InMemoryLedgerStore([make_transaction("T1", 100)])

        listed = (await store.list_transactions())[0]
        listed.state = SettlementState.RECONCILED

        assert (await store.get_transactions(["T1"]))[0].state == SettlementState.PENDING

    @pytest.mark.asyncio
    async def test_filters(self, make_transaction, make_entry):
        store = InMemoryLedgerStore(
            [
                make_transaction("T1", 100, description="PIX INTER PAG"),
                make_transaction("T2", -100, description="TARIFA"),
                make_transaction("T3", 100, date(2025, 7, 12), description="PIX"),
            ],
            [
                make_entry("E1", 100),
                make_entry("E2", 100, consumed=True),
                make_entry("E3", 100, channel="pix"),
            ],
        )

        credits = await store.list_transactions(TransactionFilter(sign=1))
        inter_pag = await store.list_transactions(TransactionFilter(description_contains="inter pag"))
        others = await store.list_transactions(TransactionFilter(
            description_excludes="INTER PAG", date_to=date(2025, 7, 10),
        ))
        entries = await store.list_settlement_entries(SettlementEntryFilter(channels={"inter_pag"}))

        assert sorted(t.id for t in credits) == ["T1", "T3"]
        assert [t.id for t in inter_pag] == ["T1"]
        assert [t.id for t in others] == ["T2"]
        assert [e.id for e in entries] == ["E1"]

    @pytest.mark.asyncio
    async def test_unknown_ids_raise_persistence_error(self):
        store = InMemoryLedgerStore()

        with pytest.raises(PersistenceError):
            await store.mark_entries_consumed(["NOPE"], "KEY")
        with pytest.raises(PersistenceError):
            await store.update_transaction_state("NOPE", SettlementState.RECONCILED)

    @pytest.mark.asyncio
    async def test_rules_lookup(self, make_rule):
        store = InMemoryLedgerStore(rules=[
            make_rule("CTR-1", "30", "70"),
            make_rule("CTR-2", "50", "50", settlement_entry_id="E9"),
        ])

        by_contract = await store.list_percentage_rules(contract_ids={"CTR-1"})
        by_entry = await store.list_percentage_rules(entry_ids=["E9"])

        assert [r.contract_id for r in by_contract] == ["CTR-1"]
        assert [r.contract_id for r in by_entry] == ["CTR-2"]
        assert len(await store.list_percentage_rules()) == 2


class TestJsonFileLedgerStore:
    """Tests for JsonFileLedgerStore."""

    @pytest.mark.asyncio
    async def test_ledger_survives_reload(self, tmp_path, make_transaction, make_entry, make_rule, child):
        path = tmp_path / "ledger.json"
        store = JsonFileLedgerStore(path)

        await store.write_transactions([make_transaction("T1", 50000), child])
        await store.write_settlement_entries([make_entry("E1", 50000)])
        await store.write_percentage_rules([make_rule("CTR-IND", "30", "70")])
        await store.mark_entries_consumed(["E1"], "GROUP")
        await store.update_transaction_state("T1", SettlementState.RECONCILED, "GROUP")

        reloaded = JsonFileLedgerStore(path)
        transactions = {t.id: t for t in await reloaded.list_transactions()}
        entries = await reloaded.get_settlement_entries(["E1"])
        rules = await reloaded.list_percentage_rules()

        assert transactions["T1"].state == SettlementState.RECONCILED
        assert transactions["T1"].reconciliation_group == "GROUP"
        restored = transactions[child.id]
        assert isinstance(restored, SplitChildTransaction)
        assert restored.split_type == SplitType.CATALOG
        assert restored.reconciliation_metadata.split_percentage == Decimal("30")
        assert restored.reconciliation_metadata.entry_date == date(2025, 7, 9)
        assert entries[0].consumed and entries[0].consumed_by == "GROUP"
        assert rules[0].plans_percent == Decimal("70")

    @pytest.mark.asyncio
    async def test_insert_if_absent_keeps_consumed_entries(self, tmp_path, make_entry):
        store = JsonFileLedgerStore(tmp_path / "ledger.json")
        await store.write_settlement_entries([make_entry("E1", 100)])
        await store.mark_entries_consumed(["E1"], "GROUP")

        inserted = await store.write_settlement_entries([make_entry("E1", 100), make_entry("E2", 100)])

        assert inserted == ["E2"]
        assert (await store.get_settlement_entries(["E1"]))[0].consumed

    @pytest.mark.asyncio
    async def test_missing_file_is_an_empty_ledger(self, tmp_path):
        store = JsonFileLedgerStore(tmp_path / "nothing-here.json")

        assert await store.list_transactions() == []

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_persistence_error(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(PersistenceError):
            await JsonFileLedgerStore(path).list_transactions()

    @pytest.mark.asyncio
    async def test_failed_save_leaves_cache_as_on_disk(self, tmp_path, make_transaction, make_entry, child):
        """A write that cannot reach the file is not visible to readers either."""
        path = tmp_path / "ledger.json"
        store = JsonFileLedgerStore(path)
        await store.write_transactions([make_transaction("T1", 50000)])
        await store.write_settlement_entries([make_entry("E1", 50000)])

        def disk_full(document):
            raise OSError("No space left on device")

        store._write_document = disk_full

        with pytest.raises(PersistenceError):
            await store.update_transaction_state("T1", SettlementState.RECONCILED, "GROUP")
        with pytest.raises(PersistenceError):
            await store.write_transactions([child])
        with pytest.raises(PersistenceError):
            await store.mark_entries_consumed(["E1"], "GROUP")

        cached = await store.list_transactions()
        on_disk = await JsonFileLedgerStore(path).list_transactions()

        assert [(t.id, t.state) for t in cached] == [("T1", SettlementState.PENDING)]
        assert [(t.id, t.state) for t in on_disk] == [("T1", SettlementState.PENDING)]
        assert not (await store.get_settlement_entries(["E1"]))[0].consumed

    @pytest.mark.asyncio
    async def test_rejected_write_is_rolled_back(self, tmp_path, make_transaction):
        store = JsonFileLedgerStore(tmp_path / "ledger.json")
        await store.write_transactions([make_transaction("T1", 100)])

        with pytest.raises(PersistenceError):
            await store.mark_entries_consumed(["NOPE"], "GROUP")

        assert [t.id for t in await store.list_transactions()] == ["T1"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
