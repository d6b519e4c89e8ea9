"""
End-to-end tests for the operator-facing reconciliation service.
"""

import pytest
from datetime import date

from conciliacao.errors import AlreadyConsumedError, SelectionError, SessionStateError
from conciliacao.ingestion import PercentageRow, RawStatementLine, SettlementRow
from conciliacao.models import AuditAction, SessionState, SettlementState
from conciliacao.reconciliation import ReconciliationService
from conciliacao.reconciliation.classification import COMPLEX, CREMATION_INDIVIDUAL
from conciliacao.storage import InMemoryLedgerStore
from conciliacao.utils import AuditLogger


DAY = date(2025, 7, 10)

STATEMENT = [
    RawStatementLine("Inter", "10/07/2025", "PIX RECEBIDO INTER PAG", "500,00", account="Inter"),
    RawStatementLine("Inter", "10/07/2025", "PIX RECEBIDO FULANO", "80,00", account="Inter"),
]

AGENDA = [
    SettlementRow("10/07/2025", "520,00", "Crédito à vista", "inter_pag", id="AG-1", contract_id="CTR-IND"),
    SettlementRow("10/07/2025", "-20,00", "116 - Tarifa", "inter_pag", id="AG-2"),
]


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def service(store, settings):
    """Create service instance over an empty in-memory ledger."""
    return ReconciliationService(store, settings, AuditLogger("test", settings))


async def load_inter_pag_day(service):
    await service.import_statement(STATEMENT)
    await service.import_settlements(AGENDA)
    await service.import_percentage_rules([PercentageRow("CTR-IND", "50", "50")])


class TestReconciliationService:
    """Tests for the import -> bucket -> session -> commit loop."""

    @pytest.mark.asyncio
    async def test_full_inter_pag_reconciliation(self, service):
        await load_inter_pag_day(service)

        buckets = await service.list_buckets("inter_pag")
        assert len(buckets) == 1
        assert len(buckets[0].transactions) == 1
        assert [e.id for e in buckets[0].entries] == ["AG-1", "AG-2"]

        snapshot = await service.open_session("inter_pag", DAY, preselect_all=True)
        assert snapshot.state == SessionState.BALANCED

        result = await service.commit()

        assert len(result.created_children) == 3
        assert result.consumed_entry_ids == ["AG-1", "AG-2"]
        assert await service.list_buckets("inter_pag") == []
        assert await service.ledger_balance_cents() == 50000

    @pytest.mark.asyncio
    async def test_reimport_after_commit_changes_nothing(self, service, store):
        await load_inter_pag_day(service)
        await service.open_session("inter_pag", DAY, preselect_all=True)
        result = await service.commit()

        statement = await service.import_statement(STATEMENT)
        agenda = await service.import_settlements(AGENDA)

        parent = (await store.get_transactions(result.reconciled_parent_ids))[0]
        assert statement.added == 0
        assert agenda.added == 0
        assert parent.state == SettlementState.RECONCILED
        with pytest.raises(SelectionError):
            await service.open_session("inter_pag", DAY)

    @pytest.mark.asyncio
    async def test_second_operator_cannot_reuse_consumed_entry(self, store, settings):
        """Two operators on one ledger: the slower one is rejected, never double-books."""
        first = ReconciliationService(store, settings, AuditLogger("first", settings))
        second = ReconciliationService(store, settings, AuditLogger("second", settings))
        await load_inter_pag_day(first)

        await first.open_session("inter_pag", DAY)
        snapshot = await second.open_session("inter_pag", DAY)
        second.toggle_transaction(snapshot.candidate_transaction_ids[0])
        await second.toggle_entry("AG-1")

        await first.select_all()
        await first.commit()

        with pytest.raises(AlreadyConsumedError):
            await second.toggle_entry("AG-2")
        with pytest.raises(AlreadyConsumedError):
            await second.commit(override_balance=True)

        children = [t for t in await store.list_transactions() if t.is_reconciliation_child]
        assert len(children) == 3
        assert second.snapshot().state == SessionState.UNBALANCED

    @pytest.mark.asyncio
    async def test_select_all_rereads_consumed_flags(self, service, store):
        """An entry consumed after the session opened cannot be swept in by select all."""
        await load_inter_pag_day(service)
        await service.open_session("inter_pag", DAY)

        await store.mark_entries_consumed(["AG-1"], "OTHER_OPERATOR")

        with pytest.raises(AlreadyConsumedError) as exc_info:
            await service.select_all()

        rejected = service.audit.get_entries(AuditAction.SELECTION_REJECTED)
        assert exc_info.value.entry_ids == ["AG-1"]
        assert service.snapshot().selected_entry_ids == []
        assert len(rejected) == 1
        assert rejected[0].entry_ids == ["AG-1"]

    @pytest.mark.asyncio
    async def test_cremation_ledger_reconciliation(self, service, store, make_transaction):
        await store.write_transactions([
            make_transaction(
                "T-CREM",
                -35000,
                description="PAGAMENTO CREMATORIO",
                state=SettlementState.CLASSIFIED,
                classification=COMPLEX,
            ),
        ])
        summary = await service.import_pasted_ledger("05/07/2025;Maria-Rex-Individual;350,00")
        assert summary.added == 1

        snapshot = await service.open_session("cremacao", DAY, preselect_all=True)
        assert snapshot.is_balanced

        result = await service.commit()
        child = result.created_children[0]

        assert child.amount_cents == -35000
        assert child.transaction_date == date(2025, 7, 5)
        assert child.classification == CREMATION_INDIVIDUAL
        assert await service.ledger_balance_cents() == -35000


class TestServiceSessions:
    """Tests for session bookkeeping and audit."""

    @pytest.mark.asyncio
    async def test_opening_a_session_cancels_the_previous_one(self, service):
        await load_inter_pag_day(service)

        await service.open_session("inter_pag", DAY)
        previous = service.session
        await service.open_session("inter_pag", DAY)

        assert previous.state == SessionState.CLOSED
        assert service.session is not previous
        assert len(service.audit.get_entries(AuditAction.SESSION_CANCELLED)) == 1

    @pytest.mark.asyncio
    async def test_operations_need_an_open_session(self, service):
        with pytest.raises(SessionStateError):
            service.snapshot()
        with pytest.raises(SessionStateError):
            service.toggle_transaction("T1")
        with pytest.raises(SessionStateError):
            await service.commit()

    @pytest.mark.asyncio
    async def test_unknown_flow(self, service):
        with pytest.raises(SelectionError):
            await service.list_buckets("boleto")

    @pytest.mark.asyncio
    async def test_parse_failures_are_audited(self, service):
        summary = await service.import_statement([
            RawStatementLine("Inter", "10/07/2025", "PIX", "dez reais"),
        ])

        failures = service.audit.get_entries(AuditAction.PARSE_FAILED)
        assert summary.parse_errors == 1
        assert len(failures) == 1
        assert not failures[0].success

    @pytest.mark.asyncio
    async def test_audit_log_exported_after_commit(self, store, settings):
        export_settings = settings.model_copy(update={"export_audit_log": True})
        service = ReconciliationService(store, export_settings, AuditLogger("export", export_settings))
        await load_inter_pag_day(service)

        await service.open_session("inter_pag", DAY, preselect_all=True)
        await service.commit()

        exported = export_settings.reports_dir / "audit_export.json"
        assert exported.exists()
        assert service.audit.summary()["action_counts"]["commit_completed"] == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
