"""
Reconciliation service - operator-facing coordinator.

Wires the store, matcher, session, split generator and committer together
for one operator context. An operator has at most one active session;
every session operation returns a SessionSnapshot for display.
"""

import asyncio
import dataclasses
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

import structlog

from ..config import Settings, get_settings
from ..errors import AlreadyConsumedError, SelectionError, SessionStateError
from ..ingestion import (
    PercentageRow,
    RawStatementLine,
    SettlementImporter,
    SettlementRow,
    StatementImporter,
)
from ..models import (
    AuditAction,
    CommitResult,
    DayBucket,
    ImportSummary,
    SessionSnapshot,
    SessionState,
)
from ..storage import LedgerStore, TransactionFilter
from ..utils.audit_logger import AuditLogger
from .committer import ReconciliationCommitter
from .flows import FlowConfig, build_flows
from .matcher import DayBucketMatcher
from .session import MatchSession

logger = structlog.get_logger()


class ReconciliationService:
    """
    One operator's reconciliation workspace.

    Holds the active match session and exposes the operations the
    presentation layer needs: browse day buckets, select, preview,
    commit or cancel, plus the imports that feed the ledger.
    """

    def __init__(
        self,
        store: LedgerStore,
        settings: Optional[Settings] = None,
        audit: Optional[AuditLogger] = None,
        flows: Optional[Dict[str, FlowConfig]] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.audit = audit or AuditLogger(f"operator_{uuid4().hex[:8]}", self.settings)
        self.flows = flows or build_flows(self.settings)

        self.matcher = DayBucketMatcher()
        self.committer = ReconciliationCommitter(store, self.settings, self.audit)
        self.statement_importer = StatementImporter(store, self.settings)
        self.settlement_importer = SettlementImporter(store, self.settings)

        self.session: Optional[MatchSession] = None

    def get_flow(self, name: str) -> FlowConfig:
        flow = self.flows.get(name)
        if flow is None:
            raise SelectionError(f"Unknown reconciliation flow: {name}")
        return flow

    async def list_buckets(
        self,
        flow_name: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> List[DayBucket]:
        """Day buckets of a flow, oldest first."""
        flow = self.get_flow(flow_name)

        transaction_filter = dataclasses.replace(
            flow.transaction_filter, date_from=date_from, date_to=date_to
        )
        entry_filter = flow.entry_filter()
        if date_from:
            entry_filter.date_from = date_from - timedelta(days=flow.window_days)
        entry_filter.date_to = date_to

        transactions = await self.store.list_transactions(transaction_filter)
        entries = await self.store.list_settlement_entries(entry_filter)
        buckets = self.matcher.bucket(transactions, entries, flow.window_days)
        return list(buckets.values())

    async def open_session(
        self,
        flow_name: str,
        day: date,
        preselect_all: bool = False,
    ) -> SessionSnapshot:
        """Open a session on one day. A previous, uncommitted session is cancelled."""
        if self.session and self.session.state == SessionState.COMMITTING:
            raise SessionStateError("A commit is in progress")
        if self.session and self.session.state != SessionState.CLOSED:
            self.cancel()

        flow = self.get_flow(flow_name)
        buckets = await self.list_buckets(flow_name, day, day)
        if not buckets:
            raise SelectionError(f"No candidate transactions for {flow.label} on {day}")
        bucket = buckets[0]

        rules = await self.store.list_percentage_rules(
            entry_ids=[e.id for e in bucket.entries],
            contract_ids={e.contract_id for e in bucket.entries if e.contract_id},
        )
        self.session = MatchSession(bucket, flow, rules, self.settings)

        self.audit.record(
            AuditAction.SESSION_OPENED,
            f"Session opened for {flow.label} on {day}",
            transaction_ids=[t.id for t in bucket.transactions],
            entry_ids=[e.id for e in bucket.entries],
            session_id=self.session.id,
        )

        if preselect_all:
            return await self.select_all()
        return self.session.snapshot()

    def _active_session(self) -> MatchSession:
        if self.session is None or self.session.state == SessionState.CLOSED:
            raise SessionStateError("No open session")
        return self.session

    def snapshot(self) -> SessionSnapshot:
        if self.session is None:
            raise SessionStateError("No open session")
        return self.session.snapshot()

    def toggle_transaction(self, transaction_id: str) -> SessionSnapshot:
        return self._active_session().toggle_transaction(transaction_id)

    def _reject_consumed(self, session: MatchSession, error: AlreadyConsumedError) -> None:
        self.audit.record(
            AuditAction.SELECTION_REJECTED,
            "Selection rejected: entry already consumed",
            entry_ids=error.entry_ids,
            session_id=session.id,
            success=False,
            error_message=str(error),
        )

    async def toggle_entry(self, entry_id: str) -> SessionSnapshot:
        """Toggle an entry, re-reading it from the store before selecting it."""
        session = self._active_session()
        current = None
        if entry_id not in session.selected_entry_ids:
            found = await self.store.get_settlement_entries([entry_id])
            if not found:
                raise SelectionError(f"Settlement entry {entry_id} no longer exists")
            current = found[0]

        try:
            return session.toggle_entry(entry_id, current)
        except AlreadyConsumedError as e:
            self._reject_consumed(session, e)
            raise

    async def select_all(self) -> SessionSnapshot:
        """Select the whole bucket, re-reading its entries from the store first."""
        session = self._active_session()
        entry_ids = [e.id for e in session.bucket.entries]
        current = await self.store.get_settlement_entries(entry_ids)
        missing = sorted(set(entry_ids) - {e.id for e in current})
        if missing:
            raise SelectionError(f"Settlement entries no longer exist: {', '.join(missing)}")

        try:
            return session.select_all(current)
        except AlreadyConsumedError as e:
            self._reject_consumed(session, e)
            raise

    def preview_split(self) -> SessionSnapshot:
        return self._active_session().preview_split()

    async def commit(self, override_balance: bool = False) -> CommitResult:
        result = await self.committer.commit(self._active_session(), override_balance)
        if self.settings.export_audit_log:
            await asyncio.to_thread(self.audit.export_to_file)
        return result

    def cancel(self) -> SessionSnapshot:
        session = self._active_session()
        snapshot = session.cancel()
        self.audit.record(
            AuditAction.SESSION_CANCELLED,
            "Session cancelled",
            session_id=session.id,
        )
        return snapshot

    async def import_statement(
        self,
        lines: Iterable[RawStatementLine],
        locale: Optional[str] = None,
    ) -> ImportSummary:
        summary = await self.statement_importer.import_lines(lines, locale)
        self._record_import(AuditAction.STATEMENT_IMPORTED, "Statement imported", summary)
        return summary

    async def import_settlements(
        self,
        rows: Iterable[SettlementRow],
        locale: Optional[str] = None,
    ) -> ImportSummary:
        summary = await self.settlement_importer.import_entries(rows, locale)
        self._record_import(AuditAction.SETTLEMENTS_IMPORTED, "Settlement entries imported", summary)
        return summary

    async def import_percentage_rules(
        self,
        rows: Iterable[PercentageRow],
        locale: Optional[str] = None,
    ) -> ImportSummary:
        summary = await self.settlement_importer.import_rules(rows, locale)
        self._record_import(AuditAction.RULES_IMPORTED, "Percentage rules imported", summary)
        return summary

    async def import_pasted_ledger(self, text: str, locale: Optional[str] = None) -> ImportSummary:
        summary = await self.settlement_importer.import_pasted_ledger(text, locale)
        self._record_import(AuditAction.SETTLEMENTS_IMPORTED, "Pasted ledger imported", summary)
        return summary

    def _record_import(self, action: AuditAction, message: str, summary: ImportSummary) -> None:
        self.audit.record(
            action,
            message,
            total=summary.total,
            added=summary.added,
            duplicates=summary.duplicates,
            skipped=summary.skipped,
            parse_errors=summary.parse_errors,
        )
        if summary.parse_errors:
            self.audit.record(
                AuditAction.PARSE_FAILED,
                f"{summary.parse_errors} rows could not be parsed",
                success=False,
                error_message="; ".join(summary.errors[:20]),
            )

    async def ledger_balance_cents(self, filter: Optional[TransactionFilter] = None) -> int:
        """Sum of the transactions that count toward the balance (classified lines and split children)."""
        transactions = await self.store.list_transactions(filter)
        return sum(t.amount_cents for t in transactions if t.counts_toward_balance)
