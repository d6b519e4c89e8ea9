"""
Reconciliation committer.

Persists a match session in three idempotent steps:

1. upsert the split children (ids are deterministic);
2. mark each parent transaction reconciled, tagged with the commit key;
3. mark the consumed settlement entries, tagged with the commit key.

A failure at any step raises PersistenceError and leaves the session in
its selection state. Re-running the same commit converges: children are
overwritten with the same ids, and parents or entries already tagged with
this commit key are treated as done.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import Settings, get_settings
from ..errors import (
    AlreadyConsumedError,
    AlreadyReconciledError,
    ImbalancedSelectionError,
    PersistenceError,
    ReconciliationError,
    SelectionError,
    SessionStateError,
)
from ..models import AuditAction, CommitResult, SessionState, SettlementState
from ..storage import LedgerStore
from ..utils.audit_logger import AuditLogger
from .session import CommitPlan, MatchSession

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconciliationCommitter:
    """Validates and persists match sessions."""

    def __init__(
        self,
        store: LedgerStore,
        settings: Optional[Settings] = None,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.audit = audit or AuditLogger("committer", self.settings)
        self.clock = clock

    async def commit(self, session: MatchSession, override_balance: bool = False) -> CommitResult:
        """
        Commit the session's selection.

        Args:
            session: Session in SELECTING/BALANCED/UNBALANCED state
            override_balance: Commit even if the totals differ beyond tolerance

        Returns:
            CommitResult with the created children and consumed entries

        Raises:
            SelectionError: nothing to commit on one side
            NoRuleError / InvalidRuleError: an entry's split is blocked
            ImbalancedSelectionError: unbalanced and not overridden
            AlreadyConsumedError / AlreadyReconciledError: lost a race
            PersistenceError: store failure after all retries
        """
        if session.state in (SessionState.CLOSED, SessionState.COMMITTING):
            raise SessionStateError(f"Session {session.id} cannot commit in state {session.state.value}")
        if not session.selected_transaction_ids or not session.selected_entry_ids:
            raise SelectionError("Select at least one transaction and one settlement entry")

        preview = session.build_commit_plan()
        if preview.blocked:
            raise next(iter(preview.blocked.values()))
        if not preview.consumed_entry_ids:
            raise SelectionError("No selected settlement entry can be committed yet")

        balanced = abs(preview.difference_cents) <= self.settings.balance_tolerance_cents
        if not balanced and not override_balance:
            self.audit.record(
                AuditAction.SELECTION_REJECTED,
                "Commit refused: selection is unbalanced",
                transaction_ids=preview.parent_ids,
                entry_ids=preview.consumed_entry_ids,
                session_id=session.id,
                success=False,
                difference_cents=preview.difference_cents,
            )
            raise ImbalancedSelectionError(
                f"Selection is unbalanced by {preview.difference_cents} cents",
                difference_cents=preview.difference_cents,
            )

        session.begin_commit()
        committed_at = self.clock()
        plan = session.build_commit_plan(committed_at)

        self.audit.record(
            AuditAction.COMMIT_STARTED,
            "Commit started",
            transaction_ids=plan.parent_ids,
            entry_ids=plan.consumed_entry_ids,
            session_id=session.id,
            commit_key=plan.commit_key,
            children=len(plan.children),
        )

        try:
            await self._persist_with_retry(plan)
        except ReconciliationError as e:
            session.abort_commit()
            self.audit.record(
                AuditAction.COMMIT_FAILED,
                "Commit failed",
                transaction_ids=plan.parent_ids,
                entry_ids=plan.consumed_entry_ids,
                session_id=session.id,
                success=False,
                error_message=str(e),
                commit_key=plan.commit_key,
            )
            raise
        except asyncio.CancelledError:
            session.abort_commit()
            raise

        result = CommitResult(
            commit_key=plan.commit_key,
            reconciliation_type=session.flow.reconciliation_type,
            day=session.day,
            reconciled_parent_ids=plan.parent_ids,
            created_children=plan.children,
            consumed_entry_ids=plan.consumed_entry_ids,
            transactions_total_cents=plan.transactions_total_cents,
            generated_total_cents=plan.generated_total_cents,
            difference_cents=plan.difference_cents,
            override_used=not balanced,
            committed_at=committed_at,
        )
        session.complete_commit(result)

        self.audit.record(
            AuditAction.COMMIT_COMPLETED,
            "Reconciliation committed",
            transaction_ids=result.reconciled_parent_ids,
            entry_ids=result.consumed_entry_ids,
            session_id=session.id,
            commit_key=result.commit_key,
            children=len(result.created_children),
            difference_cents=result.difference_cents,
            override_used=result.override_used,
        )
        return result

    async def _call(self, operation: str, call: Awaitable[Any]) -> Any:
        """Run one store call under the persistence timeout."""
        timeout = self.settings.persistence_timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceError(f"{operation} timed out after {timeout}s") from e
        except ReconciliationError:
            raise
        except Exception as e:
            raise PersistenceError(f"{operation} failed: {e}") from e

    async def _persist_with_retry(self, plan: CommitPlan) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.commit_retry_attempts)),
            wait=wait_exponential(multiplier=self.settings.commit_retry_wait_seconds, max=10),
            retry=retry_if_exception_type(PersistenceError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying commit",
                        commit_key=plan.commit_key,
                        attempt=attempt.retry_state.attempt_number,
                    )
                await self._check_still_available(plan)
                await self._persist(plan)

    async def _check_still_available(self, plan: CommitPlan) -> None:
        """Reject entries and parents taken by a different commit since selection."""
        entries = await self._call(
            "list_settlement_entries",
            self.store.get_settlement_entries(plan.consumed_entry_ids),
        )
        found = {e.id for e in entries}
        missing = [i for i in plan.consumed_entry_ids if i not in found]
        if missing:
            raise SelectionError(f"Settlement entries no longer exist: {', '.join(missing)}")

        taken = sorted(e.id for e in entries if e.consumed and e.consumed_by != plan.commit_key)
        if taken:
            raise AlreadyConsumedError(
                f"Settlement entries already consumed: {', '.join(taken)}",
                entry_ids=taken,
            )

        parents = await self._call("list_transactions", self.store.get_transactions(plan.parent_ids))
        reconciled = sorted(
            t.id for t in parents
            if t.state == SettlementState.RECONCILED and t.reconciliation_group != plan.commit_key
        )
        if reconciled:
            raise AlreadyReconciledError(
                f"Transactions already reconciled: {', '.join(reconciled)}",
                transaction_ids=reconciled,
            )

    async def _persist(self, plan: CommitPlan) -> None:
        await self._call("write_transactions", self.store.write_transactions(plan.children))
        logger.debug("Children persisted", commit_key=plan.commit_key, children=len(plan.children))

        for parent_id in plan.parent_ids:
            await self._call(
                "update_transaction_state",
                self.store.update_transaction_state(
                    parent_id, SettlementState.RECONCILED, plan.commit_key
                ),
            )
        logger.debug("Parents reconciled", commit_key=plan.commit_key, parents=len(plan.parent_ids))

        await self._call(
            "mark_entries_consumed",
            self.store.mark_entries_consumed(plan.consumed_entry_ids, plan.commit_key),
        )
        logger.debug("Entries consumed", commit_key=plan.commit_key, entries=len(plan.consumed_entry_ids))
