"""
Match session: the operator's selection workspace for one day bucket.

States:
    EMPTY -> SELECTING -> BALANCED / UNBALANCED -> COMMITTING -> CLOSED

The generated preview and the balance are recomputed on every change.
While a commit is in flight the selection is locked; a failed commit
returns the session to its selection state unchanged.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Union
from uuid import uuid4

import structlog

from ..config import Settings, get_settings
from ..errors import (
    AlreadyConsumedError,
    InvalidRuleError,
    NoRuleError,
    ReconciliationError,
    SelectionError,
    SessionStateError,
)
from ..ingestion.identity import commit_key
from ..models import (
    CommitResult,
    ContractPercentageRule,
    DayBucket,
    SessionSnapshot,
    SessionState,
    SettlementEntry,
    SplitChildTransaction,
    SplitMode,
    Transaction,
)
from .classification import is_operational_cost
from .flows import FlowConfig
from .splitting import ParentContext, RuleBook, SplitGenerator, resolve_rule

logger = structlog.get_logger()


@dataclass
class CommitPlan:
    """Everything the committer needs to persist one reconciliation."""
    commit_key: str
    parents: List[Transaction] = field(default_factory=list)
    children: List[SplitChildTransaction] = field(default_factory=list)
    consumed_entry_ids: List[str] = field(default_factory=list)
    deferred_cost_entry_ids: List[str] = field(default_factory=list)
    blocked: Dict[str, ReconciliationError] = field(default_factory=dict)
    transactions_total_cents: int = 0
    generated_total_cents: int = 0

    @property
    def difference_cents(self) -> int:
        return self.transactions_total_cents - self.generated_total_cents

    @property
    def parent_ids(self) -> List[str]:
        return [t.id for t in self.parents]


class MatchSession:
    """Selection state over one day bucket of one flow."""

    def __init__(
        self,
        bucket: DayBucket,
        flow: FlowConfig,
        rules: Union[RuleBook, Iterable[ContractPercentageRule]] = (),
        settings: Optional[Settings] = None,
        generator: Optional[SplitGenerator] = None,
    ):
        self.id = str(uuid4())
        self.bucket = bucket
        self.flow = flow
        self.rules = rules if isinstance(rules, RuleBook) else RuleBook(rules)
        self.settings = settings or get_settings()
        self.generator = generator or SplitGenerator(self.settings)

        self._transactions: Dict[str, Transaction] = {t.id: t for t in bucket.transactions}
        self._entries: Dict[str, SettlementEntry] = {e.id: e for e in bucket.entries}
        self._cost_ids: Set[str] = set()
        if flow.split_mode != SplitMode.LEDGER:
            self._cost_ids = {e.id for e in bucket.entries if is_operational_cost(e)}

        self.selected_transaction_ids: Set[str] = set()
        self.selected_entry_ids: Set[str] = set()

        self._committing = False
        self._closed = False
        self.commit_result: Optional[CommitResult] = None

        self._plan = self._build_plan()

    @property
    def day(self):
        return self.bucket.day

    @property
    def state(self) -> SessionState:
        if self._closed:
            return SessionState.CLOSED
        if self._committing:
            return SessionState.COMMITTING
        if not self.selected_transaction_ids and not self.selected_entry_ids:
            return SessionState.EMPTY
        if not self.selected_transaction_ids or not self.selected_entry_ids:
            return SessionState.SELECTING
        if self._plan.blocked:
            return SessionState.UNBALANCED
        if abs(self._plan.difference_cents) <= self.settings.balance_tolerance_cents:
            return SessionState.BALANCED
        return SessionState.UNBALANCED

    def _ensure_editable(self) -> None:
        if self._closed:
            raise SessionStateError(f"Session {self.id} is closed")
        if self._committing:
            raise SessionStateError(f"Session {self.id} is locked while committing")

    def toggle_transaction(self, transaction_id: str) -> SessionSnapshot:
        self._ensure_editable()
        if transaction_id not in self._transactions:
            raise SelectionError(f"Transaction {transaction_id} is not a candidate for {self.day}")

        if transaction_id in self.selected_transaction_ids:
            self.selected_transaction_ids.discard(transaction_id)
        else:
            self.selected_transaction_ids.add(transaction_id)

        self._plan = self._build_plan()
        return self.snapshot()

    def toggle_entry(self, entry_id: str, current: Optional[SettlementEntry] = None) -> SessionSnapshot:
        """
        Toggle a settlement entry.

        `current` is the entry as freshly read from the store; selecting an
        entry that has been consumed since the bucket was built is rejected.
        Deselecting is always allowed.
        """
        self._ensure_editable()
        if entry_id not in self._entries:
            raise SelectionError(f"Settlement entry {entry_id} is not in the window of {self.day}")

        if entry_id in self.selected_entry_ids:
            self.selected_entry_ids.discard(entry_id)
        else:
            entry = current if current is not None else self._entries[entry_id]
            if entry.consumed:
                raise AlreadyConsumedError(
                    f"Settlement entry {entry_id} was already consumed",
                    entry_ids=[entry_id],
                )
            self._entries[entry_id] = entry
            self.selected_entry_ids.add(entry_id)

        self._plan = self._build_plan()
        return self.snapshot()

    def select_all(self, current: Optional[Iterable[SettlementEntry]] = None) -> SessionSnapshot:
        """
        Select every candidate transaction and every entry of the bucket.

        `current` holds the bucket's entries as freshly read from the store.
        If any of them has been consumed since the bucket was built, the
        selection is left unchanged and the consumed ids are reported.
        """
        self._ensure_editable()
        fresh = {e.id: e for e in current or () if e.id in self._entries}
        consumed = sorted(i for i, e in self._entries.items() if fresh.get(i, e).consumed)
        if consumed:
            raise AlreadyConsumedError(
                f"Settlement entries already consumed: {', '.join(consumed)}",
                entry_ids=consumed,
            )

        self._entries.update(fresh)
        self.selected_transaction_ids = set(self._transactions)
        self.selected_entry_ids = set(self._entries)
        self._plan = self._build_plan()
        return self.snapshot()

    def preview_split(self) -> SessionSnapshot:
        if self._closed:
            raise SessionStateError(f"Session {self.id} is closed")
        return self.snapshot()

    def cancel(self) -> SessionSnapshot:
        """Discard the selection. Nothing is persisted."""
        if self._committing:
            raise SessionStateError(f"Session {self.id} is locked while committing")
        if not self._closed:
            self.selected_transaction_ids.clear()
            self.selected_entry_ids.clear()
            self._plan = self._build_plan()
            self._closed = True
            logger.info("Session cancelled", session_id=self.id, day=str(self.day))
        return self.snapshot()

    # Commit hooks, driven by ReconciliationCommitter

    def begin_commit(self) -> None:
        self._ensure_editable()
        self._committing = True

    def build_commit_plan(self, committed_at: Optional[datetime] = None) -> CommitPlan:
        """Final plan with the commit key and commit timestamp stamped on every child."""
        return self._build_plan(committed_at=committed_at, stamp_group=True)

    def complete_commit(self, result: CommitResult) -> None:
        self._committing = False
        self._closed = True
        self.commit_result = result

    def abort_commit(self) -> None:
        self._committing = False
        self._plan = self._build_plan()

    def _is_whole_day_selected(self) -> bool:
        revenue_ids = set(self._entries) - self._cost_ids
        return (
            self.selected_transaction_ids == set(self._transactions)
            and revenue_ids <= self.selected_entry_ids
        )

    def _build_plan(
        self,
        committed_at: Optional[datetime] = None,
        stamp_group: bool = False,
    ) -> CommitPlan:
        parents = [t for t in self.bucket.transactions if t.id in self.selected_transaction_ids]
        entries = [self._entries[e.id] for e in self.bucket.entries if e.id in self.selected_entry_ids]
        include_costs = self._is_whole_day_selected()

        included = [
            e.id for e in entries
            if e.id not in self._cost_ids or include_costs
        ]
        key = commit_key(
            self.flow.reconciliation_type,
            self.day,
            [t.id for t in parents],
            included,
        )
        plan = CommitPlan(commit_key=key, parents=parents)

        context = ParentContext(
            reconciliation_type=self.flow.reconciliation_type,
            day=self.day,
            parents=parents,
            label=self.flow.label,
            reconciliation_group=key if stamp_group else None,
            committed_at=committed_at,
        )

        for entry in entries:
            if entry.id in self._cost_ids:
                if include_costs:
                    plan.children.extend(self.generator.split_cost(entry, context))
                    plan.consumed_entry_ids.append(entry.id)
                else:
                    plan.deferred_cost_entry_ids.append(entry.id)
                continue

            try:
                plan.children.extend(self._split_entry(entry, context))
            except (NoRuleError, InvalidRuleError) as e:
                plan.blocked[entry.id] = e
                continue
            plan.consumed_entry_ids.append(entry.id)

        plan.transactions_total_cents = sum(t.amount_cents for t in parents)
        plan.generated_total_cents = sum(c.amount_cents for c in plan.children)
        return plan

    def _split_entry(self, entry: SettlementEntry, context: ParentContext) -> List[SplitChildTransaction]:
        if self.flow.split_mode == SplitMode.LEDGER:
            return self.generator.split_ledger(entry, context, sign=self.flow.transaction_filter.sign)

        rule = resolve_rule(entry, self.flow.split_mode, self.rules)
        fallback = self.settings.no_rule_fallback_classification
        if rule is None and fallback:
            return self.generator.split_fallback(entry, context, fallback)
        return self.generator.split(entry, rule, context, debit_flow=self.flow.debit_flow)

    def snapshot(self) -> SessionSnapshot:
        plan = self._plan
        return SessionSnapshot(
            session_id=self.id,
            flow=self.flow.name,
            day=self.day,
            state=self.state,
            candidate_transaction_ids=[t.id for t in self.bucket.transactions],
            candidate_entry_ids=[e.id for e in self.bucket.entries],
            cost_entry_ids=[e.id for e in self.bucket.entries if e.id in self._cost_ids],
            selected_transaction_ids=plan.parent_ids,
            selected_entry_ids=[e.id for e in self.bucket.entries if e.id in self.selected_entry_ids],
            transactions_total_cents=plan.transactions_total_cents,
            generated_total_cents=plan.generated_total_cents,
            difference_cents=plan.difference_cents,
            generated_preview=list(plan.children),
            blocked_entries={entry_id: str(e) for entry_id, e in plan.blocked.items()},
            deferred_cost_entry_ids=list(plan.deferred_cost_entry_ids),
            commit_key=self.commit_result.commit_key if self.commit_result else None,
        )
