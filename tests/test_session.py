"""
Tests for the match session state machine.
"""

import copy
import pytest
from datetime import date

from conciliacao.errors import AlreadyConsumedError, SelectionError, SessionStateError
from conciliacao.models import DayBucket, SessionState, SplitType
from conciliacao.reconciliation import MatchSession, build_flows
from conciliacao.reconciliation.classification import COMPLEX


DAY = date(2025, 7, 10)


@pytest.fixture
def flows(settings):
    return build_flows(settings)


@pytest.fixture
def bucket(make_transaction, make_entry):
    """One 500,00 deposit explained by a 520,00 payout net of a 20,00 machine fee."""
    return DayBucket(
        day=DAY,
        transactions=[make_transaction("T1", 50000)],
        entries=[
            make_entry("C1", -2000, entry_type="116 - Tarifa"),
            make_entry("E1", 52000, contract_id="CTR-IND"),
        ],
    )


@pytest.fixture
def session(bucket, flows, settings, make_rule):
    """Create an inter_pag session over the bucket."""
    return MatchSession(bucket, flows["inter_pag"], [make_rule("CTR-IND", "50", "50")], settings)


class TestMatchSessionSelection:
    """Tests for selection and the running balance."""

    def test_states_follow_selection(self, session):
        assert session.state == SessionState.EMPTY

        snapshot = session.toggle_transaction("T1")
        assert snapshot.state == SessionState.SELECTING

        snapshot = session.toggle_entry("E1")
        assert snapshot.state == SessionState.UNBALANCED

    def test_fee_entry_balances_the_day(self, session):
        """Without the fee the day is 20,00 short; with it the children net to 500,00."""
        session.toggle_transaction("T1")
        snapshot = session.toggle_entry("E1")

        assert snapshot.generated_total_cents == 52000
        assert snapshot.difference_cents == -2000
        assert not snapshot.is_balanced

        snapshot = session.toggle_entry("C1")

        assert snapshot.state == SessionState.BALANCED
        assert snapshot.generated_total_cents == 50000
        assert snapshot.difference_cents == 0
        assert sorted(c.amount_cents for c in snapshot.generated_preview) == [-2000, 26000, 26000]
        assert {c.split_type for c in snapshot.generated_preview} == {
            SplitType.CATALOG, SplitType.PLANS, SplitType.COST,
        }

    def test_cost_entry_is_deferred_until_whole_day_selected(
        self, flows, settings, make_transaction, make_entry, make_rule
    ):
        bucket = DayBucket(
            day=DAY,
            transactions=[make_transaction("T1", 30000), make_transaction("T2", 20000)],
            entries=[
                make_entry("C1", -2000, entry_type="116 - Tarifa"),
                make_entry("E1", 52000, contract_id="CTR-IND"),
            ],
        )
        session = MatchSession(bucket, flows["inter_pag"], [make_rule("CTR-IND", "50", "50")], settings)

        session.toggle_transaction("T1")
        session.toggle_entry("E1")
        snapshot = session.toggle_entry("C1")

        assert snapshot.deferred_cost_entry_ids == ["C1"]
        assert snapshot.generated_total_cents == 52000

        snapshot = session.toggle_transaction("T2")

        assert snapshot.deferred_cost_entry_ids == []
        assert snapshot.state == SessionState.BALANCED

    def test_toggle_twice_deselects(self, session):
        session.toggle_transaction("T1")
        snapshot = session.toggle_transaction("T1")

        assert snapshot.selected_transaction_ids == []
        assert snapshot.state == SessionState.EMPTY

    def test_select_all(self, session):
        snapshot = session.select_all()

        assert snapshot.selected_transaction_ids == ["T1"]
        assert snapshot.selected_entry_ids == ["C1", "E1"]
        assert snapshot.cost_entry_ids == ["C1"]
        assert snapshot.is_balanced

    def test_unknown_ids_rejected(self, session):
        with pytest.raises(SelectionError):
            session.toggle_transaction("NOPE")
        with pytest.raises(SelectionError):
            session.toggle_entry("NOPE")

    def test_consumed_entry_cannot_be_selected(self, session, bucket):
        """An entry consumed since the bucket was built is rejected on selection."""
        fresh = copy.deepcopy(bucket.get_entry("E1"))
        fresh.consumed = True

        with pytest.raises(AlreadyConsumedError) as exc_info:
            session.toggle_entry("E1", current=fresh)

        assert exc_info.value.entry_ids == ["E1"]
        assert "E1" not in session.selected_entry_ids

    def test_select_all_rejects_entries_consumed_since_opening(self, session, bucket):
        fresh = copy.deepcopy(bucket.entries)
        fresh[1].consumed = True

        with pytest.raises(AlreadyConsumedError) as exc_info:
            session.select_all(fresh)

        assert exc_info.value.entry_ids == ["E1"]
        assert session.selected_entry_ids == set()
        assert session.state == SessionState.EMPTY

    def test_select_all_uses_fresh_entries(self, session, bucket):
        fresh = copy.deepcopy(bucket.entries)

        snapshot = session.select_all(fresh)

        assert snapshot.selected_entry_ids == ["C1", "E1"]
        assert snapshot.is_balanced


class TestMatchSessionRules:
    """Tests for blocked and fallback splits."""

    def test_entry_without_rule_is_blocked(self, bucket, flows, settings):
        session = MatchSession(bucket, flows["inter_pag"], [], settings)

        snapshot = session.select_all()

        assert list(snapshot.blocked_entries) == ["E1"]
        assert snapshot.state == SessionState.UNBALANCED

    def test_fallback_classification(self, bucket, flows, settings):
        fallback_settings = settings.model_copy(update={"no_rule_fallback_classification": "fallback-leaf"})
        session = MatchSession(bucket, flows["inter_pag"], [], fallback_settings)

        snapshot = session.select_all()

        assert snapshot.blocked_entries == {}
        assert snapshot.is_balanced
        assert [c.split_type for c in snapshot.generated_preview] == [SplitType.COST, SplitType.FALLBACK]

    def test_ledger_flow_has_no_cost_entries(self, flows, settings, make_transaction, make_entry):
        bucket = DayBucket(
            day=DAY,
            window_days=31,
            transactions=[make_transaction("T1", -35000, classification=COMPLEX)],
            entries=[make_entry("L1", 35000, date(2025, 7, 5), entry_type="116", channel="cremacao")],
        )
        session = MatchSession(bucket, flows["cremacao"], [], settings)

        snapshot = session.select_all()

        assert snapshot.cost_entry_ids == []
        assert snapshot.is_balanced
        assert snapshot.generated_preview[0].amount_cents == -35000


class TestMatchSessionLifecycle:
    """Tests for cancel and commit locking."""

    def test_cancel_closes_session(self, session):
        session.select_all()
        snapshot = session.cancel()

        assert snapshot.state == SessionState.CLOSED
        assert snapshot.selected_transaction_ids == []
        with pytest.raises(SessionStateError):
            session.toggle_transaction("T1")
        with pytest.raises(SessionStateError):
            session.preview_split()

    def test_selection_locked_while_committing(self, session):
        session.select_all()
        session.begin_commit()

        assert session.state == SessionState.COMMITTING
        with pytest.raises(SessionStateError):
            session.toggle_transaction("T1")
        with pytest.raises(SessionStateError):
            session.select_all()
        with pytest.raises(SessionStateError):
            session.cancel()

    def test_abort_commit_restores_selection(self, session):
        session.select_all()
        session.begin_commit()
        session.abort_commit()

        snapshot = session.snapshot()
        assert snapshot.state == SessionState.BALANCED
        assert snapshot.selected_entry_ids == ["C1", "E1"]

    def test_commit_plan_stamps_group(self, session):
        session.select_all()
        plan = session.build_commit_plan()

        assert plan.consumed_entry_ids == ["C1", "E1"]
        assert all(c.reconciliation_group == plan.commit_key for c in plan.children)
        assert plan.commit_key.startswith("INTER_PAG_N_TO_M_20250710_")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
