"""
Tests for deterministic transaction, child and commit identities.
"""

import pytest
from datetime import date

from conciliacao.ingestion.identity import (
    MAX_AMOUNT_CENTS,
    assign_occurrence_indices,
    child_transaction_id,
    commit_key,
    description_code,
    to_base36,
    transaction_identity,
)
from conciliacao.models import ReconciliationType, SplitType


DAY = date(2025, 7, 10)


class TestTransactionIdentity:
    """Tests for statement line identities."""

    def test_identity_is_deterministic(self):
        """Same fields always produce the same identity."""
        first = transaction_identity("Inter", DAY, "PIX RECEBIDO", 15000, 0)
        second = transaction_identity("Inter", DAY, "PIX RECEBIDO", 15000, 0)

        assert first == second

    def test_identity_layout(self):
        """Source, date, description code, amount code and occurrence are concatenated."""
        identity = transaction_identity("Inter", DAY, "PIX RECEBIDO", 15000, 2)

        assert identity.startswith("INTER20250710")
        assert identity[13:19] == description_code("PIX RECEBIDO")
        assert identity[19:27] == to_base36(15000, 8)
        assert identity.endswith("002")
        assert len(identity) == len("INTER") + 8 + 6 + 8 + 3

    def test_cosmetic_description_changes_keep_identity(self):
        """Whitespace and case differences do not change the identity."""
        a = transaction_identity("Inter", DAY, "Pix   recebido ", 15000)
        b = transaction_identity("Inter", DAY, "PIX RECEBIDO", 15000)

        assert a == b

    def test_different_fields_change_identity(self):
        """Each identity field participates in the identity."""
        base = transaction_identity("Inter", DAY, "PIX RECEBIDO", 15000)

        assert transaction_identity("Stone", DAY, "PIX RECEBIDO", 15000) != base
        assert transaction_identity("Inter", date(2025, 7, 11), "PIX RECEBIDO", 15000) != base
        assert transaction_identity("Inter", DAY, "PIX ENVIADO", 15000) != base
        assert transaction_identity("Inter", DAY, "PIX RECEBIDO", 15001) != base
        assert transaction_identity("Inter", DAY, "PIX RECEBIDO", 15000, 1) != base

    def test_only_magnitude_of_amount_is_encoded(self):
        """A debit and a credit of the same value share the amount code."""
        assert transaction_identity("Inter", DAY, "TARIFA", -990) == \
            transaction_identity("Inter", DAY, "TARIFA", 990)

    def test_occurrence_index_out_of_range(self):
        """Occurrence index must fit three digits."""
        with pytest.raises(ValueError):
            transaction_identity("Inter", DAY, "PIX", 100, 1000)
        with pytest.raises(ValueError):
            transaction_identity("Inter", DAY, "PIX", 100, -1)

    def test_amount_too_large(self):
        """Amounts beyond the eight base-36 digits are rejected."""
        transaction_identity("Inter", DAY, "PIX", MAX_AMOUNT_CENTS)
        with pytest.raises(ValueError):
            transaction_identity("Inter", DAY, "PIX", MAX_AMOUNT_CENTS + 1)

    def test_source_without_alphanumerics(self):
        with pytest.raises(ValueError):
            transaction_identity("--", DAY, "PIX", 100)


class TestOccurrenceIndices:
    """Tests for numbering identical-looking lines."""

    def test_repeated_keys_are_numbered_in_order(self):
        assert assign_occurrence_indices(["a", "b", "a", "a", "b"]) == [0, 0, 1, 2, 1]

    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "Z"
        assert to_base36(36, 3) == "010"
        with pytest.raises(ValueError):
            to_base36(-1)


class TestDerivedIds:
    """Tests for split child ids and commit keys."""

    def test_child_id_ignores_parent_order(self):
        """Parents are sorted before hashing."""
        a = child_transaction_id(["T2", "T1"], "E1", SplitType.CATALOG)
        b = child_transaction_id(["T1", "T2"], "E1", SplitType.CATALOG)

        assert a == b
        assert a.startswith("RC")
        assert a.endswith("CAT")

    def test_child_id_depends_on_split_type(self):
        catalog = child_transaction_id(["T1"], "E1", SplitType.CATALOG)
        plans = child_transaction_id(["T1"], "E1", SplitType.PLANS)

        assert catalog != plans
        assert plans.endswith("PLA")

    def test_commit_key_layout(self):
        key = commit_key(ReconciliationType.INTER_PAG_N_TO_M, DAY, ["T1"], ["E1", "E2"])

        assert key.startswith("INTER_PAG_N_TO_M_20250710_")
        assert key == commit_key(ReconciliationType.INTER_PAG_N_TO_M, DAY, ["T1"], ["E2", "E1"])
        assert key != commit_key(ReconciliationType.INTER_PAG_N_TO_M, DAY, ["T1"], ["E1"])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
