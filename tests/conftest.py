"""
Shared fixtures for the reconciliation engine tests.
"""

from datetime import date
from decimal import Decimal

import pytest

from conciliacao.config import Settings
from conciliacao.models import (
    ContractPercentageRule,
    SettlementEntry,
    SettlementState,
    Transaction,
)


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the user's .env, with instant retries."""
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        reports_dir=tmp_path / "reports",
        commit_retry_attempts=2,
        commit_retry_wait_seconds=0,
        persistence_timeout_seconds=2.0,
    )


@pytest.fixture
def make_transaction():
    """Factory for ledger transactions."""
    def _make(
        id: str,
        amount_cents: int,
        transaction_date: date = date(2025, 7, 10),
        description: str = "PIX RECEBIDO INTER PAG",
        source: str = "Inter",
        account: str = "Inter",
        state: SettlementState = SettlementState.PENDING,
        classification: str = None,
    ) -> Transaction:
        return Transaction(
            id=id,
            source=source,
            account=account,
            amount_cents=amount_cents,
            transaction_date=transaction_date,
            description=description,
            origin_description=description,
            classification=classification,
            state=state,
        )
    return _make


@pytest.fixture
def make_entry():
    """Factory for settlement entries."""
    def _make(
        id: str,
        value_cents: int,
        entry_date: date = date(2025, 7, 10),
        entry_type: str = "Crédito à vista",
        contract_id: str = None,
        channel: str = "inter_pag",
        consumed: bool = False,
        installment: str = None,
    ) -> SettlementEntry:
        return SettlementEntry(
            id=id,
            entry_date=entry_date,
            value_cents=value_cents,
            entry_type=entry_type,
            contract_id=contract_id,
            channel=channel,
            consumed=consumed,
            installment=installment,
        )
    return _make


@pytest.fixture
def make_rule():
    """Factory for contract percentage rules."""
    def _make(
        contract_id: str,
        catalog: str,
        plans: str,
        settlement_entry_id: str = None,
    ) -> ContractPercentageRule:
        return ContractPercentageRule(
            contract_id=contract_id,
            catalog_percent=Decimal(catalog),
            plans_percent=Decimal(plans),
            settlement_entry_id=settlement_entry_id,
        )
    return _make
