"""Reconciliation flows: one per settlement channel."""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from ..config import Settings, get_settings
from ..models import ReconciliationType, SettlementState, SplitMode
from ..storage import SettlementEntryFilter, TransactionFilter
from .classification import COMPLEX

CANDIDATE_STATES = frozenset({SettlementState.PENDING, SettlementState.CLASSIFIED})


@dataclass
class FlowConfig:
    """How candidate transactions and settlement entries of one channel are matched and split."""
    name: str
    label: str
    reconciliation_type: ReconciliationType
    window_days: int
    split_mode: SplitMode
    transaction_filter: TransactionFilter = field(default_factory=TransactionFilter)
    entry_channels: FrozenSet[str] = frozenset()

    # None: decide per entry from its type; True/False: fixed for the whole flow
    debit_flow: Optional[bool] = None

    def entry_filter(self) -> SettlementEntryFilter:
        return SettlementEntryFilter(channels=set(self.entry_channels))


def build_flows(settings: Optional[Settings] = None) -> Dict[str, FlowConfig]:
    """Flows keyed by name, with windows taken from settings."""
    settings = settings or get_settings()

    flows = [
        FlowConfig(
            name="inter_pag",
            label="Inter Pag",
            reconciliation_type=ReconciliationType.INTER_PAG_N_TO_M,
            window_days=settings.inter_pag_window_days,
            split_mode=SplitMode.PERCENTAGE,
            transaction_filter=TransactionFilter(
                states=CANDIDATE_STATES,
                description_contains="INTER PAG",
                candidates_only=True,
            ),
            entry_channels=frozenset({"inter_pag"}),
        ),
        FlowConfig(
            name="pix_inter",
            label="PIX Inter",
            reconciliation_type=ReconciliationType.PIX_INTER_N_TO_M,
            window_days=settings.pix_inter_window_days,
            split_mode=SplitMode.PRODUCT_TYPE,
            transaction_filter=TransactionFilter(
                states=CANDIDATE_STATES,
                sources={"Inter"},
                description_excludes="INTER PAG",
                sign=1,
                candidates_only=True,
            ),
            entry_channels=frozenset({"pix"}),
            debit_flow=True,
        ),
        FlowConfig(
            name="ton_maquininha",
            label="TON Maquininha",
            reconciliation_type=ReconciliationType.TON_MANUAL_N_TO_M,
            window_days=settings.ton_maquininha_window_days,
            split_mode=SplitMode.PRODUCT_TYPE,
            transaction_filter=TransactionFilter(
                states=CANDIDATE_STATES,
                accounts={"Stone"},
                sign=1,
                candidates_only=True,
            ),
            entry_channels=frozenset({"ton_maquininha"}),
            debit_flow=True,
        ),
        FlowConfig(
            name="ton_link",
            label="TON Link",
            reconciliation_type=ReconciliationType.TON_MANUAL_N_TO_M,
            window_days=settings.ton_link_window_days,
            split_mode=SplitMode.PRODUCT_TYPE,
            transaction_filter=TransactionFilter(
                states=CANDIDATE_STATES,
                accounts={"Stone"},
                sign=1,
                candidates_only=True,
            ),
            entry_channels=frozenset({"ton_link"}),
            debit_flow=True,
        ),
        FlowConfig(
            name="cremacao",
            label="Cremações",
            reconciliation_type=ReconciliationType.CREMACAO_CREATE_NEW,
            window_days=settings.cremacao_window_days,
            split_mode=SplitMode.LEDGER,
            transaction_filter=TransactionFilter(
                states=CANDIDATE_STATES,
                classifications={COMPLEX},
                sign=-1,
                candidates_only=True,
            ),
            entry_channels=frozenset({"cremacao"}),
        ),
    ]
    return {flow.name: flow for flow in flows}
