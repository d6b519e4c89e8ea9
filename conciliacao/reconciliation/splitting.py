"""
Split generation.

Turns one settlement entry into the child transactions that replace the
selected bank transactions in the ledger:

- revenue entries are split into catalog and plans shares by a contract
  percentage rule (explicit, or derived from the entry type);
- operational-cost entries become a single negative cost child;
- pasted ledger lines become one child each.

Child values always add up exactly to the entry value: shares are rounded
half up to the cent and the residual cent goes to the largest share.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional

import structlog

from ..config import Settings, get_settings
from ..errors import InvalidRuleError, NoRuleError
from ..ingestion.identity import child_transaction_id
from ..models import (
    ContractPercentageRule,
    ReconciliationMetadata,
    ReconciliationType,
    SettlementEntry,
    SettlementState,
    SplitChildTransaction,
    SplitMode,
    SplitType,
    Transaction,
)
from .classification import (
    ABSORBED_COSTS,
    cremation_classification,
    is_debit_flow,
    is_individual_contract,
    product_share,
    revenue_classification,
    revenue_label,
)

logger = structlog.get_logger()

ORIGIN_TAGS = {
    SplitType.CATALOG: "[CATÁLOGO]",
    SplitType.PLANS: "[PLANOS]",
    SplitType.COST: "[CUSTO OPERACIONAL]",
    SplitType.FALLBACK: "[SEM REGRA]",
}

HUNDRED = Decimal("100")


@dataclass
class ParentContext:
    """The bank transactions a set of children will replace."""
    reconciliation_type: ReconciliationType
    day: date
    parents: List[Transaction] = field(default_factory=list)
    label: str = ""
    reconciliation_group: Optional[str] = None
    committed_at: Optional[datetime] = None

    @property
    def parent_ids(self) -> List[str]:
        return sorted(t.id for t in self.parents)

    @property
    def base(self) -> Optional[Transaction]:
        """Earliest parent (by date, then id); children inherit its source fields."""
        if not self.parents:
            return None
        return min(self.parents, key=lambda t: (t.transaction_date or self.day, t.id))


class RuleBook:
    """Percentage rules indexed by settlement entry id and by contract id."""

    def __init__(self, rules: Iterable[ContractPercentageRule] = ()):
        self.by_entry: Dict[str, ContractPercentageRule] = {}
        self.by_contract: Dict[str, ContractPercentageRule] = {}
        for rule in rules:
            if rule.settlement_entry_id:
                self.by_entry[rule.settlement_entry_id] = rule
            else:
                self.by_contract[rule.contract_id] = rule

    def __len__(self) -> int:
        return len(self.by_entry) + len(self.by_contract)

    def lookup(self, entry: SettlementEntry) -> Optional[ContractPercentageRule]:
        rule = self.by_entry.get(entry.id)
        if rule is None and entry.contract_id:
            rule = self.by_contract.get(entry.contract_id)
        return rule


def resolve_rule(
    entry: SettlementEntry,
    split_mode: SplitMode,
    rules: RuleBook,
) -> Optional[ContractPercentageRule]:
    """Percentage rule for a revenue entry, or None when the entry has none."""
    if split_mode == SplitMode.PERCENTAGE:
        return rules.lookup(entry)
    if split_mode == SplitMode.PRODUCT_TYPE:
        share = product_share(entry.entry_type)
        if share is None:
            return None
        return ContractPercentageRule.whole(share, contract_id=entry.contract_id or "")
    raise ValueError(f"Split mode {split_mode.value} does not use percentage rules")


def share_cents(total_cents: int, percent: Decimal) -> int:
    """Share of an amount in cents, rounded half up to the cent."""
    exact = Decimal(total_cents) * percent / HUNDRED
    return int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class SplitGenerator:
    """Builds split children for settlement entries."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def validate_rule(self, rule: ContractPercentageRule) -> None:
        for name, percent in (("catalog", rule.catalog_percent), ("plans", rule.plans_percent)):
            if not percent.is_finite() or percent < 0 or percent > HUNDRED:
                raise InvalidRuleError(
                    f"Contract {rule.contract_id}: {name} share {percent} outside [0, 100]",
                    contract_id=rule.contract_id,
                )

        total = rule.catalog_percent + rule.plans_percent
        if abs(total - HUNDRED) > self.settings.rule_tolerance_percent:
            raise InvalidRuleError(
                f"Contract {rule.contract_id}: shares add up to {total}, expected 100",
                contract_id=rule.contract_id,
            )

    def split(
        self,
        entry: SettlementEntry,
        rule: Optional[ContractPercentageRule],
        parent: ParentContext,
        debit_flow: Optional[bool] = None,
    ) -> List[SplitChildTransaction]:
        """
        Split a revenue entry into catalog and plans children.

        Args:
            entry: Revenue settlement entry
            rule: Percentage rule for the entry (None raises NoRuleError)
            parent: Transactions being replaced
            debit_flow: Fixed revenue kind for the flow; None decides from entry type

        Returns:
            One child per non-zero share; values add up to the entry value
        """
        if rule is None:
            raise NoRuleError(f"No percentage rule for settlement entry {entry.id}", entry_id=entry.id)
        self.validate_rule(rule)

        shares = [
            (SplitType.CATALOG, rule.catalog_percent),
            (SplitType.PLANS, rule.plans_percent),
        ]
        values = [share_cents(entry.value_cents, percent) for _, percent in shares]

        residual = entry.value_cents - sum(values)
        if residual:
            # max() keeps the first of equal shares, so ties go to catalog
            largest = max(range(len(shares)), key=lambda i: shares[i][1])
            values[largest] += residual
            logger.debug(
                "Rounding residual assigned",
                entry_id=entry.id,
                residual_cents=residual,
                split_type=shares[largest][0].value,
            )

        debit = is_debit_flow(entry.entry_type) if debit_flow is None else debit_flow
        contract = rule.contract_id or entry.contract_id or ""
        individual = is_individual_contract(contract)
        installment = f" - Parcela {entry.installment}" if not debit and entry.installment else ""

        children = []
        for (split_type, percent), value in zip(shares, values):
            if value == 0:
                continue
            description = f"{revenue_label(debit, individual, split_type)} - {contract or entry.id}{installment}"
            children.append(self._child(
                entry,
                parent,
                split_type=split_type,
                amount_cents=value,
                classification=revenue_classification(debit, individual, split_type),
                description=description,
                percentage=percent,
                contract_id=contract or None,
            ))
        return children

    def split_cost(self, entry: SettlementEntry, parent: ParentContext) -> List[SplitChildTransaction]:
        """Single negative child for an operational-cost entry."""
        if entry.value_cents == 0:
            return []
        description = f"Custo {parent.label} - {entry.entry_type or 'Maquininha'} - {entry.id}".strip()
        return [self._child(
            entry,
            parent,
            split_type=SplitType.COST,
            amount_cents=-abs(entry.value_cents),
            classification=ABSORBED_COSTS,
            description=description,
            contract_id=entry.contract_id,
        )]

    def split_ledger(
        self,
        entry: SettlementEntry,
        parent: ParentContext,
        sign: Optional[int] = None,
    ) -> List[SplitChildTransaction]:
        """
        One child per pasted ledger line, dated on the ledger line.
        Pasted values are magnitudes; `sign` books them on the side of the
        flow's transactions (None keeps the pasted sign).
        """
        if entry.value_cents == 0:
            return []
        amount = entry.value_cents if sign is None else sign * abs(entry.value_cents)
        return [self._child(
            entry,
            parent,
            split_type=SplitType.LEDGER,
            amount_cents=amount,
            classification=cremation_classification(entry.entry_type),
            description=entry.description,
            transaction_date=entry.entry_date,
        )]

    def split_fallback(
        self,
        entry: SettlementEntry,
        parent: ParentContext,
        classification: str,
    ) -> List[SplitChildTransaction]:
        """Whole entry booked to an explicit fallback classification."""
        if entry.value_cents == 0:
            return []
        return [self._child(
            entry,
            parent,
            split_type=SplitType.FALLBACK,
            amount_cents=entry.value_cents,
            classification=classification,
            description=f"{parent.label} - {entry.entry_type or entry.id}".strip(" -"),
            contract_id=entry.contract_id,
            fallback_used=True,
        )]

    def _child(
        self,
        entry: SettlementEntry,
        parent: ParentContext,
        split_type: SplitType,
        amount_cents: int,
        classification: str,
        description: str,
        percentage: Optional[Decimal] = None,
        contract_id: Optional[str] = None,
        transaction_date: Optional[date] = None,
        fallback_used: bool = False,
    ) -> SplitChildTransaction:
        base = parent.base
        origin = base.origin_description if base else ""
        tag = ORIGIN_TAGS.get(split_type)
        if tag:
            origin = f"{origin} {tag}".strip()

        return SplitChildTransaction(
            id=child_transaction_id(parent.parent_ids, entry.id, split_type),
            source=base.source if base else "",
            account=base.account if base else None,
            amount_cents=amount_cents,
            transaction_date=transaction_date or (base.transaction_date if base else parent.day),
            description=description,
            origin_description=origin,
            classification=classification,
            state=SettlementState.CLASSIFIED,
            reconciliation_group=parent.reconciliation_group,
            reconciliation_metadata=ReconciliationMetadata(
                reconciliation_type=parent.reconciliation_type,
                parent_transaction_ids=parent.parent_ids,
                settlement_entry_id=entry.id,
                split_type=split_type,
                split_percentage=percentage,
                contract_id=contract_id,
                entry_date=entry.entry_date,
                entry_value_cents=entry.value_cents,
                entry_type=entry.entry_type,
                fallback_used=fallback_used,
                committed_at=parent.committed_at,
            ),
        )
