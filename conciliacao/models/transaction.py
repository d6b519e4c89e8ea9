"""Ledger models for the reconciliation engine."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any

from .enums import (
    ReconciliationType,
    SettlementState,
    SplitType,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ReconciliationMetadata:
    """
    Provenance attached to every split child.
    Records which parents and which settlement entry produced it, and how.
    """
    reconciliation_type: ReconciliationType
    parent_transaction_ids: List[str] = field(default_factory=list)
    settlement_entry_id: Optional[str] = None
    split_type: SplitType = SplitType.CATALOG
    split_percentage: Optional[Decimal] = None
    contract_id: Optional[str] = None

    # Snapshot of the entry at commit time
    entry_date: Optional[date] = None
    entry_value_cents: int = 0
    entry_type: str = ""

    fallback_used: bool = False
    committed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "reconciliation_type": self.reconciliation_type.value,
            "parent_transaction_ids": list(self.parent_transaction_ids),
            "settlement_entry_id": self.settlement_entry_id,
            "split_type": self.split_type.value,
            "split_percentage": str(self.split_percentage) if self.split_percentage is not None else None,
            "contract_id": self.contract_id,
            "entry_date": _iso(self.entry_date),
            "entry_value_cents": self.entry_value_cents,
            "entry_type": self.entry_type,
            "fallback_used": self.fallback_used,
            "committed_at": self.committed_at.isoformat() if self.committed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReconciliationMetadata":
        percentage = data.get("split_percentage")
        return cls(
            reconciliation_type=ReconciliationType(data["reconciliation_type"]),
            parent_transaction_ids=list(data.get("parent_transaction_ids", [])),
            settlement_entry_id=data.get("settlement_entry_id"),
            split_type=SplitType(data.get("split_type", SplitType.CATALOG.value)),
            split_percentage=Decimal(percentage) if percentage is not None else None,
            contract_id=data.get("contract_id"),
            entry_date=_parse_date(data.get("entry_date")),
            entry_value_cents=data.get("entry_value_cents", 0),
            entry_type=data.get("entry_type", ""),
            fallback_used=data.get("fallback_used", False),
            committed_at=_parse_datetime(data.get("committed_at")),
        )


@dataclass
class Transaction:
    """
    A ledger line, either imported from a bank statement or created by a split.
    All monetary amounts are stored in CENTS (integer) to avoid floating point errors.
    Positive amounts are credits, negative amounts are debits.
    """
    # Identity (deterministic, see ingestion.identity)
    id: str = ""
    occurrence_index: int = 0

    # Source
    source: str = ""
    account: Optional[str] = None
    source_row: Optional[int] = None

    # Financial data (ALL IN CENTS - integers only)
    amount_cents: int = 0
    transaction_date: Optional[date] = None

    # Description
    description: str = ""
    origin_description: str = ""
    classification: Optional[str] = None

    # Reconciliation state
    state: SettlementState = SettlementState.PENDING
    reconciliation_group: Optional[str] = None
    reconciliation_metadata: Optional[ReconciliationMetadata] = None

    # Audit
    created_at: datetime = field(default_factory=_utcnow)
    raw_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def amount(self) -> Decimal:
        """Return amount in standard units (reais)."""
        return Decimal(self.amount_cents) / 100

    @property
    def is_reconciliation_child(self) -> bool:
        return self.reconciliation_metadata is not None

    @property
    def counts_toward_balance(self) -> bool:
        """
        Classified lines (including split children) make up the balance.
        Pending lines are unexplained and reconciled parents were replaced.
        """
        return self.state == SettlementState.CLASSIFIED

    @property
    def is_candidate(self) -> bool:
        """Check if this transaction can still be reconciled."""
        return (
            self.state in (SettlementState.PENDING, SettlementState.CLASSIFIED)
            and not self.is_reconciliation_child
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "occurrence_index": self.occurrence_index,
            "source": self.source,
            "account": self.account,
            "source_row": self.source_row,
            "amount_cents": self.amount_cents,
            "amount": str(self.amount),
            "transaction_date": _iso(self.transaction_date),
            "description": self.description,
            "origin_description": self.origin_description,
            "classification": self.classification,
            "state": self.state.value,
            "reconciliation_group": self.reconciliation_group,
            "reconciliation_metadata": (
                self.reconciliation_metadata.to_dict()
                if self.reconciliation_metadata else None
            ),
            "created_at": self.created_at.isoformat(),
            "raw_data": self.raw_data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        """Rebuild a transaction, restoring split children as SplitChildTransaction."""
        metadata = data.get("reconciliation_metadata")
        target = SplitChildTransaction if metadata else cls
        created_at = _parse_datetime(data.get("created_at"))
        return target(
            id=data["id"],
            occurrence_index=data.get("occurrence_index", 0),
            source=data.get("source", ""),
            account=data.get("account"),
            source_row=data.get("source_row"),
            amount_cents=data["amount_cents"],
            transaction_date=_parse_date(data.get("transaction_date")),
            description=data.get("description", ""),
            origin_description=data.get("origin_description", ""),
            classification=data.get("classification"),
            state=SettlementState(data.get("state", SettlementState.PENDING.value)),
            reconciliation_group=data.get("reconciliation_group"),
            reconciliation_metadata=(
                ReconciliationMetadata.from_dict(metadata) if metadata else None
            ),
            created_at=created_at or _utcnow(),
            raw_data=dict(data.get("raw_data") or {}),
        )


@dataclass
class SplitChildTransaction(Transaction):
    """
    Transaction created by the split generator.
    Always classified and always carries reconciliation metadata.
    """
    state: SettlementState = SettlementState.CLASSIFIED

    @property
    def split_type(self) -> Optional[SplitType]:
        if self.reconciliation_metadata is None:
            return None
        return self.reconciliation_metadata.split_type

    @property
    def settlement_entry_id(self) -> Optional[str]:
        if self.reconciliation_metadata is None:
            return None
        return self.reconciliation_metadata.settlement_entry_id

    @property
    def parent_transaction_ids(self) -> List[str]:
        if self.reconciliation_metadata is None:
            return []
        return list(self.reconciliation_metadata.parent_transaction_ids)


@dataclass
class SettlementEntry:
    """
    A line from a payment processor's settlement report (agenda) or a
    manually pasted ledger. Consumed entries can never be matched again.
    """
    id: str = ""
    entry_date: Optional[date] = None
    value_cents: int = 0

    # Raw processor type, e.g. "Crédito à vista", "Débito", "Plano", "116 - Tarifa"
    entry_type: str = ""
    contract_id: Optional[str] = None
    channel: str = ""
    description: str = ""
    installment: Optional[str] = None

    consumed: bool = False
    consumed_by: Optional[str] = None

    raw_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def value(self) -> Decimal:
        """Return value in standard units (reais)."""
        return Decimal(self.value_cents) / 100

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "entry_date": _iso(self.entry_date),
            "value_cents": self.value_cents,
            "value": str(self.value),
            "entry_type": self.entry_type,
            "contract_id": self.contract_id,
            "channel": self.channel,
            "description": self.description,
            "installment": self.installment,
            "consumed": self.consumed,
            "consumed_by": self.consumed_by,
            "raw_data": self.raw_data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SettlementEntry":
        return cls(
            id=data["id"],
            entry_date=_parse_date(data.get("entry_date")),
            value_cents=data["value_cents"],
            entry_type=data.get("entry_type", ""),
            contract_id=data.get("contract_id"),
            channel=data.get("channel", ""),
            description=data.get("description", ""),
            installment=data.get("installment"),
            consumed=data.get("consumed", False),
            consumed_by=data.get("consumed_by"),
            raw_data=dict(data.get("raw_data") or {}),
        )


@dataclass
class ContractPercentageRule:
    """
    Catalog/plans split of a contract's settlement entries.
    Percentages are expected to add up to 100.
    """
    contract_id: str = ""
    catalog_percent: Decimal = Decimal("0")
    plans_percent: Decimal = Decimal("0")

    # Rules uploaded per settlement entry take precedence over contract rules
    settlement_entry_id: Optional[str] = None

    @classmethod
    def whole(cls, share: SplitType, contract_id: str = "") -> "ContractPercentageRule":
        """Rule that books the entire entry to a single share."""
        if share == SplitType.CATALOG:
            return cls(contract_id=contract_id, catalog_percent=Decimal("100"))
        if share == SplitType.PLANS:
            return cls(contract_id=contract_id, plans_percent=Decimal("100"))
        raise ValueError(f"Share must be catalog or plans, got {share.value}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contract_id": self.contract_id,
            "catalog_percent": str(self.catalog_percent),
            "plans_percent": str(self.plans_percent),
            "settlement_entry_id": self.settlement_entry_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContractPercentageRule":
        return cls(
            contract_id=data.get("contract_id", ""),
            catalog_percent=Decimal(str(data.get("catalog_percent", "0"))),
            plans_percent=Decimal(str(data.get("plans_percent", "0"))),
            settlement_entry_id=data.get("settlement_entry_id"),
        )
