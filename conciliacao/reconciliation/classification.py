"""
Revenue classification of split children.

Classification ids are the chart-of-accounts leaves the children are
booked to. Revenue leaves are looked up in a table keyed by
(is_debit_flow, is_individual, is_catalog):

    is_debit_flow  debit-card / instant sales  -> "Receita Nova"
                   credit installments         -> "Receita Antiga"
    is_individual  contract is individual (IND) or collective (COL)
    is_catalog     catalog share or plans share of the entry
"""

import unicodedata
from typing import Dict, Optional, Tuple

from ..models import EntryKind, SettlementEntry, SplitType


# Chart-of-accounts leaves
COMPLEX = "e92f4f0f-4e94-4007-8945-a1fb47782051"
OLD_REVENUE_PLAN_INDIVIDUAL = "91c60dd5-c4da-48df-b5d4-7ae08f97040b"
OLD_REVENUE_PLAN_COLLECTIVE = "7645b927-9e00-414f-9401-c23d0744e95a"
OLD_REVENUE_CATALOG_INDIVIDUAL = "0304dd17-9be6-4589-b649-3409ad49af71"
OLD_REVENUE_CATALOG_COLLECTIVE = "2ec28e4b-3673-49c7-aa77-18caabcfe90f"
NEW_REVENUE_PLAN_INDIVIDUAL = "dfbdd704-d1f3-4a5c-8abb-d2fa6d5bdf66"
NEW_REVENUE_PLAN_COLLECTIVE = "a0011fd4-99b5-49e6-8055-6159e53df249"
NEW_REVENUE_CATALOG_INDIVIDUAL = "903eabdf-cb09-4b24-a3ec-19a99c14b83f"
NEW_REVENUE_CATALOG_COLLECTIVE = "8e7c7be2-6d71-466a-b142-5b40aeb4f6f8"
ABSORBED_COSTS = "3aa94cd4-2a32-48cd-a386-7d3fae679879"
CREMATION_INDIVIDUAL = "b862fc92-e098-4a48-90ac-4c051f89c0cf"
CREMATION_COLLECTIVE = "c6300f87-068a-4be9-bc3b-695669cb420a"

REVENUE_CLASSIFICATION: Dict[Tuple[bool, bool, bool], str] = {
    # (is_debit_flow, is_individual, is_catalog)
    (True, True, True): NEW_REVENUE_CATALOG_INDIVIDUAL,
    (True, False, True): NEW_REVENUE_CATALOG_COLLECTIVE,
    (True, True, False): NEW_REVENUE_PLAN_INDIVIDUAL,
    (True, False, False): NEW_REVENUE_PLAN_COLLECTIVE,
    (False, True, True): OLD_REVENUE_CATALOG_INDIVIDUAL,
    (False, False, True): OLD_REVENUE_CATALOG_COLLECTIVE,
    (False, True, False): OLD_REVENUE_PLAN_INDIVIDUAL,
    (False, False, False): OLD_REVENUE_PLAN_COLLECTIVE,
}

# Fragments of processor types that mark an operational cost line,
# e.g. "116 - DÉBITO REFERENTE A PAGAMENTO DE MÁQUINAS"
OPERATIONAL_COST_MARKERS = ("116", "REFERENTE A PAGAMENTO", "PAGAMENTO DE MAQUINA")


def fold(text: Optional[str]) -> str:
    """Upper-case and strip accents, for comparisons against processor labels."""
    normalized = unicodedata.normalize("NFKD", text or "")
    return "".join(c for c in normalized if not unicodedata.combining(c)).upper()


def classify_entry_type(raw_type: Optional[str]) -> EntryKind:
    """Operational-cost heuristic over the raw processor type."""
    folded = fold(raw_type)
    if any(marker in folded for marker in OPERATIONAL_COST_MARKERS):
        return EntryKind.OPERATIONAL_COST
    return EntryKind.REVENUE


def is_operational_cost(entry: SettlementEntry) -> bool:
    return entry.value_cents < 0 or classify_entry_type(entry.entry_type) == EntryKind.OPERATIONAL_COST


def is_debit_flow(raw_type: Optional[str]) -> bool:
    """Debit-card sales are new revenue; credit and installments are old revenue."""
    return "DEBITO" in fold(raw_type)


def is_individual_contract(contract_id: Optional[str]) -> bool:
    """IND marks an individual contract, COL a collective one. Unmarked defaults to individual."""
    folded = fold(contract_id)
    if "IND" in folded:
        return True
    if "COL" in folded:
        return False
    return True


def product_share(raw_type: Optional[str]) -> Optional[SplitType]:
    """Share named by an entry type ("Plano ...", "Catálogo ..."), if any."""
    folded = fold(raw_type)
    if "CATALOGO" in folded:
        return SplitType.CATALOG
    if "PLANO" in folded:
        return SplitType.PLANS
    return None


def revenue_classification(debit_flow: bool, individual: bool, share: SplitType) -> str:
    if share not in (SplitType.CATALOG, SplitType.PLANS):
        raise ValueError(f"No revenue classification for share {share.value}")
    return REVENUE_CLASSIFICATION[(debit_flow, individual, share == SplitType.CATALOG)]


def cremation_classification(raw_type: Optional[str]) -> str:
    return CREMATION_INDIVIDUAL if fold(raw_type).strip() == "INDIVIDUAL" else CREMATION_COLLECTIVE


def revenue_label(debit_flow: bool, individual: bool, share: SplitType) -> str:
    """Short description prefix, e.g. "REC. A. C. IND."."""
    revenue = "N." if debit_flow else "A."
    product = "C." if share == SplitType.CATALOG else "P."
    contract = "IND." if individual else "COL."
    return f"REC. {revenue} {product} {contract}"
