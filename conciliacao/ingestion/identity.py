"""
Deterministic identities for ledger lines.

Imported statement lines get a readable identity built from their
fields, so that re-importing the same statement produces the same ids:

    SOURCE + YYYYMMDD + description code (6) + |amount| code (8) + occurrence (3)

Identical-looking lines inside one statement (same source, date,
description and absolute amount) are told apart by their occurrence
index, assigned in order of appearance.

Split children and commit groups get hash-based ids derived from the
parents and settlement entries they come from. No clock or random input
is involved, so a retried commit reproduces the same ids.
"""

import hashlib
import re
from collections import defaultdict
from datetime import date
from typing import Hashable, Iterable, List, Sequence, Tuple

from ..models import ReconciliationType, SplitType


BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

DESCRIPTION_CODE_WIDTH = 6
AMOUNT_CODE_WIDTH = 8
OCCURRENCE_WIDTH = 3

MAX_AMOUNT_CENTS = 36 ** AMOUNT_CODE_WIDTH - 1
MAX_OCCURRENCE = 10 ** OCCURRENCE_WIDTH - 1

SPLIT_CODES = {
    SplitType.CATALOG: "CAT",
    SplitType.PLANS: "PLA",
    SplitType.COST: "CST",
    SplitType.LEDGER: "LED",
    SplitType.FALLBACK: "FBK",
}


def to_base36(value: int, width: int = 0) -> str:
    """Encode a non-negative integer in upper-case base 36, zero padded."""
    if value < 0:
        raise ValueError("Base 36 encoding requires a non-negative value")

    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])

    encoded = "".join(reversed(digits)) or "0"
    return encoded.rjust(width, "0")


def normalize_description(description: str) -> str:
    """Collapse whitespace and upper-case, so cosmetic differences do not change ids."""
    return " ".join((description or "").split()).upper()


def source_token(source: str) -> str:
    token = re.sub(r"[^A-Za-z0-9]", "", source or "").upper()
    if not token:
        raise ValueError(f"Source '{source}' has no alphanumeric characters")
    return token


def description_code(description: str) -> str:
    """Hash the normalized description to a fixed-width base 36 code."""
    digest = hashlib.sha256(normalize_description(description).encode("utf-8")).digest()
    value = int.from_bytes(digest[:8], "big") % (36 ** DESCRIPTION_CODE_WIDTH)
    return to_base36(value, DESCRIPTION_CODE_WIDTH)


def amount_code(amount_cents: int) -> str:
    """Encode the absolute amount in cents to a fixed-width base 36 code."""
    magnitude = abs(amount_cents)
    if magnitude > MAX_AMOUNT_CENTS:
        raise ValueError(f"Amount {amount_cents} cents does not fit the identity format")
    return to_base36(magnitude, AMOUNT_CODE_WIDTH)


def transaction_identity(
    source: str,
    transaction_date: date,
    description: str,
    amount_cents: int,
    occurrence_index: int = 0,
) -> str:
    """
    Build the identity of an imported statement line.

    Args:
        source: Bank or import source name (e.g. "Inter", "Stone")
        transaction_date: Statement date of the line
        description: Raw statement description
        amount_cents: Signed amount in cents (only the magnitude is encoded)
        occurrence_index: Position among identical-looking lines of the import

    Returns:
        Identity string, stable across re-imports of the same statement
    """
    if occurrence_index < 0 or occurrence_index > MAX_OCCURRENCE:
        raise ValueError(f"Occurrence index out of range: {occurrence_index}")

    return (
        f"{source_token(source)}"
        f"{transaction_date:%Y%m%d}"
        f"{description_code(description)}"
        f"{amount_code(amount_cents)}"
        f"{occurrence_index:0{OCCURRENCE_WIDTH}d}"
    )


def occurrence_key(
    source: str,
    transaction_date: date,
    description: str,
    amount_cents: int,
) -> Tuple[str, date, str, int]:
    """Fields that make two lines look identical to the identity generator."""
    return (
        source_token(source),
        transaction_date,
        normalize_description(description),
        abs(amount_cents),
    )


def assign_occurrence_indices(keys: Iterable[Hashable]) -> List[int]:
    """Number repeated keys 0, 1, 2... in order of appearance."""
    seen = defaultdict(int)
    indices = []
    for key in keys:
        indices.append(seen[key])
        seen[key] += 1
    return indices


def _digest(*parts: str) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest().upper()


def child_transaction_id(
    parent_ids: Sequence[str],
    entry_id: str,
    split_type: SplitType,
) -> str:
    """Id of a split child: same parents, entry and share always give the same id."""
    digest = _digest(",".join(sorted(parent_ids)), entry_id, split_type.value)
    return f"RC{digest[:16]}{SPLIT_CODES[split_type]}"


def commit_key(
    reconciliation_type: ReconciliationType,
    day: date,
    parent_ids: Sequence[str],
    entry_ids: Sequence[str],
) -> str:
    """Correlation id shared by every record touched by one commit."""
    digest = _digest(
        reconciliation_type.value,
        day.isoformat(),
        ",".join(sorted(parent_ids)),
        ",".join(sorted(entry_ids)),
    )
    return f"{reconciliation_type.value.upper()}_{day:%Y%m%d}_{digest[:10]}"
