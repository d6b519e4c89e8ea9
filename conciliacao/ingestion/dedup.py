"""
Import deduplication by identity.

Two lines are the same line exactly when their identities are equal.
Amount-only or description-only similarity is never used.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Set

import structlog

from ..models import Transaction

logger = structlog.get_logger()


@dataclass
class DedupResult:
    """Split of an import batch into new lines and already-known lines."""
    to_add: List[Transaction] = field(default_factory=list)
    duplicates: List[Transaction] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.to_add) + len(self.duplicates)


class ImportDeduplicator:
    """Filters imported transactions whose identity is already persisted."""

    def dedupe(
        self,
        existing_ids: Iterable[str],
        incoming: Iterable[Transaction],
    ) -> DedupResult:
        """
        Partition incoming transactions against the persisted identities.

        A repeated identity inside the batch itself counts as a duplicate
        after its first appearance. Order of the batch is preserved.
        """
        seen: Set[str] = set(existing_ids)
        result = DedupResult()

        for transaction in incoming:
            if transaction.id in seen:
                result.duplicates.append(transaction)
                continue
            seen.add(transaction.id)
            result.to_add.append(transaction)

        if result.duplicates:
            logger.info(
                "Duplicate lines skipped",
                duplicates=len(result.duplicates),
                added=len(result.to_add),
            )

        return result
