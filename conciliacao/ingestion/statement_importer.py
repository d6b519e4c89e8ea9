"""
Bank statement import.

Turns raw statement lines into pending ledger transactions with
deterministic identities, and writes only the lines the store does
not already know.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

import structlog

from ..config import Settings, get_settings
from ..models import ImportSummary, SettlementState, Transaction
from ..storage import LedgerStore
from .amounts import parse_amount, parse_date, to_cents
from .dedup import ImportDeduplicator
from .identity import assign_occurrence_indices, occurrence_key, transaction_identity

logger = structlog.get_logger()


@dataclass
class RawStatementLine:
    """One line of a bank statement as read from the file."""
    source: str
    date: Any
    description: str
    amount: Any
    account: Optional[str] = None
    row_number: Optional[int] = None


class StatementImporter:
    """Parses statement lines and imports them without duplicates."""

    def __init__(self, store: Optional[LedgerStore] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.store = store
        self.deduplicator = ImportDeduplicator()

    def build_transactions(
        self,
        lines: Iterable[RawStatementLine],
        locale: Optional[str] = None,
    ) -> Tuple[List[Transaction], ImportSummary]:
        """
        Parse lines into pending transactions.

        Lines with an unparseable date, amount or source are reported in
        the summary and left out. Occurrence indices are assigned after
        parsing, over the lines that survived.
        """
        locale = locale or self.settings.default_locale
        summary = ImportSummary()
        parsed = []

        for position, line in enumerate(lines, start=1):
            summary.total += 1
            row = line.row_number if line.row_number is not None else position

            transaction_date = parse_date(line.date)
            if transaction_date is None:
                summary.add_parse_error(row, f"Invalid date: {line.date!r}")
                continue

            value, ok = parse_amount(line.amount, locale)
            if not ok:
                summary.add_parse_error(row, f"Invalid amount: {line.amount!r}")
                continue

            try:
                key = occurrence_key(line.source, transaction_date, line.description, to_cents(value))
            except ValueError as e:
                summary.add_parse_error(row, str(e))
                continue

            parsed.append((row, line, transaction_date, to_cents(value), key))

        indices = assign_occurrence_indices(item[4] for item in parsed)
        transactions = []

        for (row, line, transaction_date, amount_cents, _), occurrence in zip(parsed, indices):
            try:
                identity = transaction_identity(
                    line.source, transaction_date, line.description, amount_cents, occurrence
                )
            except ValueError as e:
                summary.add_parse_error(row, str(e))
                continue

            description = " ".join((line.description or "").split())
            transactions.append(Transaction(
                id=identity,
                occurrence_index=occurrence,
                source=line.source,
                account=line.account,
                source_row=row,
                amount_cents=amount_cents,
                transaction_date=transaction_date,
                description=description,
                origin_description=description,
                state=SettlementState.PENDING,
                raw_data={"date": str(line.date), "amount": str(line.amount)},
            ))

        if summary.parse_errors:
            logger.warning(
                "Statement lines could not be parsed",
                parse_errors=summary.parse_errors,
                total=summary.total,
            )

        return transactions, summary

    async def import_lines(
        self,
        lines: Iterable[RawStatementLine],
        locale: Optional[str] = None,
    ) -> ImportSummary:
        """Parse, dedupe against the store, and persist the new lines."""
        if self.store is None:
            raise ValueError("StatementImporter needs a store to import")

        transactions, summary = self.build_transactions(lines, locale)
        existing = await self.store.existing_transaction_ids([t.id for t in transactions])
        result = self.deduplicator.dedupe(existing, transactions)

        if result.to_add:
            await self.store.write_transactions(result.to_add)

        summary.added = len(result.to_add)
        summary.duplicates = len(result.duplicates)
        summary.duplicate_ids = [t.id for t in result.duplicates]

        logger.info(
            "Statement imported",
            total=summary.total,
            added=summary.added,
            duplicates=summary.duplicates,
            parse_errors=summary.parse_errors,
        )
        return summary
