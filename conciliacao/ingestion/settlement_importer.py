"""
Settlement report, percentage sheet and pasted ledger import.

Processor reports (Inter agenda, TON sales, PIX sheet) become
SettlementEntry rows; percentage sheets become ContractPercentageRule
rows. Manually pasted ledgers use one line per entry:

    DD/MM/YYYY;NAME-PET-TYPE;VALUE
"""

import unicodedata
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Optional, Tuple

import structlog

from ..config import Settings, get_settings
from ..models import ContractPercentageRule, ImportSummary, SettlementEntry
from ..storage import LedgerStore
from .amounts import parse_amount, parse_date, to_cents
from .identity import assign_occurrence_indices, occurrence_key, transaction_identity

logger = structlog.get_logger()

PAID_STATUSES = {"PAGO", "PAID", "LIQUIDADO", "APROVADO"}
LEDGER_CHANNEL = "cremacao"
LEDGER_SOURCE = "LEDGER"


def _fold(text: str) -> str:
    """Upper-case and strip accents."""
    normalized = unicodedata.normalize("NFKD", text or "")
    return "".join(c for c in normalized if not unicodedata.combining(c)).upper().strip()


@dataclass
class SettlementRow:
    """One row of a processor settlement report."""
    date: Any
    value: Any
    entry_type: str = ""
    channel: str = ""
    id: Optional[str] = None
    contract_id: Optional[str] = None
    description: str = ""
    installment: Optional[str] = None
    status: Optional[str] = None
    row_number: Optional[int] = None


@dataclass
class PercentageRow:
    """One row of a contract percentage sheet."""
    contract_id: str
    catalog_percent: Any
    plans_percent: Any
    settlement_entry_id: Optional[str] = None
    row_number: Optional[int] = None


class SettlementImporter:
    """Builds settlement entries and percentage rules, and imports them."""

    def __init__(self, store: Optional[LedgerStore] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.store = store

    def build_entries(
        self,
        rows: Iterable[SettlementRow],
        locale: Optional[str] = None,
    ) -> Tuple[List[SettlementEntry], ImportSummary]:
        """
        Parse processor rows into entries.

        Rows carrying a status other than paid are skipped. Rows without a
        provider id get an identity from the identity generator.
        """
        locale = locale or self.settings.default_locale
        summary = ImportSummary()
        parsed = []

        for position, row in enumerate(rows, start=1):
            summary.total += 1
            row_number = row.row_number if row.row_number is not None else position

            if row.status is not None and _fold(row.status) not in PAID_STATUSES:
                summary.skipped += 1
                continue

            entry_date = parse_date(row.date)
            if entry_date is None:
                summary.add_parse_error(row_number, f"Invalid date: {row.date!r}")
                continue

            value, ok = parse_amount(row.value, locale)
            if not ok:
                summary.add_parse_error(row_number, f"Invalid value: {row.value!r}")
                continue

            if not row.channel:
                summary.add_parse_error(row_number, "Missing channel")
                continue

            cents = to_cents(value)
            try:
                key = occurrence_key(row.channel, entry_date, row.description or row.entry_type, cents)
            except ValueError as e:
                summary.add_parse_error(row_number, str(e))
                continue

            parsed.append((row_number, row, entry_date, cents, key))

        indices = assign_occurrence_indices(item[4] for item in parsed)

        entries = []
        for (row_number, row, entry_date, cents, _), occurrence in zip(parsed, indices):
            entry_id = (row.id or "").strip()
            if not entry_id:
                try:
                    entry_id = transaction_identity(
                        row.channel, entry_date, row.description or row.entry_type, cents, occurrence
                    )
                except ValueError as e:
                    summary.add_parse_error(row_number, str(e))
                    continue
            entries.append(SettlementEntry(
                id=entry_id,
                entry_date=entry_date,
                value_cents=cents,
                entry_type=(row.entry_type or "").strip(),
                contract_id=(row.contract_id or "").strip() or None,
                channel=row.channel,
                description=(row.description or "").strip(),
                installment=row.installment,
                raw_data={"row": row_number, "status": row.status},
            ))

        return entries, summary

    def _parse_percent(self, raw: Any, locale: str) -> Optional[Decimal]:
        text = raw if not isinstance(raw, str) else raw.replace("%", "")
        value, ok = parse_amount(text, locale)
        return value if ok else None

    def build_rules(
        self,
        rows: Iterable[PercentageRow],
        locale: Optional[str] = None,
    ) -> Tuple[List[ContractPercentageRule], ImportSummary]:
        """
        Parse percentage rows. Shares written as fractions (0.3 / 0.7) are
        scaled to percentages. Validity of the shares is checked at split
        time, so a bad rule still gets stored and reported there.
        """
        locale = locale or self.settings.default_locale
        summary = ImportSummary()
        rules = []

        for position, row in enumerate(rows, start=1):
            summary.total += 1
            row_number = row.row_number if row.row_number is not None else position

            if not (row.contract_id or "").strip():
                summary.add_parse_error(row_number, "Missing contract id")
                continue

            catalog = self._parse_percent(row.catalog_percent, locale)
            plans = self._parse_percent(row.plans_percent, locale)
            if catalog is None or plans is None:
                summary.add_parse_error(
                    row_number,
                    f"Invalid percentages: {row.catalog_percent!r} / {row.plans_percent!r}",
                )
                continue

            if 0 < catalog + plans <= 1 and catalog <= 1 and plans <= 1:
                catalog *= 100
                plans *= 100

            rules.append(ContractPercentageRule(
                contract_id=row.contract_id.strip(),
                catalog_percent=catalog,
                plans_percent=plans,
                settlement_entry_id=(row.settlement_entry_id or "").strip() or None,
            ))

        return rules, summary

    def parse_pasted_ledger(
        self,
        text: str,
        locale: Optional[str] = None,
    ) -> Tuple[List[SettlementEntry], ImportSummary]:
        """Parse pasted `DD/MM/YYYY;NAME-PET-TYPE;VALUE` lines into ledger entries."""
        locale = locale or self.settings.default_locale
        summary = ImportSummary()
        parsed = []

        lines = [line.strip() for line in (text or "").splitlines()]
        for line_number, line in enumerate(lines, start=1):
            if not line:
                continue
            summary.total += 1

            parts = line.split(";")
            if len(parts) != 3:
                summary.add_parse_error(line_number, f"Expected DATE;NAME-PET-TYPE;VALUE, got {line!r}")
                continue

            date_str, name_pet_type, value_str = (p.strip() for p in parts)
            name_parts = [p.strip() for p in name_pet_type.split("-")]
            if len(name_parts) < 3 or not all(name_parts[-2:]):
                summary.add_parse_error(line_number, f"Expected NAME-PET-TYPE, got {name_pet_type!r}")
                continue

            entry_date = parse_date(date_str)
            if entry_date is None:
                summary.add_parse_error(line_number, f"Invalid date: {date_str!r}")
                continue

            value, ok = parse_amount(value_str, locale)
            if not ok:
                summary.add_parse_error(line_number, f"Invalid value: {value_str!r}")
                continue

            name = "-".join(name_parts[:-2])
            pet, entry_type = name_parts[-2], name_parts[-1]
            description = f"{name} - {pet} - {entry_type}".upper()
            cents = to_cents(value)
            try:
                key = occurrence_key(LEDGER_SOURCE, entry_date, description, cents)
            except ValueError as e:
                summary.add_parse_error(line_number, str(e))
                continue

            parsed.append((line_number, entry_date, description, entry_type.upper(), cents, key))

        indices = assign_occurrence_indices(item[5] for item in parsed)

        entries = []
        for (line_number, entry_date, description, entry_type, cents, _), occurrence in zip(parsed, indices):
            try:
                entry_id = transaction_identity(LEDGER_SOURCE, entry_date, description, cents, occurrence)
            except ValueError as e:
                summary.add_parse_error(line_number, str(e))
                continue

            entries.append(SettlementEntry(
                id=entry_id,
                entry_date=entry_date,
                value_cents=cents,
                entry_type=entry_type,
                channel=LEDGER_CHANNEL,
                description=description,
                raw_data={"line": line_number},
            ))
        return entries, summary

    async def _store_entries(self, entries: List[SettlementEntry], summary: ImportSummary) -> ImportSummary:
        if self.store is None:
            raise ValueError("SettlementImporter needs a store to import")

        inserted = set(await self.store.write_settlement_entries(entries))
        summary.added = len(inserted)
        summary.duplicate_ids = [e.id for e in entries if e.id not in inserted]
        summary.duplicates = len(summary.duplicate_ids)
        return summary

    async def import_entries(
        self,
        rows: Iterable[SettlementRow],
        locale: Optional[str] = None,
    ) -> ImportSummary:
        """Import processor rows; already-known entries keep their consumed flag."""
        entries, summary = self.build_entries(rows, locale)
        await self._store_entries(entries, summary)
        logger.info(
            "Settlement entries imported",
            total=summary.total,
            added=summary.added,
            duplicates=summary.duplicates,
            skipped=summary.skipped,
            parse_errors=summary.parse_errors,
        )
        return summary

    async def import_pasted_ledger(self, text: str, locale: Optional[str] = None) -> ImportSummary:
        entries, summary = self.parse_pasted_ledger(text, locale)
        await self._store_entries(entries, summary)
        logger.info("Pasted ledger imported", total=summary.total, added=summary.added)
        return summary

    async def import_rules(
        self,
        rows: Iterable[PercentageRow],
        locale: Optional[str] = None,
    ) -> ImportSummary:
        if self.store is None:
            raise ValueError("SettlementImporter needs a store to import")

        rules, summary = self.build_rules(rows, locale)
        if rules:
            await self.store.write_percentage_rules(rules)
        summary.added = len(rules)
        logger.info("Percentage rules imported", added=summary.added, parse_errors=summary.parse_errors)
        return summary
