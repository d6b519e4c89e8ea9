"""
Locale-aware parsing of monetary values and dates found in bank
statements, processor reports and pasted ledgers.

Values come back as Decimal; the engine stores integer cents (see to_cents).
A value that cannot be parsed is reported as a failure, never as zero.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Tuple

from ..errors import ParseError


# locale -> (thousands separator, decimal separator)
LOCALE_SEPARATORS = {
    "pt_BR": (".", ","),
    "en_US": (",", "."),
}

CURRENCY_PATTERN = re.compile(r"R\$|US\$|BRL|USD|EUR|RS|\$|€", re.IGNORECASE)
WHITESPACE_PATTERN = re.compile(r"\s+")
NUMBER_PATTERN = re.compile(r"^\d+(\.\d+)?$")

DEBIT_MARKERS = ("D",)
CREDIT_MARKERS = ("C",)

DATE_PATTERNS = [
    re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T\s].*)?$"),  # YYYY-MM-DD[THH:MM:SS]
    re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})(?:\s.*)?$"),  # DD/MM/YYYY or DD-MM-YY
    re.compile(r"^(\d{1,2})[\s/\-.]+(jan|fev|mar|abr|mai|jun|jul|ago|set|out|nov|dez)[a-z]*[\s/\-.]+(\d{2,4})$", re.I),
]

MONTH_MAP = {
    "jan": 1, "fev": 2, "mar": 3, "abr": 4, "mai": 5, "jun": 6,
    "jul": 7, "ago": 8, "set": 9, "out": 10, "nov": 11, "dez": 12,
}

CENT = Decimal("0.01")


def _is_grouped(integer: str, separator: str) -> bool:
    """Check thousands grouping: 1-3 leading digits, then groups of exactly 3."""
    groups = integer.split(separator)
    if not groups[0] or len(groups[0]) > 3:
        return False
    return all(len(group) == 3 for group in groups[1:])


def _normalize_separators(text: str, locale: str) -> Optional[str]:
    """Rewrite a separator-formatted number as a plain decimal string."""
    thousands, decimal_sep = LOCALE_SEPARATORS[locale]
    has_dot = "." in text
    has_comma = "," in text

    if has_dot and has_comma:
        # Last separator wins as the decimal separator
        decimal_sep = "." if text.rfind(".") > text.rfind(",") else ","
        thousands = "," if decimal_sep == "." else "."
        if text.count(decimal_sep) > 1:
            return None
        integer, fraction = text.split(decimal_sep)
        if not _is_grouped(integer, thousands):
            return None
        return f"{integer.replace(thousands, '')}.{fraction}"

    if not (has_dot or has_comma):
        return text

    separator = "." if has_dot else ","
    if text.count(separator) > 1:
        # Repeated separator can only be grouping
        if not _is_grouped(text, separator):
            return None
        return text.replace(separator, "")

    integer, fraction = text.split(separator)
    integer = integer or "0"
    if separator == thousands and len(fraction) == 3:
        return f"{integer}{fraction}"
    return f"{integer}.{fraction}"


def parse_amount(raw: Any, locale: str = "pt_BR") -> Tuple[Optional[Decimal], bool]:
    """
    Parse a human-formatted monetary value.

    Handles currency symbols, thousands/decimal separators for the locale
    (the last separator wins when both appear), and negativity written as a
    leading or trailing minus, parentheses, or a trailing "D" debit marker.

    Args:
        raw: Cell content (str, or a number already typed by a spreadsheet)
        locale: "pt_BR" or "en_US"

    Returns:
        (value, ok). ok is False for blank input and for anything that
        leaves non-numeric residue after cleanup.
    """
    if locale not in LOCALE_SEPARATORS:
        raise ValueError(f"Unsupported locale: {locale}")

    if raw is None or isinstance(raw, bool):
        return None, False
    if isinstance(raw, (int, Decimal)):
        return Decimal(raw), True
    if isinstance(raw, float):
        return Decimal(str(raw)), True

    text = WHITESPACE_PATTERN.sub("", str(raw))
    if not text:
        return None, False

    text = CURRENCY_PATTERN.sub("", text)
    negative = False

    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    marker = text[-1:].upper()
    if marker in DEBIT_MARKERS:
        negative = True
        text = text[:-1]
    elif marker in CREDIT_MARKERS:
        text = text[:-1]

    if text.endswith("-"):
        negative = True
        text = text[:-1]

    if text.startswith("-"):
        negative = True
        text = text[1:]
    elif text.startswith("+"):
        text = text[1:]

    normalized = _normalize_separators(text, locale)
    if normalized is None or not NUMBER_PATTERN.match(normalized):
        return None, False

    try:
        value = Decimal(normalized)
    except InvalidOperation:
        return None, False

    return (-value if negative else value), True


def to_cents(value: Decimal) -> int:
    """Convert a Decimal amount to integer cents, rounding half up."""
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_amount_cents(raw: Any, locale: str = "pt_BR") -> Optional[int]:
    value, ok = parse_amount(raw, locale)
    return to_cents(value) if ok else None


def parse_amount_strict(raw: Any, locale: str = "pt_BR", row: Optional[int] = None) -> Decimal:
    """Parse a single value, raising ParseError instead of returning a flag."""
    value, ok = parse_amount(raw, locale)
    if not ok:
        raise ParseError(f"Invalid amount: {raw!r}", raw=None if raw is None else str(raw), row=row)
    return value


def parse_date(raw: Any) -> Optional[date]:
    """Try to parse a date using the known statement and report formats."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if raw is None:
        return None

    text = str(raw).strip()
    for index, pattern in enumerate(DATE_PATTERNS):
        match = pattern.match(text)
        if not match:
            continue
        try:
            groups = match.groups()
            if index == 0:
                year, month, day = int(groups[0]), int(groups[1]), int(groups[2])
            else:
                day = int(groups[0])
                month_str = groups[1].lower()
                month = int(month_str) if month_str.isdigit() else MONTH_MAP[month_str[:3]]
                year = int(groups[2])
                if len(groups[2]) == 2:
                    year += 2000
            return date(year, month, day)
        except (ValueError, KeyError):
            return None
    return None
