"""
Tests for locale-aware amount and date parsing.
"""

import pytest
from datetime import date
from decimal import Decimal

from conciliacao.errors import ParseError
from conciliacao.ingestion.amounts import (
    parse_amount,
    parse_amount_cents,
    parse_amount_strict,
    parse_date,
    to_cents,
)


class TestParseAmount:
    """Tests for parse_amount."""

    @pytest.mark.parametrize("raw,expected", [
        ("1.234,56", Decimal("1234.56")),
        ("R$ 1.234,56", Decimal("1234.56")),
        ("  R$  2.500,00  ", Decimal("2500.00")),
        ("(1.234,56)", Decimal("-1234.56")),
        ("-150,00", Decimal("-150.00")),
        ("150,00-", Decimal("-150.00")),
        ("150,00 D", Decimal("-150.00")),
        ("150,00 C", Decimal("150.00")),
        ("+75,10", Decimal("75.10")),
        ("12,5", Decimal("12.5")),
        ("1.234", Decimal("1234")),
        ("1.234.567", Decimal("1234567")),
        ("1,234.56", Decimal("1234.56")),
    ])
    def test_pt_br(self, raw, expected):
        """Brazilian formatting, including the last-separator-wins rule."""
        value, ok = parse_amount(raw, "pt_BR")

        assert ok
        assert value == expected

    @pytest.mark.parametrize("raw,expected", [
        ("1,234.56", Decimal("1234.56")),
        ("1,234", Decimal("1234")),
        ("(12.50)", Decimal("-12.50")),
        ("$1,000", Decimal("1000")),
        ("USD 9.99", Decimal("9.99")),
    ])
    def test_en_us(self, raw, expected):
        value, ok = parse_amount(raw, "en_US")

        assert ok
        assert value == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "R$", "1.23.45", "1.234,56.78", "12,3x"])
    def test_unparseable_values_fail(self, raw):
        """Invalid input is reported as a failure, never as zero."""
        value, ok = parse_amount(raw, "pt_BR")

        assert not ok
        assert value is None

    def test_typed_numbers_pass_through(self):
        assert parse_amount(Decimal("10.5")) == (Decimal("10.5"), True)
        assert parse_amount(7) == (Decimal(7), True)
        assert parse_amount(True) == (None, False)

    def test_unknown_locale(self):
        with pytest.raises(ValueError):
            parse_amount("1,00", "fr_FR")


class TestCents:
    """Tests for the cents helpers."""

    def test_to_cents_rounds_half_up(self):
        assert to_cents(Decimal("0.005")) == 1
        assert to_cents(Decimal("-0.005")) == -1
        assert to_cents(Decimal("1234.56")) == 123456

    def test_parse_amount_cents(self):
        assert parse_amount_cents("1.234,56") == 123456
        assert parse_amount_cents("oops") is None

    def test_strict_raises_parse_error(self):
        with pytest.raises(ParseError) as exc_info:
            parse_amount_strict("oops", row=4)

        assert exc_info.value.row == 4
        assert exc_info.value.raw == "oops"


class TestParseDate:
    """Tests for parse_date."""

    @pytest.mark.parametrize("raw,expected", [
        ("10/07/2025", date(2025, 7, 10)),
        ("10-07-25", date(2025, 7, 10)),
        ("2025-07-10", date(2025, 7, 10)),
        ("2025-07-10T13:45:00", date(2025, 7, 10)),
        ("10 jul 2025", date(2025, 7, 10)),
        (date(2025, 7, 10), date(2025, 7, 10)),
    ])
    def test_known_formats(self, raw, expected):
        assert parse_date(raw) == expected

    @pytest.mark.parametrize("raw", ["31/02/2025", "foo", "", None])
    def test_invalid_dates(self, raw):
        assert parse_date(raw) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
