"""Tests for locale amount normalization."""

from decimal import Decimal

import pytest

from cashflow_automator.schemas.amounts import format_amount, normalize_amount


class TestNormalizeAmount:
    """Separator precedence rules."""

    def test_thousands_dot_decimal_comma(self):
        assert normalize_amount("1.234,56") == Decimal("1234.56")

    def test_only_comma_is_decimal(self):
        assert normalize_amount("1234,56") == Decimal("1234.56")

    def test_several_dots_without_comma_are_thousands(self):
        assert normalize_amount("1.234.567") == Decimal("1234567")

    def test_single_dot_is_decimal(self):
        assert normalize_amount("1234.56") == Decimal("1234.56")

    def test_currency_symbol_and_spaces_stripped(self):
        assert normalize_amount("$ 45.230,75") == Decimal("45230.75")

    def test_negative_becomes_absolute(self):
        assert normalize_amount("-23.400,50") == Decimal("23400.50")
        assert normalize_amount("-$ 23.400,50") == Decimal("23400.50")

    def test_zero_is_zero_not_absent(self):
        assert normalize_amount("0,00") == Decimal("0")
        assert normalize_amount("0,00") is not None


class TestAbsentValues:
    """Nothing numeric means None, never zero."""

    @pytest.mark.parametrize("raw", ["", "   ", "$", "abc", None, "-", ",", "."])
    def test_absent(self, raw):
        assert normalize_amount(raw) is None


class TestIdempotence:
    """Canonical output normalizes to itself."""

    @pytest.mark.parametrize("raw", ["1.234,56", "1234,56", "1.234.567", "$ 0,50", "-12,00"])
    def test_renormalizing_canonical_output(self, raw):
        once = normalize_amount(raw)
        assert once is not None
        assert normalize_amount(str(once)) == once

    def test_plain_decimal_string(self):
        assert normalize_amount("1234.56") == normalize_amount(str(Decimal("1234.56")))


class TestFormatAmount:
    def test_format_present(self):
        assert format_amount(Decimal("1234.5")) == "1234.50"

    def test_format_absent(self):
        assert format_amount(None) == "-"
