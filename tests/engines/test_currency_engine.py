"""
Tests for CurrencyConverter (intake_engines.currency).

Covers:
- Rate and currency validation
- Amount and line conversion
- Starting-rate resolution order
"""

from decimal import Decimal

import pytest

from intake_engines.currency import (
    RateSource,
    convert,
    convert_line_amounts,
    resolve_rate,
    validate_currency,
    validate_rate,
)
from intake_kernel.domain.amounts import LineAmounts
from intake_kernel.exceptions import InvalidCurrencyError, InvalidExchangeRateError

FALLBACKS = {"USD": Decimal("3.10"), "EUR": Decimal("3.40")}


class TestValidation:
    """Tests for validate_rate and validate_currency."""

    def test_valid_decimal_rate(self):
        assert validate_rate(Decimal("3.40")) == Decimal("3.40")

    def test_int_rate_accepted(self):
        assert validate_rate(2) == Decimal("2")

    @pytest.mark.parametrize("rate", [
        None, Decimal("0"), Decimal("-1"), Decimal("NaN"), Decimal("Infinity"), 3.4, True, "3.4",
    ])
    def test_invalid_rates(self, rate):
        with pytest.raises(InvalidExchangeRateError):
            validate_rate(rate, "EUR")

    def test_currency_uppercased(self):
        assert validate_currency("eur") == "EUR"

    @pytest.mark.parametrize("code", [None, "", "XYZ", "EURO"])
    def test_unknown_currency(self, code):
        with pytest.raises(InvalidCurrencyError):
            validate_currency(code)


class TestConversion:
    """Tests for convert and convert_line_amounts."""

    def test_convert(self):
        assert convert(Decimal("300"), Decimal("3.40")) == Decimal("1020")

    def test_convert_line_amounts(self):
        amounts = convert_line_amounts(
            LineAmounts(Decimal("100"), Decimal("19"), Decimal("119")), Decimal("2"),
        )

        assert amounts == LineAmounts(Decimal("200"), Decimal("38"), Decimal("238"))

    def test_conversion_rejects_bad_rate(self):
        with pytest.raises(InvalidExchangeRateError):
            convert(Decimal("1"), Decimal("0"))


class TestResolveRate:
    """Tests for resolve_rate source precedence."""

    def test_settlement_currency_is_identity(self):
        quote = resolve_rate(
            currency="tnd", settlement_currency="TND",
            stored_rate=Decimal("9"), fallback_rates=FALLBACKS,
        )

        assert quote.rate == Decimal("1")
        assert quote.source is RateSource.IDENTITY

    def test_stored_rate_wins(self):
        quote = resolve_rate(
            currency="EUR", settlement_currency="TND",
            stored_rate=Decimal("3.35"), fallback_rates=FALLBACKS,
        )

        assert quote.rate == Decimal("3.35")
        assert quote.source is RateSource.STORED

    def test_fallback_table(self):
        quote = resolve_rate(
            currency="USD", settlement_currency="TND",
            stored_rate=None, fallback_rates=FALLBACKS,
        )

        assert quote.rate == Decimal("3.10")
        assert quote.source is RateSource.FALLBACK

    def test_unknown_default(self):
        quote = resolve_rate(
            currency="CHF", settlement_currency="TND",
            stored_rate=None, fallback_rates=FALLBACKS,
        )

        assert quote.rate == Decimal("1")
        assert quote.source is RateSource.DEFAULT

    def test_invalid_currency_rejected(self):
        with pytest.raises(InvalidCurrencyError):
            resolve_rate(
                currency="ZZZ", settlement_currency="TND",
                stored_rate=None, fallback_rates=FALLBACKS,
            )
