"""
Tests for sale price derivation (intake_engines.pricing).

Covers:
- Derivation from HT, TTC and gain rate
- VAT rate changes re-deriving from the strongest field
- Clearing fields and the no-VAT rule
- Repricing after a purchase cost change
- Unit purchase cost
"""

from decimal import Decimal

import pytest

from intake_engines.pricing import (
    SalePriceField,
    derive_sale_price,
    reprice_for_cost,
    sale_price_from_catalog,
    unit_purchase_cost,
)
from intake_kernel.domain.amounts import SalePrice
from intake_kernel.exceptions import ValueOutOfRangeError


def _derive(current, field, value, unit_cost="0"):
    return derive_sale_price(
        current=current,
        field=field,
        value=Decimal(value) if value is not None else None,
        unit_cost=Decimal(unit_cost),
    )


class TestDeriveFromPrice:
    """Tests for edits of the HT or TTC price."""

    def test_from_ht(self):
        """TTC and gain follow the HT price."""
        price = _derive(SalePrice(vat_rate=Decimal("19")), SalePriceField.PRICE_HT, "8.000", "5.95")

        assert price.price_ht == Decimal("8.000")
        assert price.price_ttc == Decimal("9.520")
        assert price.gain_rate == Decimal("60.00")

    def test_from_ttc(self):
        """HT is TTC divided by the VAT factor."""
        price = _derive(SalePrice(vat_rate=Decimal("19")), SalePriceField.PRICE_TTC, "119", "50")

        assert price.price_ht == Decimal("100.000")
        assert price.price_ttc == Decimal("119")
        assert price.gain_rate == Decimal("138.00")

    def test_from_gain(self):
        """TTC is the unit cost marked up by the gain rate."""
        price = _derive(SalePrice(vat_rate=Decimal("19")), SalePriceField.GAIN_RATE, "50", "10")

        assert price.price_ttc == Decimal("15.000")
        assert price.price_ht == Decimal("12.605")
        assert price.gain_rate == Decimal("50")

    def test_zero_cost_gives_zero_gain(self):
        price = _derive(SalePrice(vat_rate=Decimal("7")), SalePriceField.PRICE_HT, "10", "0")

        assert price.gain_rate == Decimal("0.00")

    def test_negative_gain_allowed(self):
        """Selling below cost is a negative gain, not an error."""
        price = _derive(SalePrice(vat_rate=Decimal("0")), SalePriceField.GAIN_RATE, "-20", "10")

        assert price.price_ttc == Decimal("8.000")

    @pytest.mark.parametrize("field", [SalePriceField.PRICE_HT, SalePriceField.PRICE_TTC])
    def test_negative_price_rejected(self, field):
        with pytest.raises(ValueOutOfRangeError):
            _derive(SalePrice(vat_rate=Decimal("19")), field, "-1")


class TestVatRateChange:
    """Tests for changing the sale VAT rate."""

    def test_rederives_from_ht(self):
        current = SalePrice(Decimal("19"), Decimal("100"), Decimal("119"), Decimal("0"))

        price = _derive(current, SalePriceField.VAT_RATE, "7", "100")

        assert price.price_ht == Decimal("100")
        assert price.price_ttc == Decimal("107.000")
        assert price.gain_rate == Decimal("7.00")

    def test_rederives_from_ttc_without_ht(self):
        current = SalePrice(vat_rate=Decimal("19"), price_ttc=Decimal("107"))

        price = _derive(current, SalePriceField.VAT_RATE, "7")

        assert price.price_ht == Decimal("100.000")

    def test_rederives_from_gain_without_prices(self):
        current = SalePrice(vat_rate=Decimal("19"), gain_rate=Decimal("10"))

        price = _derive(current, SalePriceField.VAT_RATE, "0", "10")

        assert price.price_ttc == Decimal("11.000")
        assert price.price_ht == Decimal("11.000")

    def test_rate_only(self):
        price = _derive(SalePrice(), SalePriceField.VAT_RATE, "13")

        assert price == SalePrice(vat_rate=Decimal("13"))
        assert not price.is_set

    def test_rate_out_of_range(self):
        with pytest.raises(ValueOutOfRangeError):
            _derive(SalePrice(), SalePriceField.VAT_RATE, "120")


class TestClearing:
    """Tests for None values."""

    def test_clearing_vat_clears_everything(self):
        """No sale price exists without a VAT rate."""
        current = SalePrice(Decimal("19"), Decimal("100"), Decimal("119"), Decimal("10"))

        assert _derive(current, SalePriceField.VAT_RATE, None) == SalePrice()

    def test_clearing_price_keeps_vat(self):
        current = SalePrice(Decimal("19"), Decimal("100"), Decimal("119"), Decimal("10"))

        price = _derive(current, SalePriceField.PRICE_HT, None)

        assert price == SalePrice(vat_rate=Decimal("19"))

    def test_price_without_vat_is_ignored(self):
        assert _derive(SalePrice(), SalePriceField.PRICE_HT, "10") == SalePrice()


class TestReprice:
    """Tests for reprice_for_cost and catalog helpers."""

    def test_gain_follows_cost(self):
        current = SalePrice(Decimal("0"), Decimal("12"), Decimal("12"), Decimal("20"))

        price = reprice_for_cost(current, Decimal("20"))

        assert price.price_ttc == Decimal("24.000")
        assert price.gain_rate == Decimal("20")

    def test_block_without_gain_unchanged(self):
        current = SalePrice(vat_rate=Decimal("19"), price_ht=Decimal("10"))

        assert reprice_for_cost(current, Decimal("99")) is current

    def test_catalog_price_without_vat_is_empty(self):
        assert sale_price_from_catalog(None, Decimal("10"), None, None) == SalePrice()

    def test_unit_purchase_cost(self):
        assert unit_purchase_cost(Decimal("59.5"), Decimal("10")) == Decimal("5.95")

    def test_unit_purchase_cost_zero_quantity(self):
        assert unit_purchase_cost(Decimal("59.5"), Decimal("0")) == Decimal("0")
