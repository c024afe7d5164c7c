"""
Tests for extraction normalization (intake_engines.normalization).

Covers:
- Defaults for missing or malformed extracted values
- Generated references and purchase years
- Line recomputation after edits, with and without an exchange rate
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from intake_engines.normalization import (
    LineDefaults,
    default_purchase_year,
    generated_reference,
    normalize_line,
    normalize_lines,
    recompute_line,
)
from intake_kernel.domain.extraction import ExtractedLine, ExtractionResult
from intake_kernel.domain.product import ProductType
from intake_kernel.exceptions import ValueOutOfRangeError

TODAY = date(2025, 3, 15)


@pytest.fixture
def defaults():
    return LineDefaults(vat_rate=Decimal("19"), is_exempt=False)


def _normalize(defaults, invoice_date=date(2025, 3, 10), index=0, **fields):
    return normalize_line(ExtractedLine(**fields), index, defaults, invoice_date, TODAY)


class TestDefaults:
    """Tests for defaulting of missing values."""

    def test_empty_line(self, defaults):
        """A line with nothing extracted still becomes a valid line."""
        line = _normalize(defaults, index=2)

        assert line.name == "Produit 3"
        assert line.reference == "REF-250310-003"
        assert line.quantity == Decimal("1")
        assert line.unit_price_ht == Decimal("0")
        assert line.vat_rate == Decimal("19")
        assert line.unit == "piece"
        assert line.purchase_year == 2025
        assert line.product_type is ProductType.PHYSICAL

    @pytest.mark.parametrize("quantity", [None, Decimal("0"), Decimal("-3")])
    def test_non_positive_quantity_becomes_one(self, defaults, quantity):
        line = _normalize(defaults, quantity=quantity, unit_price_ht=Decimal("5"))

        assert line.quantity == Decimal("1")
        assert line.opening_stock == Decimal("1")

    def test_price_from_line_total(self, defaults):
        line = _normalize(defaults, quantity=Decimal("4"), line_total_ht=Decimal("50"))

        assert line.unit_price_ht == Decimal("12.5")

    def test_invalid_vat_rate_uses_default(self, defaults):
        line = _normalize(defaults, vat_rate=Decimal("150"))

        assert line.vat_rate == Decimal("19")

    def test_discount_clamped_to_max(self, defaults):
        line = _normalize(
            defaults, quantity=Decimal("1"), unit_price_ht=Decimal("10"),
            discount_percent=Decimal("40"), max_discount=Decimal("25"),
        )

        assert line.discount_percent == Decimal("25")
        assert line.amounts.ht == Decimal("7.5")

    def test_invalid_barcode_dropped(self, defaults):
        assert _normalize(defaults, ean="é-123").ean is None

    def test_valid_barcode_kept(self, defaults):
        assert _normalize(defaults, ean=" 6191234567890 ").ean == "6191234567890"

    def test_unknown_unit_becomes_piece(self, defaults):
        assert _normalize(defaults, unit="barrel").unit == "piece"
        assert _normalize(defaults, unit="kg").unit == "kg"

    def test_unknown_product_type(self, defaults):
        assert _normalize(defaults, product_type="gadget").product_type is ProductType.PHYSICAL
        assert _normalize(defaults, product_type="service").product_type is ProductType.SERVICE

    def test_exempt_defaults(self):
        exempt = LineDefaults(vat_rate=Decimal("0"), is_exempt=True)

        line = _normalize(exempt, quantity=Decimal("3"), unit_price_ht=Decimal("100"), vat_rate=Decimal("19"))

        assert line.is_exempt
        assert line.vat_rate == Decimal("19")
        assert line.amounts.vat == Decimal("0")

    def test_product_hint_carried(self, defaults):
        pid = uuid4()

        assert _normalize(defaults, product_id=pid).product_hint == pid

    def test_order_preserved(self, defaults):
        extraction = ExtractionResult.from_dict({
            "products": [{"name": "A"}, {"name": "B"}, {"name": "C"}],
        })

        lines = normalize_lines(
            lines=extraction.lines, defaults=defaults, invoice_date=None, today=TODAY,
        )

        assert [(l.index, l.name) for l in lines] == [(0, "A"), (1, "B"), (2, "C")]
        assert lines[0].reference == "REF-250315-001"


class TestReferencesAndYears:
    """Tests for generated_reference and default_purchase_year."""

    def test_generated_reference(self):
        assert generated_reference("REF", date(2025, 3, 15), 0) == "REF-250315-001"

    def test_year_from_invoice_date(self):
        assert default_purchase_year(date(2019, 6, 1), TODAY) == 2019

    def test_year_out_of_bounds_uses_today(self):
        assert default_purchase_year(date(1999, 6, 1), TODAY) == 2025

    def test_year_without_invoice_date(self):
        assert default_purchase_year(None, TODAY) == 2025

    def test_extracted_year_out_of_bounds(self, defaults):
        assert _normalize(defaults, purchase_year=1850).purchase_year == 2025


class TestRecomputeLine:
    """Tests for recompute_line."""

    @pytest.fixture
    def line(self, defaults):
        return _normalize(
            defaults, quantity=Decimal("10"), unit_price_ht=Decimal("5"), vat_rate=Decimal("19"),
        )

    def test_amounts_follow_changes(self, line):
        updated = recompute_line(line, quantity=Decimal("4"), discount_percent=Decimal("50"))

        assert updated.amounts.ht == Decimal("10")
        assert updated.amounts.ttc == Decimal("11.9")
        assert updated.settlement_amounts is None

    def test_settlement_amounts_with_rate(self, line):
        updated = recompute_line(line, exchange_rate=Decimal("3.4"))

        assert updated.settlement_amounts.ht == Decimal("170")

    def test_invalid_change_rejected(self, line):
        with pytest.raises(ValueOutOfRangeError):
            recompute_line(line, unit_price_ht=Decimal("-1"))
