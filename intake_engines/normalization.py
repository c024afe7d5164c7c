"""
Extraction normalization.

Turns the untrusted extracted lines into ``LineItem`` values the workflow
can edit.  Missing or malformed values are defaulted, never trusted:

* quantity missing or not positive -> 1
* unit price missing -> line HT total / quantity, else 0
* VAT rate missing -> the policy default for the document
* discount missing -> 0, clamped to [0, max_discount]
* name missing -> ``Produit N``
* reference missing -> ``REF-YYMMDD-NNN`` (invoice date or today, line index + 1)
* barcode not in a recognized format -> blank
* unit not in the unit list -> ``piece``
* purchase year from the invoice date when within bounds, else this year
* opening stock -> quantity

Also home of ``recompute_line``, which rebuilds the amounts of a line after
any edit.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal

from intake_engines.currency import convert_line_amounts
from intake_engines.identifiers import detect_barcode_format, normalize_barcode
from intake_engines.money_math import line_total
from intake_engines.tracer import traced_engine
from intake_kernel.db.types import HUNDRED, ZERO
from intake_kernel.domain.context import LineItem
from intake_kernel.domain.extraction import ExtractedLine
from intake_kernel.domain.product import UNITS, ProductType
from intake_kernel.logging_config import get_logger

logger = get_logger("engines.normalization")


@dataclass(frozen=True)
class LineDefaults:
    """Policy values normalization falls back on."""

    vat_rate: Decimal
    is_exempt: bool
    unit: str = "piece"
    name_template: str = "Produit {n}"
    reference_prefix: str = "REF"
    min_purchase_year: int = 2000
    max_purchase_year: int = 2100


def generated_reference(prefix: str, on: date, index: int) -> str:
    """``REF-250315-001`` for the first line of a document dated 2025-03-15."""
    return f"{prefix}-{on:%y%m%d}-{index + 1:03d}"


def default_purchase_year(
    invoice_date: date | None,
    today: date,
    min_year: int = 2000,
    max_year: int = 2100,
) -> int:
    if invoice_date is not None and min_year <= invoice_date.year <= max_year:
        return invoice_date.year
    return today.year


def _quantity(raw: ExtractedLine) -> Decimal:
    if raw.quantity is None or raw.quantity <= ZERO:
        return Decimal("1")
    return raw.quantity


def _unit_price(raw: ExtractedLine, quantity: Decimal) -> Decimal:
    if raw.unit_price_ht is not None and raw.unit_price_ht >= ZERO:
        return raw.unit_price_ht
    if raw.line_total_ht is not None and raw.line_total_ht >= ZERO:
        return raw.line_total_ht / quantity
    return ZERO


def _clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(high, value))


def _product_type(value: str | None) -> ProductType:
    try:
        return ProductType(value) if value else ProductType.PHYSICAL
    except ValueError:
        return ProductType.PHYSICAL


def normalize_line(
    raw: ExtractedLine,
    index: int,
    defaults: LineDefaults,
    invoice_date: date | None,
    today: date,
) -> LineItem:
    quantity = _quantity(raw)
    unit_price = _unit_price(raw, quantity)

    max_discount = raw.max_discount if raw.max_discount is not None else HUNDRED
    max_discount = _clamp(max_discount, ZERO, HUNDRED)
    discount = _clamp(raw.discount_percent or ZERO, ZERO, max_discount)

    vat_rate = raw.vat_rate
    if vat_rate is None or vat_rate < ZERO or vat_rate > HUNDRED:
        vat_rate = defaults.vat_rate

    ean = normalize_barcode(raw.ean)
    if ean is not None and detect_barcode_format(ean) is None:
        logger.info("extracted_barcode_discarded", extra={"line_index": index})
        ean = None

    year = raw.purchase_year
    if year is None or not defaults.min_purchase_year <= year <= defaults.max_purchase_year:
        year = default_purchase_year(
            invoice_date, today, defaults.min_purchase_year, defaults.max_purchase_year,
        )

    return LineItem(
        index=index,
        name=raw.name or defaults.name_template.format(n=index + 1),
        reference=raw.reference or generated_reference(
            defaults.reference_prefix, invoice_date or today, index,
        ),
        ean=ean,
        unit=raw.unit if raw.unit in UNITS else defaults.unit,
        quantity=quantity,
        unit_price_ht=unit_price,
        vat_rate=vat_rate,
        discount_percent=discount,
        amounts=line_total(
            quantity, unit_price, vat_rate, discount,
            is_exempt=defaults.is_exempt, max_discount=max_discount, line_index=index,
        ),
        is_exempt=defaults.is_exempt,
        max_discount=max_discount,
        product_type=_product_type(raw.product_type),
        purchase_year=year,
        opening_stock=quantity,
        unlimited_stock=bool(raw.unlimited_stock),
        allow_out_of_stock_sale=bool(raw.allow_out_of_stock_sale),
        product_hint=raw.product_id,
    )


@traced_engine("normalization", "1.0", fingerprint_fields=("lines", "defaults", "invoice_date"))
def normalize_lines(
    *,
    lines: tuple[ExtractedLine, ...],
    defaults: LineDefaults,
    invoice_date: date | None,
    today: date,
) -> list[LineItem]:
    """Normalize every extracted line, preserving input order."""
    return [
        normalize_line(raw, i, defaults, invoice_date, today)
        for i, raw in enumerate(lines)
    ]


def recompute_line(
    line: LineItem,
    exchange_rate: Decimal | None = None,
    **changes,
) -> LineItem:
    """
    Apply field changes to a line and rebuild its amounts.

    ``exchange_rate`` set means the document is foreign: settlement amounts
    are recomputed too; None clears them.
    """
    updated = replace(line, **changes)
    amounts = line_total(
        updated.quantity,
        updated.unit_price_ht,
        updated.vat_rate,
        updated.discount_percent,
        is_exempt=updated.is_exempt,
        max_discount=updated.max_discount,
        line_index=updated.index,
    )
    settlement = convert_line_amounts(amounts, exchange_rate) if exchange_rate is not None else None
    return replace(updated, amounts=amounts, settlement_amounts=settlement)
