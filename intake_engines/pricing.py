"""
Sale price derivation.

Given one of {price_ht, price_ttc, gain_rate}, a VAT rate and the unit
purchase cost (TTC), derive the other two:

    price_ttc = price_ht * (1 + vat_rate / 100)
    price_ht  = price_ttc / (1 + vat_rate / 100)
    price_ttc = unit_cost * (1 + gain_rate / 100)
    gain_rate = (price_ttc - unit_cost) / unit_cost * 100     (0 when cost is 0)

The field the user entered is kept as given; derived prices are rounded to
3 places and the derived gain rate to 2.  Without a VAT rate no sale price
exists: every field is None.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from intake_engines.tracer import traced_engine
from intake_kernel.db.types import HUNDRED, ZERO, round_amount, round_gain
from intake_kernel.domain.amounts import SalePrice
from intake_kernel.exceptions import ValueOutOfRangeError
from intake_kernel.logging_config import get_logger

logger = get_logger("engines.pricing")

ONE = Decimal("1")


class SalePriceField(str, Enum):
    VAT_RATE = "vat_rate"
    PRICE_HT = "price_ht"
    PRICE_TTC = "price_ttc"
    GAIN_RATE = "gain_rate"


def unit_purchase_cost(line_ttc: Decimal, quantity: Decimal) -> Decimal:
    """Unit purchase cost TTC of a line; 0 for a zero quantity."""
    if quantity == ZERO:
        return ZERO
    return line_ttc / quantity


def _factor(vat_rate: Decimal) -> Decimal:
    return ONE + vat_rate / HUNDRED


def _gain(price_ttc: Decimal, unit_cost: Decimal) -> Decimal:
    if unit_cost == ZERO:
        return ZERO
    return (price_ttc - unit_cost) / unit_cost * HUNDRED


def _from_ht(vat_rate: Decimal, price_ht: Decimal, unit_cost: Decimal) -> SalePrice:
    ttc = price_ht * _factor(vat_rate)
    return SalePrice(
        vat_rate=vat_rate,
        price_ht=price_ht,
        price_ttc=round_amount(ttc),
        gain_rate=round_gain(_gain(ttc, unit_cost)),
    )


def _from_ttc(vat_rate: Decimal, price_ttc: Decimal, unit_cost: Decimal) -> SalePrice:
    return SalePrice(
        vat_rate=vat_rate,
        price_ht=round_amount(price_ttc / _factor(vat_rate)),
        price_ttc=price_ttc,
        gain_rate=round_gain(_gain(price_ttc, unit_cost)),
    )


def _from_gain(vat_rate: Decimal, gain_rate: Decimal, unit_cost: Decimal) -> SalePrice:
    ttc = unit_cost * (ONE + gain_rate / HUNDRED)
    return SalePrice(
        vat_rate=vat_rate,
        price_ht=round_amount(ttc / _factor(vat_rate)),
        price_ttc=round_amount(ttc),
        gain_rate=gain_rate,
    )


@traced_engine(
    "pricing", "1.0",
    fingerprint_fields=("current", "field", "value", "unit_cost"),
)
def derive_sale_price(
    *,
    current: SalePrice,
    field: SalePriceField,
    value: Decimal | None,
    unit_cost: Decimal,
) -> SalePrice:
    """
    Apply one edit to a sale price block and derive the rest.

    Changing the VAT rate recomputes from the HT price when set, else from
    the TTC price, else from the gain rate.  Clearing a price field clears
    the derived ones but keeps the VAT rate.
    """
    field = SalePriceField(field)
    vat_rate = value if field is SalePriceField.VAT_RATE else current.vat_rate
    if vat_rate is None:
        return SalePrice()
    if vat_rate < ZERO or vat_rate > HUNDRED:
        raise ValueOutOfRangeError("sale_vat_rate", vat_rate, ZERO, HUNDRED)

    if field is SalePriceField.VAT_RATE:
        if current.price_ht is not None:
            return _from_ht(vat_rate, current.price_ht, unit_cost)
        if current.price_ttc is not None:
            return _from_ttc(vat_rate, current.price_ttc, unit_cost)
        if current.gain_rate is not None:
            return _from_gain(vat_rate, current.gain_rate, unit_cost)
        return SalePrice(vat_rate=vat_rate)

    if value is None:
        return SalePrice(vat_rate=vat_rate)
    if value < ZERO and field is not SalePriceField.GAIN_RATE:
        raise ValueOutOfRangeError(f"sale_{field.value}", value, ZERO, None)

    if field is SalePriceField.PRICE_HT:
        return _from_ht(vat_rate, value, unit_cost)
    if field is SalePriceField.PRICE_TTC:
        return _from_ttc(vat_rate, value, unit_cost)
    return _from_gain(vat_rate, value, unit_cost)


def reprice_for_cost(current: SalePrice, unit_cost: Decimal) -> SalePrice:
    """
    Re-derive a sale price after the purchase cost changed.

    A block with a gain rate follows the cost; a block without one is kept
    unchanged.
    """
    if current.vat_rate is None:
        return SalePrice()
    if current.gain_rate is not None:
        return _from_gain(current.vat_rate, current.gain_rate, unit_cost)
    return current


def sale_price_from_catalog(
    vat_rate: Decimal | None,
    price_ht: Decimal | None,
    price_ttc: Decimal | None,
    gain_rate: Decimal | None,
) -> SalePrice:
    """Sale price block of an existing product row; empty without a VAT rate."""
    if vat_rate is None:
        return SalePrice()
    return SalePrice(
        vat_rate=vat_rate,
        price_ht=price_ht,
        price_ttc=price_ttc,
        gain_rate=gain_rate,
    )
