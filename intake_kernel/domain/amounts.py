"""
Amount value objects (``intake_kernel.domain.amounts``).

Responsibility
--------------
Immutable results of MoneyMath: per-line amounts, the sale-price block and
the aggregated document totals.  Values are kept unrounded; ``rounded()``
produces the 3-decimal presentation copy.

Invariants enforced
-------------------
* ``LineAmounts``: ``ttc == ht + vat`` (constructed only by MoneyMath).
* ``Totals``: ``net_payable == total_ttc + stamp_duty - withholding_amount``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum

from intake_kernel.db.types import round_amount, round_gain
from intake_kernel.domain.extraction import VatBreakdownEntry

_ZERO = Decimal("0")


@dataclass(frozen=True)
class LineAmounts:
    """HT / VAT / TTC of one line in one currency."""

    ht: Decimal
    vat: Decimal
    ttc: Decimal

    @classmethod
    def zero(cls) -> LineAmounts:
        return cls(_ZERO, _ZERO, _ZERO)

    def rounded(self) -> LineAmounts:
        return LineAmounts(round_amount(self.ht), round_amount(self.vat), round_amount(self.ttc))


@dataclass(frozen=True)
class SalePrice:
    """
    Sale price block derived from one of {price_ht, price_ttc, gain_rate}.

    All three are None whenever ``vat_rate`` is None: a sale price cannot
    exist without a VAT rate.
    """

    vat_rate: Decimal | None = None
    price_ht: Decimal | None = None
    price_ttc: Decimal | None = None
    gain_rate: Decimal | None = None

    @property
    def is_set(self) -> bool:
        return self.vat_rate is not None and self.price_ht is not None


class TotalsSource(str, Enum):
    """Which figures the totals were taken from."""

    LINES = "lines"
    EXTRACTION = "extraction"


@dataclass(frozen=True)
class Totals:
    """Document totals in the document currency, plus settlement equivalents."""

    currency: str
    gross_ht: Decimal
    total_discount: Decimal
    subtotal_ht: Decimal
    total_vat: Decimal
    total_ttc: Decimal
    stamp_duty: Decimal
    withholding_amount: Decimal
    net_payable: Decimal
    vat_breakdown: tuple[VatBreakdownEntry, ...] = ()
    source: TotalsSource = TotalsSource.LINES
    settlement_currency: str | None = None
    exchange_rate: Decimal = Decimal("1")
    settlement_total_ttc: Decimal | None = None
    settlement_net_payable: Decimal | None = None

    def rounded(self) -> Totals:
        """Presentation copy rounded to 3 places; the one rounding step of an aggregation."""
        return replace(
            self,
            gross_ht=round_amount(self.gross_ht),
            total_discount=round_amount(self.total_discount),
            subtotal_ht=round_amount(self.subtotal_ht),
            total_vat=round_amount(self.total_vat),
            total_ttc=round_amount(self.total_ttc),
            stamp_duty=round_amount(self.stamp_duty),
            withholding_amount=round_amount(self.withholding_amount),
            net_payable=round_amount(self.net_payable),
            vat_breakdown=tuple(
                VatBreakdownEntry(e.rate, round_amount(e.base_ht), round_amount(e.vat_amount))
                for e in self.vat_breakdown
            ),
            settlement_total_ttc=(
                round_amount(self.settlement_total_ttc)
                if self.settlement_total_ttc is not None else None
            ),
            settlement_net_payable=(
                round_amount(self.settlement_net_payable)
                if self.settlement_net_payable is not None else None
            ),
        )


def rounded_sale_price(price: SalePrice) -> SalePrice:
    """Round prices to 3 places and the gain rate to 2."""
    return SalePrice(
        vat_rate=price.vat_rate,
        price_ht=round_amount(price.price_ht) if price.price_ht is not None else None,
        price_ttc=round_amount(price.price_ttc) if price.price_ttc is not None else None,
        gain_rate=round_gain(price.gain_rate) if price.gain_rate is not None else None,
    )
