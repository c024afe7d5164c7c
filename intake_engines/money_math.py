"""
intake_engines.money_math -- Line totals, document totals, stamp duty and withholding.

Responsibility:
    Pure arithmetic primitives of the intake pipeline:

        line_ht  = quantity * unit_price_ht * (1 - discount_percent / 100)
        line_vat = 0 if exempt else line_ht * vat_rate / 100
        line_ttc = line_ht + line_vat

        withholding = total_ttc * withholding_rate / 100
        net_payable = total_ttc + stamp_duty - withholding

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import intake_kernel domain types, db.types helpers and
    exceptions.

Invariants enforced:
    - No per-line rounding: lines are summed unrounded and the aggregate is
      rounded once, through ``Totals.rounded()``.
    - Withholding is computed on total_ttc, never on subtotal_ht or
      net_payable.
    - Stamp duty is a flat per-document amount and is zero for foreign
      counterparts.
    - Lines edited by the user make the recomputed sum authoritative;
      extraction totals are used only before the first edit.

Failure modes:
    - ValueOutOfRangeError for a negative quantity or price, a VAT rate
      outside [0, 100], or a discount outside [0, max_discount].
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from decimal import Decimal

from intake_engines.tracer import traced_engine
from intake_kernel.db.types import HUNDRED, ZERO
from intake_kernel.domain.amounts import LineAmounts, Totals, TotalsSource
from intake_kernel.domain.context import LineItem
from intake_kernel.domain.extraction import ExtractedTotals, VatBreakdownEntry
from intake_kernel.exceptions import ValueOutOfRangeError
from intake_kernel.logging_config import get_logger

logger = get_logger("engines.money_math")

ONE = Decimal("1")


def _check_line_inputs(
    quantity: Decimal,
    unit_price_ht: Decimal,
    vat_rate: Decimal,
    discount_percent: Decimal,
    max_discount: Decimal,
    line_index: int | None,
) -> None:
    if quantity < ZERO:
        raise ValueOutOfRangeError("quantity", quantity, ZERO, None, line_index)
    if unit_price_ht < ZERO:
        raise ValueOutOfRangeError("unit_price_ht", unit_price_ht, ZERO, None, line_index)
    if vat_rate < ZERO or vat_rate > HUNDRED:
        raise ValueOutOfRangeError("vat_rate", vat_rate, ZERO, HUNDRED, line_index)
    if discount_percent < ZERO or discount_percent > max_discount:
        raise ValueOutOfRangeError(
            "discount_percent", discount_percent, ZERO, max_discount, line_index,
        )


def line_total(
    quantity: Decimal,
    unit_price_ht: Decimal,
    vat_rate: Decimal,
    discount_percent: Decimal = ZERO,
    is_exempt: bool = False,
    max_discount: Decimal = HUNDRED,
    line_index: int | None = None,
) -> LineAmounts:
    """HT, VAT and TTC of one line, unrounded."""
    _check_line_inputs(quantity, unit_price_ht, vat_rate, discount_percent, max_discount, line_index)

    ht = quantity * unit_price_ht * (ONE - discount_percent / HUNDRED)
    vat = ZERO if is_exempt else ht * vat_rate / HUNDRED
    return LineAmounts(ht=ht, vat=vat, ttc=ht + vat)


def gross_amount(quantity: Decimal, unit_price_ht: Decimal) -> Decimal:
    """Line amount before discount."""
    return quantity * unit_price_ht


def withholding_amount(total_ttc: Decimal, withholding_rate: Decimal) -> Decimal:
    """Withholding retained at source, always on the TTC total."""
    if withholding_rate < ZERO or withholding_rate > HUNDRED:
        raise ValueOutOfRangeError("withholding_rate", withholding_rate, ZERO, HUNDRED)
    return total_ttc * withholding_rate / HUNDRED


def net_payable(total_ttc: Decimal, stamp_duty: Decimal, withholding: Decimal) -> Decimal:
    return total_ttc + stamp_duty - withholding


def stamp_duty_for(foreign: bool, amount: Decimal, enabled: bool = True) -> Decimal:
    """Flat per-document stamp duty; local counterparts only."""
    if foreign or not enabled:
        return ZERO
    return amount


def _settle(
    totals_ttc: Decimal,
    net: Decimal,
    currency: str,
    settlement_currency: str | None,
    exchange_rate: Decimal,
) -> tuple[Decimal | None, Decimal | None]:
    if settlement_currency is None:
        return None, None
    if currency == settlement_currency:
        return totals_ttc, net
    return totals_ttc * exchange_rate, net * exchange_rate


@traced_engine(
    "money_math", "1.0",
    fingerprint_fields=("lines", "currency", "stamp_duty", "withholding_rate", "exchange_rate"),
)
def aggregate_totals(
    *,
    lines: Sequence[LineItem],
    currency: str,
    stamp_duty: Decimal = ZERO,
    withholding_rate: Decimal = ZERO,
    settlement_currency: str | None = None,
    exchange_rate: Decimal = ONE,
) -> Totals:
    """
    Sum line amounts into document totals.

    Sums are unrounded; call ``.rounded()`` on the result for presentation
    and persistence.
    """
    t0 = time.monotonic()

    gross = ZERO
    subtotal = ZERO
    vat = ZERO
    ttc = ZERO
    breakdown: dict[Decimal, tuple[Decimal, Decimal]] = {}

    for line in lines:
        gross += gross_amount(line.quantity, line.unit_price_ht)
        subtotal += line.amounts.ht
        vat += line.amounts.vat
        ttc += line.amounts.ttc
        if not line.is_exempt:
            base, tax = breakdown.get(line.vat_rate, (ZERO, ZERO))
            breakdown[line.vat_rate] = (base + line.amounts.ht, tax + line.amounts.vat)

    withholding = withholding_amount(ttc, withholding_rate)
    net = net_payable(ttc, stamp_duty, withholding)
    settlement_ttc, settlement_net = _settle(
        ttc, net, currency, settlement_currency, exchange_rate,
    )

    totals = Totals(
        currency=currency,
        gross_ht=gross,
        total_discount=gross - subtotal,
        subtotal_ht=subtotal,
        total_vat=vat,
        total_ttc=ttc,
        stamp_duty=stamp_duty,
        withholding_amount=withholding,
        net_payable=net,
        vat_breakdown=tuple(
            VatBreakdownEntry(rate, base, tax)
            for rate, (base, tax) in sorted(breakdown.items())
        ),
        source=TotalsSource.LINES,
        settlement_currency=settlement_currency,
        exchange_rate=exchange_rate,
        settlement_total_ttc=settlement_ttc,
        settlement_net_payable=settlement_net,
    )

    logger.info(
        "totals_aggregated",
        extra={
            "line_count": len(lines),
            "currency": currency,
            "total_ttc": str(ttc),
            "net_payable": str(net),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        },
    )
    return totals


@traced_engine(
    "money_math", "1.0",
    fingerprint_fields=("extracted", "currency", "stamp_duty", "withholding_rate"),
)
def totals_from_extraction(
    *,
    extracted: ExtractedTotals,
    currency: str,
    stamp_duty: Decimal = ZERO,
    withholding_rate: Decimal = ZERO,
    exempt: bool = False,
    settlement_currency: str | None = None,
    exchange_rate: Decimal = ONE,
) -> Totals:
    """
    Totals as printed on the extracted document.

    Missing figures are derived from the present ones.  An exempt document
    keeps its HT figures and carries no VAT.  Net payable is always
    recomputed so the totals invariant holds.
    """
    discount = extracted.total_discount or ZERO
    if extracted.ht_after_discount is not None:
        subtotal = extracted.ht_after_discount
    elif extracted.subtotal_ht is not None:
        subtotal = extracted.subtotal_ht - discount
    else:
        subtotal = (extracted.total_ttc or ZERO) - (extracted.total_vat or ZERO)

    if exempt:
        vat = ZERO
        ttc = subtotal
        breakdown: tuple[VatBreakdownEntry, ...] = ()
    else:
        vat = extracted.total_vat if extracted.total_vat is not None else ZERO
        ttc = extracted.total_ttc if extracted.total_ttc is not None else subtotal + vat
        breakdown = extracted.vat_breakdown

    withholding = withholding_amount(ttc, withholding_rate)
    net = net_payable(ttc, stamp_duty, withholding)
    settlement_ttc, settlement_net = _settle(
        ttc, net, currency, settlement_currency, exchange_rate,
    )

    return Totals(
        currency=currency,
        gross_ht=subtotal + discount,
        total_discount=discount,
        subtotal_ht=subtotal,
        total_vat=vat,
        total_ttc=ttc,
        stamp_duty=stamp_duty,
        withholding_amount=withholding,
        net_payable=net,
        vat_breakdown=breakdown,
        source=TotalsSource.EXTRACTION,
        settlement_currency=settlement_currency,
        exchange_rate=exchange_rate,
        settlement_total_ttc=settlement_ttc,
        settlement_net_payable=settlement_net,
    )


def authoritative_totals(
    *,
    lines: Sequence[LineItem],
    extracted: ExtractedTotals | None,
    lines_edited: bool,
    currency: str,
    stamp_duty: Decimal = ZERO,
    withholding_rate: Decimal = ZERO,
    exempt: bool = False,
    settlement_currency: str | None = None,
    exchange_rate: Decimal = ONE,
) -> Totals:
    """
    Pick the authoritative totals source.

    The extraction's figures win only while no line has been edited and
    the extraction carries a usable TTC total; otherwise (or when there
    are no lines to sum) the recomputed sum of lines wins.
    """
    use_extraction = (
        not lines_edited
        and extracted is not None
        and extracted.has_amounts
    )
    if use_extraction:
        logger.debug("totals_source_selected", extra={"source": "extraction"})
        return totals_from_extraction(
            extracted=extracted,
            currency=currency,
            stamp_duty=stamp_duty,
            withholding_rate=withholding_rate,
            exempt=exempt,
            settlement_currency=settlement_currency,
            exchange_rate=exchange_rate,
        )
    logger.debug("totals_source_selected", extra={"source": "lines"})
    return aggregate_totals(
        lines=lines,
        currency=currency,
        stamp_duty=stamp_duty,
        withholding_rate=withholding_rate,
        settlement_currency=settlement_currency,
        exchange_rate=exchange_rate,
    )
