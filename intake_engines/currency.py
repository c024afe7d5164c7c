"""
intake_engines.currency -- Currency conversion and rate resolution.

Responsibility:
    ``convert(amount, rate)`` turns a document-currency amount into the
    settlement currency: ``amount * rate``.  ``resolve_rate`` picks the rate
    a currency step starts from: the stored organization rate when one
    exists, else the static fallback table, else the unknown-currency
    default.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The stored rate is read
    by ``intake_services.exchange_rate_service`` and passed in.

Invariants enforced:
    - Rates are Decimal and strictly positive.
    - Conversion never rounds; callers round the aggregate once.
    - The settlement currency converts to itself at exactly 1.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from intake_kernel.db.types import ZERO
from intake_kernel.domain.amounts import LineAmounts
from intake_kernel.domain.currency import CurrencyRegistry
from intake_kernel.exceptions import InvalidCurrencyError, InvalidExchangeRateError
from intake_kernel.logging_config import get_logger

logger = get_logger("engines.currency")

ONE = Decimal("1")


class RateSource(str, Enum):
    IDENTITY = "identity"
    STORED = "stored"
    FALLBACK = "fallback"
    DEFAULT = "default"


@dataclass(frozen=True)
class RateQuote:
    """Rate offered for a currency pair and where it came from."""

    from_currency: str
    to_currency: str
    rate: Decimal
    source: RateSource


def validate_rate(rate: Decimal | None, currency: str | None = None) -> Decimal:
    """Return ``rate`` if it is a finite Decimal > 0."""
    if rate is None or isinstance(rate, (float, bool)) or not isinstance(rate, (Decimal, int)):
        raise InvalidExchangeRateError(rate, currency)
    rate = Decimal(rate)
    if not rate.is_finite() or rate <= ZERO:
        raise InvalidExchangeRateError(rate, currency)
    return rate


def validate_currency(code: str | None) -> str:
    try:
        return CurrencyRegistry.validate(code or "")
    except ValueError as e:
        raise InvalidCurrencyError(str(code)) from e


def convert(amount: Decimal, rate: Decimal) -> Decimal:
    """Document-currency amount in the settlement currency."""
    return amount * validate_rate(rate)


def convert_line_amounts(amounts: LineAmounts, rate: Decimal) -> LineAmounts:
    rate = validate_rate(rate)
    return LineAmounts(ht=amounts.ht * rate, vat=amounts.vat * rate, ttc=amounts.ttc * rate)


def resolve_rate(
    *,
    currency: str,
    settlement_currency: str,
    stored_rate: Decimal | None,
    fallback_rates: Mapping[str, Decimal],
    unknown_fallback_rate: Decimal = ONE,
) -> RateQuote:
    """Starting rate for the currency step."""
    currency = validate_currency(currency)
    settlement_currency = validate_currency(settlement_currency)

    if currency == settlement_currency:
        quote = RateQuote(currency, settlement_currency, ONE, RateSource.IDENTITY)
    elif stored_rate is not None and stored_rate > ZERO:
        quote = RateQuote(currency, settlement_currency, stored_rate, RateSource.STORED)
    elif currency in fallback_rates:
        quote = RateQuote(
            currency, settlement_currency, fallback_rates[currency], RateSource.FALLBACK,
        )
    else:
        quote = RateQuote(
            currency, settlement_currency, unknown_fallback_rate, RateSource.DEFAULT,
        )

    logger.debug(
        "exchange_rate_resolved",
        extra={
            "from_currency": quote.from_currency,
            "to_currency": quote.to_currency,
            "rate": str(quote.rate),
            "source": quote.source.value,
        },
    )
    return quote
