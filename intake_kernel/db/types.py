"""
Module: intake_kernel.db.types
Responsibility: Annotated column types and the sanctioned rounding helpers for
    amounts, rates, quantities and percentages.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    engines and services.  MUST NOT import from any of those layers.

Invariants enforced:
    - Amounts are stored with 9 decimal places and PRESENTED with 3
      (settlement currency precision).  Rounding happens once, at the end of
      an aggregation, through round_amount(); per-line rounding during
      accumulation is forbidden.
    - Margin (gain) rates are presented with 2 decimal places.
    - No floats anywhere: to_decimal() rejects float input.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from sqlalchemy import Numeric, String

# Monetary amount: 38 digits, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Exchange rate: 38 digits, 12 decimal places
Rate = Annotated[Decimal, Numeric(38, 12)]

# Stock quantity
Quantity = Annotated[Decimal, Numeric(38, 9)]

# ISO 4217 currency code
CurrencyCode = Annotated[str, String(3)]

# Short business code (reference, status, enum value)
ShortCode = Annotated[str, String(50)]

AMOUNT_DECIMAL_PLACES = 3
GAIN_DECIMAL_PLACES = 2
RATE_DECIMAL_PLACES = 12

AMOUNT_QUANTUM = Decimal("0.001")
GAIN_QUANTUM = Decimal("0.01")

# Absolute tolerance when comparing a recomputed total against a target
AMOUNT_TOLERANCE = Decimal("0.001")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field: str = "value") -> Decimal:
    """Convert int/str/Decimal to Decimal.  Floats are refused."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"{field} must not be a float or bool, got {value!r}")
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"{field} is not a decimal number: {value!r}") from e


def round_amount(value: Decimal) -> Decimal:
    """Round an amount to presentation precision (3 places, half-up)."""
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


def round_gain(value: Decimal) -> Decimal:
    """Round a margin percentage to 2 places, half-up."""
    return value.quantize(GAIN_QUANTUM, rounding=ROUND_HALF_UP)


def amounts_match(a: Decimal, b: Decimal, tolerance: Decimal = AMOUNT_TOLERANCE) -> bool:
    """True when two amounts differ by at most the tolerance."""
    return abs(a - b) <= tolerance
