"""
Purchasing Domain Models (``intake_modules.purchasing.models``).

Frozen snapshots of committed supplier invoices, returned by
``PurchasingService``.  All monetary fields are ``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from intake_kernel.logging_config import get_logger

logger = get_logger("modules.purchasing.models")


@dataclass(frozen=True)
class PurchaseLineSummary:
    order_index: int
    product_id: UUID
    name: str
    reference: str | None
    quantity: Decimal
    unit_price_ht: Decimal
    vat_rate: Decimal
    discount_percent: Decimal
    line_ht: Decimal
    line_vat: Decimal
    line_ttc: Decimal
    settlement_ttc: Decimal | None = None


@dataclass(frozen=True)
class PurchaseDocumentSummary:
    """A committed supplier invoice as seen by callers."""

    id: UUID
    invoice_number: str | None
    invoice_date: date | None
    supplier_id: UUID
    status: str
    currency: str
    exchange_rate: Decimal
    subtotal_ht: Decimal
    total_vat: Decimal
    total_ttc: Decimal
    stamp_duty: Decimal
    withholding_amount: Decimal
    net_payable: Decimal
    settlement_net_payable: Decimal
    paid_amount: Decimal
    payment_status: str
    lines: tuple[PurchaseLineSummary, ...] = ()

    def __post_init__(self) -> None:
        if self.total_ttc < 0 or self.net_payable < 0:
            raise ValueError("Document totals cannot be negative")
