"""
Invoicing Domain Models (``intake_modules.invoicing.models``).

Frozen value objects flowing into and out of ``InvoicingService``: the
shape of a new invoice request and snapshots of requests and invoices.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class RequestLineInput:
    """One product line of a client's invoice request."""

    quantity: Decimal
    product_id: UUID | None = None
    description: str | None = None
    unit_price_ttc: Decimal | None = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("Requested quantity must be positive")
        if self.unit_price_ttc is not None and self.unit_price_ttc < 0:
            raise ValueError("Unit price cannot be negative")


@dataclass(frozen=True)
class ClientIdentity:
    """Client details as entered on the request form."""

    client_type: str
    first_name: str | None = None
    last_name: str | None = None
    company_name: str | None = None
    identifier_type: str | None = None
    identifier_value: str | None = None
    country: str | None = None
    governorate: str | None = None
    address: str | None = None
    phone: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class InvoiceRequestSummary:
    id: UUID
    request_number: str
    status: str
    total_ttc: Decimal
    purchase_date: date | None
    rejection_reason: str | None = None
    generated_invoice_id: UUID | None = None
    linked_client_id: UUID | None = None


@dataclass(frozen=True)
class InvoiceLineSummary:
    order_index: int
    product_id: UUID
    name: str
    quantity: Decimal
    unit_price_ht: Decimal
    vat_rate: Decimal
    discount_percent: Decimal
    line_ht: Decimal
    line_vat: Decimal
    line_ttc: Decimal


@dataclass(frozen=True)
class InvoiceSummary:
    """A committed client invoice."""

    id: UUID
    invoice_number: str
    invoice_date: date
    client_id: UUID
    request_id: UUID | None
    status: str
    currency: str
    subtotal_ht: Decimal
    total_vat: Decimal
    total_ttc: Decimal
    stamp_duty: Decimal
    net_payable: Decimal
    payment_status: str
    lines: tuple[InvoiceLineSummary, ...] = ()
