"""
Payments Domain Models (``intake_modules.payments.models``).

Frozen snapshots returned by ``PaymentsService``.  Amounts are in the
document currency unless the field name says settlement.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class DocumentBalance:
    """What a purchase document still owes."""

    document_id: UUID
    currency: str
    payable: Decimal
    paid_amount: Decimal
    remaining: Decimal
    payment_status: str
    withholding_rate: Decimal
    withholding_amount: Decimal
    net_payable: Decimal


@dataclass(frozen=True)
class PaymentSummary:
    id: UUID
    document_id: UUID
    payment_date: date
    amount: Decimal
    exchange_rate: Decimal
    settlement_amount: Decimal
    method: str
    reference_number: str | None = None
    payment_request_id: UUID | None = None


@dataclass(frozen=True)
class PaymentRequestSummary:
    id: UUID
    request_number: str
    document_id: UUID
    status: str
    requested_amount: Decimal
    withholding_rate: Decimal
    withholding_amount: Decimal
    net_requested_amount: Decimal
    paid_amount: Decimal | None = None
    payment_method: str | None = None
    reference_number: str | None = None
    rejection_reason: str | None = None
    decided_at: datetime | None = None
    payment_id: UUID | None = None
