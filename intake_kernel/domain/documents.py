"""Document, request and payment status vocabularies."""

from __future__ import annotations

from enum import Enum


class DocumentKind(str, Enum):
    """What the committed document is; decides the stock direction."""

    PURCHASE = "purchase"
    INVOICE = "invoice"


class CreationMode(str, Enum):
    """How the workflow was seeded."""

    EXTRACTION = "extraction"
    INVOICE_REQUEST = "invoice_request"
    MANUAL = "manual"


class PurchaseDocumentStatus(str, Enum):
    VALIDATED = "validated"
    CANCELLED = "cancelled"


class InvoiceStatus(str, Enum):
    CREATED = "created"
    VALIDATED = "validated"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class InvoiceRequestStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    REJECTED = "rejected"
    CONVERTED = "converted"


class PaymentRequestStatus(str, Enum):
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    CHECK = "check"
    DRAFT = "draft"
    IBAN_TRANSFER = "iban_transfer"
    SWIFT_TRANSFER = "swift_transfer"
    BANK_DEPOSIT = "bank_deposit"
    MIXED = "mixed"

    @property
    def requires_reference(self) -> bool:
        return self in _REFERENCE_METHODS


_REFERENCE_METHODS = frozenset({
    PaymentMethod.CHECK,
    PaymentMethod.DRAFT,
    PaymentMethod.IBAN_TRANSFER,
    PaymentMethod.SWIFT_TRANSFER,
    PaymentMethod.BANK_DEPOSIT,
})
