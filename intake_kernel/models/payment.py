"""
Module: intake_kernel.models.payment
Responsibility: ORM persistence for purchase payments and for payment
    requests sent to suppliers.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Payment amount > 0 (ck_payment_amount_positive).
    - settlement_amount == amount * exchange_rate for the rate stored on the
      payment row itself.
    - request_number unique per organization (uq_payment_request_number).
    - A payment request creates at most one payment, on approval.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from intake_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString

if TYPE_CHECKING:
    from intake_kernel.models.purchase import PurchaseDocument


class PurchasePayment(OrganizationScoped, TrackedBase):
    """One payment recorded against a purchase document."""

    __tablename__ = "purchase_payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        Index("idx_payment_document", "document_id"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_documents.id"), nullable=False,
    )

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    # Rate this payment was executed at and its TND equivalent
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(38, 12), nullable=False)
    settlement_amount: Mapped[Decimal] = mapped_column(nullable=False)

    method: Mapped[str] = mapped_column(String(30), nullable=False)
    method_lines: Mapped[list | None] = mapped_column(JSON, nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment_request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    document: Mapped["PurchaseDocument"] = relationship(back_populates="payments")

    def __repr__(self) -> str:
        return f"<PurchasePayment {self.amount} via {self.method}>"


class PaymentRequest(OrganizationScoped, TrackedBase):
    """
    Request asking the supplier side to register a payment.

    The supplier's response (paid amount, method, reference) is stored on
    the request; only approval turns it into a PurchasePayment.
    """

    __tablename__ = "payment_requests"

    __table_args__ = (
        UniqueConstraint("organization_id", "request_number", name="uq_payment_request_number"),
        Index("idx_payment_request_document", "document_id"),
        Index("idx_payment_request_status", "organization_id", "status"),
    )

    request_number: Mapped[str] = mapped_column(String(30), nullable=False)
    document_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_documents.id"), nullable=False,
    )

    requested_amount: Mapped[Decimal] = mapped_column(nullable=False)
    withholding_base: Mapped[Decimal] = mapped_column(nullable=False)
    withholding_rate: Mapped[Decimal] = mapped_column(Numeric(9, 3), nullable=False)
    withholding_amount: Mapped[Decimal] = mapped_column(nullable=False)
    net_requested_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")

    # Supplier response
    paid_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    method_lines: Mapped[list | None] = mapped_column(JSON, nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentRequest {self.request_number} [{self.status}]>"
