"""
Module: intake_kernel.models.invoice
Responsibility: ORM persistence for client invoice requests and the
    invoices generated from them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - invoice_number unique per organization (uq_invoice_number).
    - request_number unique per organization (uq_invoice_request_number).
    - An invoice request generates at most one invoice; generated_invoice_id
      and linked_client_id are set together when it is processed.
    - Invoice lines are immutable once written (db/immutability.py).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from intake_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString


class InvoiceRequest(OrganizationScoped, TrackedBase):
    """Client request for an invoice of a past purchase."""

    __tablename__ = "invoice_requests"

    __table_args__ = (
        UniqueConstraint("organization_id", "request_number", name="uq_invoice_request_number"),
        Index("idx_invoice_request_status", "organization_id", "status"),
    )

    request_number: Mapped[str] = mapped_column(String(30), nullable=False)
    transaction_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    purchase_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_ttc: Mapped[Decimal] = mapped_column(nullable=False)

    # Client identity as typed by the requester
    client_type: Mapped[str] = mapped_column(String(30), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    identifier_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    identifier_value: Mapped[str | None] = mapped_column(String(60), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    governorate: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # pending | processed | rejected | converted
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    generated_invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=True,
    )
    linked_client_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("counterparts.id"), nullable=True,
    )

    lines: Mapped[list["InvoiceRequestLine"]] = relationship(
        back_populates="request",
        order_by="InvoiceRequestLine.order_index",
    )

    def __repr__(self) -> str:
        return f"<InvoiceRequest {self.request_number} [{self.status}]>"


class InvoiceRequestLine(OrganizationScoped, TrackedBase):
    """Item the client says was bought; seeds one invoice line."""

    __tablename__ = "invoice_request_lines"

    __table_args__ = (
        UniqueConstraint("request_id", "order_index", name="uq_invoice_request_line_order"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("invoice_requests.id"), nullable=False,
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=True,
    )
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price_ttc: Mapped[Decimal | None] = mapped_column(nullable=True)

    request: Mapped[InvoiceRequest] = relationship(back_populates="lines")


class Invoice(OrganizationScoped, TrackedBase):
    """Client invoice; stock leaves the catalog when it is committed."""

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("organization_id", "invoice_number", name="uq_invoice_number"),
        Index("idx_invoice_client", "organization_id", "client_id"),
    )

    invoice_number: Mapped[str] = mapped_column(String(30), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)

    client_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("counterparts.id"), nullable=False,
    )
    request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="created")
    creation_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    document_family: Mapped[str | None] = mapped_column(String(50), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TND")
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(38, 12), nullable=False, default=Decimal("1"),
    )

    gross_ht: Mapped[Decimal] = mapped_column(nullable=False)
    total_discount: Mapped[Decimal] = mapped_column(nullable=False)
    subtotal_ht: Mapped[Decimal] = mapped_column(nullable=False)
    total_vat: Mapped[Decimal] = mapped_column(nullable=False)
    total_ttc: Mapped[Decimal] = mapped_column(nullable=False)
    stamp_duty: Mapped[Decimal] = mapped_column(nullable=False)
    net_payable: Mapped[Decimal] = mapped_column(nullable=False)

    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="unpaid")

    lines: Mapped[list["InvoiceLine"]] = relationship(
        back_populates="invoice",
        order_by="InvoiceLine.order_index",
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number}: {self.net_payable} {self.currency}>"


class InvoiceLine(OrganizationScoped, TrackedBase):
    """One committed invoice line, priced with the sale price block."""

    __tablename__ = "invoice_lines"

    __table_args__ = (
        UniqueConstraint("invoice_id", "order_index", name="uq_invoice_line_order"),
        Index("idx_invoice_line_product", "product_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=False,
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price_ht: Mapped[Decimal] = mapped_column(nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(9, 3), nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(9, 3), nullable=False)
    is_exempt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    line_ht: Mapped[Decimal] = mapped_column(nullable=False)
    line_vat: Mapped[Decimal] = mapped_column(nullable=False)
    line_ttc: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="lines")
