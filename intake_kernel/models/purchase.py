"""
Module: intake_kernel.models.purchase
Responsibility: ORM persistence for committed supplier purchase documents and
    their lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - net_payable == total_ttc + stamp_duty - withholding_amount.
    - Lines keep the input order through order_index, unique per document
      (uq_purchase_line_order).
    - Lines are immutable once written (db/immutability.py); withholding
      and payment fields on the header stay mutable for payment bookkeeping.

Failure modes:
    - ImmutabilityViolationError on any update/delete of a line.
"""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from intake_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString

if TYPE_CHECKING:
    from intake_kernel.models.payment import PurchasePayment


class PurchaseDocument(OrganizationScoped, TrackedBase):
    """
    Supplier invoice committed by the purchase intake workflow.

    Amounts are in ``currency``; ``settlement_*`` columns hold the TND
    equivalents at ``exchange_rate`` (1 for local documents).
    """

    __tablename__ = "purchase_documents"

    __table_args__ = (
        Index("idx_purchase_supplier", "organization_id", "supplier_id"),
        Index("idx_purchase_number", "organization_id", "invoice_number"),
    )

    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    supplier_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("counterparts.id"), nullable=False,
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="validated")
    creation_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    document_family: Mapped[str | None] = mapped_column(String(50), nullable=True)
    totals_source: Mapped[str] = mapped_column(String(20), nullable=False, default="lines")

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(38, 12), nullable=False)

    gross_ht: Mapped[Decimal] = mapped_column(nullable=False)
    total_discount: Mapped[Decimal] = mapped_column(nullable=False)
    subtotal_ht: Mapped[Decimal] = mapped_column(nullable=False)
    total_vat: Mapped[Decimal] = mapped_column(nullable=False)
    total_ttc: Mapped[Decimal] = mapped_column(nullable=False)
    stamp_duty: Mapped[Decimal] = mapped_column(nullable=False)
    withholding_rate: Mapped[Decimal] = mapped_column(
        Numeric(9, 3), nullable=False, default=Decimal("0"),
    )
    withholding_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    net_payable: Mapped[Decimal] = mapped_column(nullable=False)

    settlement_total_ttc: Mapped[Decimal] = mapped_column(nullable=False)
    settlement_net_payable: Mapped[Decimal] = mapped_column(nullable=False)

    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="unpaid")

    pdf_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    pdf_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)

    lines: Mapped[list["PurchaseLine"]] = relationship(
        back_populates="document",
        order_by="PurchaseLine.order_index",
    )

    payments: Mapped[list["PurchasePayment"]] = relationship(
        back_populates="document",
        order_by="PurchasePayment.created_at",
    )

    @property
    def is_foreign(self) -> bool:
        return self.currency != "TND"

    def __repr__(self) -> str:
        return f"<PurchaseDocument {self.invoice_number}: {self.net_payable} {self.currency}>"


class PurchaseLine(OrganizationScoped, TrackedBase):
    """One committed purchase line; amounts unrounded as computed."""

    __tablename__ = "purchase_lines"

    __table_args__ = (
        UniqueConstraint("document_id", "order_index", name="uq_purchase_line_order"),
        Index("idx_purchase_line_product", "product_id"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("purchase_documents.id"), nullable=False,
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ean: Mapped[str | None] = mapped_column(String(50), nullable=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price_ht: Mapped[Decimal] = mapped_column(nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(9, 3), nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(9, 3), nullable=False)
    is_exempt: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    line_ht: Mapped[Decimal] = mapped_column(nullable=False)
    line_vat: Mapped[Decimal] = mapped_column(nullable=False)
    line_ttc: Mapped[Decimal] = mapped_column(nullable=False)

    settlement_ht: Mapped[Decimal | None] = mapped_column(nullable=True)
    settlement_ttc: Mapped[Decimal | None] = mapped_column(nullable=True)

    document: Mapped[PurchaseDocument] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<PurchaseLine #{self.order_index} {self.name} x{self.quantity}>"
