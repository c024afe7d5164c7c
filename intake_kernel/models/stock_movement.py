"""
Module: intake_kernel.models.stock_movement
Responsibility: ORM persistence for the append-only stock ledger.  One row
    per quantity change of one product.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity > 0; direction comes from movement_type (ck_movement_quantity).
    - new_stock == previous_stock + delta, where delta is +quantity for
      "add" and -quantity for "remove"; computed by the stock reconciler
      from the locked previous value.
    - Rows are never updated or deleted (db/immutability.py); a correction
      is a new reversing row pointing at the original through
      reverses_movement_id, and a row may be reversed at most once
      (uq_movement_reversal).

Audit relevance:
    Replaying the ledger of a product in created order reconstructs its
    current_stock exactly.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from intake_kernel.db.base import OrganizationScoped, TrackedBase, UUIDString


class StockMovement(OrganizationScoped, TrackedBase):
    """Immutable ledger entry for one product stock change."""

    __tablename__ = "stock_movements"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_movement_quantity"),
        UniqueConstraint("reverses_movement_id", name="uq_movement_reversal"),
        Index("idx_movement_product", "product_id", "created_at"),
        Index("idx_movement_source", "source_document_kind", "source_document_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False,
    )

    # add | remove
    movement_type: Mapped[str] = mapped_column(String(10), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    previous_stock: Mapped[Decimal] = mapped_column(nullable=False)
    new_stock: Mapped[Decimal] = mapped_column(nullable=False)

    reason_category: Mapped[str] = mapped_column(String(50), nullable=False)
    reason_detail: Mapped[str] = mapped_column(String(255), nullable=False)

    # purchase | invoice | manual
    source_document_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    source_document_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reverses_movement_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("stock_movements.id"), nullable=True,
    )

    @property
    def delta(self) -> Decimal:
        """Signed quantity applied to the product stock."""
        if self.movement_type == "add":
            return self.quantity
        return -self.quantity

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.movement_type} {self.quantity} "
            f"{self.previous_stock}->{self.new_stock}>"
        )
