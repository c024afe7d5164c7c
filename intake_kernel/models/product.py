"""
Module: intake_kernel.models.product
Responsibility: ORM persistence for catalog products and their current stock
    level.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - name, reference and ean are each unique per organization
      (uq_product_name, uq_product_reference, uq_product_ean).
    - current_stock only changes together with a StockMovement row written
      by the stock reconciler, under a compare-and-set on the previous value.
    - unlimited_stock products are never touched by stock mutation.

Failure modes:
    - IntegrityError on a duplicate name/reference/ean (checked earlier by
      the catalog service, which raises DuplicateProductError).
"""

from decimal import Decimal

from sqlalchemy import Boolean, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from intake_kernel.db.base import OrganizationScoped, TrackedBase


class Product(OrganizationScoped, TrackedBase):
    """
    Catalog product or service.

    Guarantees:
        - current_stock is None for products whose stock is not tracked.
        - Sale price fields are either all set with sale_vat_rate, or unset.
    """

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_product_name"),
        UniqueConstraint("organization_id", "reference", name="uq_product_reference"),
        UniqueConstraint("organization_id", "ean", name="uq_product_ean"),
        Index("idx_product_status", "organization_id", "status"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ean: Mapped[str | None] = mapped_column(String(50), nullable=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="piece")

    # physical | service
    product_type: Mapped[str] = mapped_column(String(20), nullable=False, default="physical")

    # active | archived
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    purchase_year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Purchase price block
    purchase_price_ht: Mapped[Decimal | None] = mapped_column(nullable=True)
    purchase_vat_rate: Mapped[Decimal | None] = mapped_column(Numeric(9, 3), nullable=True)

    # Sale price block
    sale_vat_rate: Mapped[Decimal | None] = mapped_column(Numeric(9, 3), nullable=True)
    sale_price_ht: Mapped[Decimal | None] = mapped_column(nullable=True)
    sale_price_ttc: Mapped[Decimal | None] = mapped_column(nullable=True)
    gain_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    max_discount: Mapped[Decimal] = mapped_column(
        Numeric(9, 3), nullable=False, default=Decimal("100"),
    )

    # Stock
    current_stock: Mapped[Decimal | None] = mapped_column(nullable=True)
    reserved_stock: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    unlimited_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allow_out_of_stock_sale: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )

    @property
    def tracks_stock(self) -> bool:
        return not self.unlimited_stock and self.current_stock is not None

    def __repr__(self) -> str:
        return f"<Product {self.reference or '-'}: {self.name}>"
