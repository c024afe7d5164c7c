"""
Product and stock domain types (``intake_kernel.domain.product``).

Responsibility
--------------
Value objects for catalog products, the per-line product decision variants,
and the vocabulary of the stock ledger (movement types and reason
categories).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from uuid import UUID


class ProductType(str, Enum):
    PHYSICAL = "physical"
    SERVICE = "service"


class ProductStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


UNITS: tuple[str, ...] = (
    "piece", "kg", "g", "l", "ml", "m", "cm", "m2", "m3",
    "hour", "day", "week", "month", "year",
    "pack", "box", "pallet", "roll", "sheet", "unit",
)


class MovementType(str, Enum):
    """Direction of a stock ledger entry; quantities are always positive."""

    ADD = "add"
    REMOVE = "remove"

    @property
    def sign(self) -> int:
        return 1 if self is MovementType.ADD else -1

    @property
    def opposite(self) -> MovementType:
        return MovementType.REMOVE if self is MovementType.ADD else MovementType.ADD


STOCK_ADD_REASONS: dict[str, tuple[str, ...]] = {
    "production": ("manufactured", "assembly", "transformation", "reconditioning", "repair", "endCycle"),
    "internalTransfer": ("otherWarehouse", "storeReturn", "rebalancing", "stockMerge"),
    "manualAdjustment": ("inventory", "inputError", "excelImport", "audit"),
    "otherEntries": ("supplierGift", "bonus", "samples", "donation"),
    "specialCases": ("foundProduct", "exitCancellation", "systemBug"),
    "technical": ("supabaseSync", "backupRestore", "dataMigration"),
}

STOCK_REMOVE_REASONS: dict[str, tuple[str, ...]] = {
    "supplierReturns": ("defective", "deliveryError", "credit"),
    "production": ("consumption", "manufacturing", "qualityTest"),
    "transfers": ("toWarehouse", "pointOfSale"),
    "losses": ("breakage", "theft", "expiration", "disaster"),
    "commercial": ("clientGift", "demo", "test"),
    "specialCases": ("bugCorrection", "accountingAdjustment"),
    "technical": ("wrongImport", "migration"),
}


def reason_categories(movement_type: MovementType) -> dict[str, tuple[str, ...]]:
    if movement_type is MovementType.ADD:
        return STOCK_ADD_REASONS
    return STOCK_REMOVE_REASONS


@dataclass(frozen=True)
class StockReason:
    """Classification written on every ledger entry.

    ``detail`` is free text for commercial removals (it names the invoice),
    otherwise one of the details listed for the category.
    """

    category: str
    detail: str


@dataclass(frozen=True)
class ProductRecord:
    """Read-only snapshot of a catalog product, as seen by the matcher and stock rules."""

    id: UUID
    name: str
    reference: str | None = None
    ean: str | None = None
    current_stock: Decimal | None = Decimal("0")
    reserved_stock: Decimal = Decimal("0")
    unlimited_stock: bool = False
    allow_out_of_stock_sale: bool = False
    status: ProductStatus = ProductStatus.ACTIVE


@dataclass(frozen=True)
class ProductDraft:
    """Product fields captured on a line before the product exists."""

    name: str
    reference: str | None
    ean: str | None
    unit: str
    product_type: ProductType = ProductType.PHYSICAL
    purchase_year: int | None = None
    opening_stock: Decimal = Decimal("0")
    unlimited_stock: bool = False
    allow_out_of_stock_sale: bool = False
    max_discount: Decimal = Decimal("100")


# -----------------------------------------------------------------------------
# Line decision variants
# -----------------------------------------------------------------------------


class ProductDecision(str, Enum):
    USE_EXISTING = "use_existing"
    SELECT_OTHER = "select_other"
    CREATE_NEW = "create_new"


@dataclass(frozen=True)
class UseExisting:
    """Line bound to the matcher's top-ranked product."""

    product: ProductRecord
    decision: ProductDecision = field(default=ProductDecision.USE_EXISTING, init=False)

    @property
    def product_id(self) -> UUID:
        return self.product.id


@dataclass(frozen=True)
class SelectOther:
    """Line bound to a product the user picked by manual search."""

    product: ProductRecord | None = None
    decision: ProductDecision = field(default=ProductDecision.SELECT_OTHER, init=False)

    @property
    def product_id(self) -> UUID | None:
        return self.product.id if self.product else None


@dataclass(frozen=True)
class CreateNew:
    """Product to be created at commit under the reserved ``product_id``."""

    product_id: UUID
    decision: ProductDecision = field(default=ProductDecision.CREATE_NEW, init=False)


LineDecision = UseExisting | SelectOther | CreateNew


class ProductMatchType(str, Enum):
    REFERENCE = "reference"
    EAN = "ean"
    NAME = "name"


@dataclass(frozen=True)
class RankedProduct:
    """One matcher candidate for a line; higher ``score`` ranks first."""

    product: ProductRecord
    score: int
    match_type: ProductMatchType
