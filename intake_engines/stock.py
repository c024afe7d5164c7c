"""
intake_engines.stock -- Stock aggregation and quantity constraints.

Responsibility:
    Pure side of the StockReconciler:

    * ``aggregate_movements`` merges the lines of one document into a single
      net movement per product, before any write.
    * ``apply_movement`` computes ``new_stock = previous_stock +/- quantity``.
    * ``max_quantities`` computes the per-line quantity cap of a sale:
      ``max(1, current - reserved + originally_requested - other_lines)``,
      unbounded for unlimited and out-of-stock-sale products.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The locked read and the
    ledger/product writes live in ``intake_services.stock_reconciler``.

Invariants enforced:
    - One movement per product per document; products keep the order in
      which they first appear.
    - ``new_stock - previous_stock`` equals the signed quantity.
    - Unlimited-stock products produce no movement.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from intake_engines.tracer import traced_engine
from intake_kernel.db.types import ZERO
from intake_kernel.domain.product import MovementType, ProductRecord
from intake_kernel.exceptions import InsufficientStockError
from intake_kernel.logging_config import get_logger

logger = get_logger("engines.stock")

ONE = Decimal("1")


@dataclass(frozen=True)
class LineQuantity:
    """Quantity one document line moves for one product."""

    product_id: UUID
    quantity: Decimal
    unlimited_stock: bool = False


@dataclass(frozen=True)
class ProductMovement:
    """Net movement of one product for one document."""

    product_id: UUID
    movement_type: MovementType
    quantity: Decimal
    line_indexes: tuple[int, ...]

    @property
    def delta(self) -> Decimal:
        return self.quantity * self.movement_type.sign


@traced_engine("stock", "1.0", fingerprint_fields=("lines", "movement_type"))
def aggregate_movements(
    *,
    lines: Sequence[LineQuantity],
    movement_type: MovementType,
) -> tuple[ProductMovement, ...]:
    """
    Merge document lines into one net movement per product.

    Lines of unlimited-stock products and lines with a zero quantity move
    nothing and are skipped.
    """
    totals: dict[UUID, Decimal] = {}
    indexes: dict[UUID, list[int]] = {}
    for i, line in enumerate(lines):
        if line.unlimited_stock or line.quantity == ZERO:
            continue
        totals[line.product_id] = totals.get(line.product_id, ZERO) + line.quantity
        indexes.setdefault(line.product_id, []).append(i)

    movements = tuple(
        ProductMovement(
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
            line_indexes=tuple(indexes[product_id]),
        )
        for product_id, quantity in totals.items()
        if quantity > ZERO
    )
    logger.debug(
        "stock_movements_aggregated",
        extra={"line_count": len(lines), "movement_count": len(movements)},
    )
    return movements


def apply_movement(previous_stock: Decimal, movement_type: MovementType, quantity: Decimal) -> Decimal:
    return previous_stock + quantity * movement_type.sign


def check_removal(
    product_id: UUID,
    current_stock: Decimal,
    quantity: Decimal,
    allow_out_of_stock_sale: bool,
) -> None:
    """Refuse a removal taking stock below zero unless the product allows it."""
    if allow_out_of_stock_sale:
        return
    if current_stock - quantity < ZERO:
        raise InsufficientStockError(product_id, current_stock, quantity)


def available_stock(product: ProductRecord) -> Decimal | None:
    """Stock a sale may take; None when unbounded."""
    if product.unlimited_stock or product.allow_out_of_stock_sale:
        return None
    if product.current_stock is None:
        return None
    return product.current_stock - product.reserved_stock


def max_quantities(
    lines: Sequence[tuple[UUID | None, Decimal]],
    products: Mapping[UUID, ProductRecord],
    originally_requested: Mapping[UUID, Decimal] | None = None,
) -> list[Decimal | None]:
    """
    Maximum quantity each sale line may carry; None means unbounded.

    One stock cap applies per product across all lines.  Quantities
    already counted against the product (the request being converted) are
    given back before capping.  The cap never drops below 1.
    """
    originally_requested = originally_requested or {}
    per_product: dict[UUID, Decimal] = {}
    for product_id, quantity in lines:
        if product_id is not None:
            per_product[product_id] = per_product.get(product_id, ZERO) + quantity

    caps: list[Decimal | None] = []
    for product_id, quantity in lines:
        product = products.get(product_id) if product_id is not None else None
        available = available_stock(product) if product is not None else None
        if available is None:
            caps.append(None)
            continue
        cap_for_product = available + originally_requested.get(product_id, ZERO)
        other_lines = per_product[product_id] - quantity
        caps.append(max(ONE, cap_for_product - other_lines))
    return caps


def clamp_quantity(quantity: Decimal, cap: Decimal | None) -> Decimal:
    """Clamp a sale line quantity into [1, cap]."""
    quantity = max(ONE, quantity)
    if cap is None:
        return quantity
    return min(quantity, cap)
