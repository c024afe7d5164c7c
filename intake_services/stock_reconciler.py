"""
StockReconciler -- ledger-backed stock mutation.

Responsibility:
    Applies the net stock movement of a committed document (or a single
    manual movement) to the catalog: one ledger row per product, then a
    compare-and-set of the product's current stock.

Architecture position:
    Services -- stateful, session-bound.  Flushes, never commits.  Called
    by the ReconciliationCommitter inside its transaction, and by module
    services for manual corrections.

Invariants enforced:
    - Every stock change has exactly one StockMovement row explaining it;
      ``new_stock == previous_stock +/- quantity``.
    - The product row is updated only if its stock still equals the value
      read under the row lock (compare-and-set); otherwise nothing is
      applied and StockConflictError propagates.
    - Products are locked in id order so concurrent documents touching the
      same products cannot deadlock.
    - Unlimited-stock products are never touched.
    - A movement is reversed at most once, by a new opposite movement.

Failure modes:
    - InsufficientStockError when a removal would go below zero and the
      product does not allow out-of-stock sales.
    - StockConflictError when the compare-and-set loses a race.
    - ProductNotFoundError / StockMovementNotFoundError.
    - MovementAlreadyReversedError.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from intake_config.schema import StockReasonPolicy
from intake_engines.stock import LineQuantity, aggregate_movements, apply_movement, check_removal
from intake_kernel.db.types import ZERO
from intake_kernel.domain.product import MovementType, StockReason
from intake_kernel.exceptions import (
    MovementAlreadyReversedError,
    ProductNotFoundError,
    StockConflictError,
    StockMovementNotFoundError,
)
from intake_kernel.logging_config import get_logger
from intake_kernel.models.product import Product
from intake_kernel.models.stock_movement import StockMovement

logger = get_logger("services.stock")


class StockReconciler:
    """
    Writes stock movements and keeps product stock levels in step.

    Usage:
        reconciler = StockReconciler(session, policy.stock)
        reconciler.apply_document(
            organization_id=org_id,
            actor_id=user_id,
            lines=[LineQuantity(product_id, Decimal("5"))],
            movement_type=MovementType.ADD,
            reason=policy.stock.purchase_receipt,
            source_kind="purchase",
            source_id=document.id,
        )
    """

    def __init__(self, session: Session, reasons: StockReasonPolicy):
        self._session = session
        self._reasons = reasons

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock_product(self, organization_id: UUID, product_id: UUID) -> Product:
        product = self._session.execute(
            select(Product)
            .where(
                Product.organization_id == organization_id,
                Product.id == product_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def _compare_and_set(
        self,
        product: Product,
        previous_stock: Decimal,
        new_stock: Decimal,
        actor_id: UUID,
    ) -> None:
        result = self._session.execute(
            update(Product)
            .where(Product.id == product.id, Product.current_stock == previous_stock)
            .values(current_stock=new_stock, updated_by_id=actor_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "stock_compare_and_set_failed",
                extra={"product_id": str(product.id), "expected_stock": str(previous_stock)},
            )
            raise StockConflictError(product.id, previous_stock)
        set_committed_value(product, "current_stock", new_stock)

    # ------------------------------------------------------------------
    # Single movement
    # ------------------------------------------------------------------

    def record_movement(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        product_id: UUID,
        movement_type: MovementType,
        quantity: Decimal,
        reason: StockReason,
        source_kind: str | None = None,
        source_id: UUID | None = None,
        reverses_movement_id: UUID | None = None,
        enforce_available: bool = True,
    ) -> StockMovement | None:
        """
        Lock the product, write one ledger row and apply it.

        Returns None when the product does not track stock.  Removals are
        refused below zero unless the product allows out-of-stock sales or
        ``enforce_available`` is False (reversals).
        """
        if quantity <= ZERO:
            raise ValueError(f"Movement quantity must be positive: {quantity}")
        movement_type = MovementType(movement_type)

        product = self._lock_product(organization_id, product_id)
        if not product.tracks_stock:
            logger.debug(
                "stock_movement_skipped_untracked",
                extra={"product_id": str(product_id)},
            )
            return None

        previous_stock = product.current_stock
        if movement_type is MovementType.REMOVE and enforce_available:
            check_removal(
                product.id, previous_stock, quantity, product.allow_out_of_stock_sale,
            )
        new_stock = apply_movement(previous_stock, movement_type, quantity)

        movement = StockMovement(
            organization_id=organization_id,
            product_id=product.id,
            movement_type=movement_type.value,
            quantity=quantity,
            previous_stock=previous_stock,
            new_stock=new_stock,
            reason_category=reason.category,
            reason_detail=reason.detail,
            source_document_kind=source_kind,
            source_document_id=source_id,
            reverses_movement_id=reverses_movement_id,
            created_by_id=actor_id,
        )
        self._session.add(movement)
        self._session.flush()

        self._compare_and_set(product, previous_stock, new_stock, actor_id)

        logger.info(
            "stock_movement_recorded",
            extra={
                "movement_id": str(movement.id),
                "product_id": str(product.id),
                "movement_type": movement_type.value,
                "quantity": str(quantity),
                "previous_stock": str(previous_stock),
                "new_stock": str(new_stock),
                "reason_category": reason.category,
            },
        )
        return movement

    def record_opening_stock(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        product_id: UUID,
        quantity: Decimal,
        source_kind: str | None = None,
        source_id: UUID | None = None,
    ) -> StockMovement | None:
        """Opening stock of a product created by a workflow; nothing for zero."""
        if quantity <= ZERO:
            return None
        return self.record_movement(
            organization_id=organization_id,
            actor_id=actor_id,
            product_id=product_id,
            movement_type=MovementType.ADD,
            quantity=quantity,
            reason=self._reasons.opening_stock,
            source_kind=source_kind,
            source_id=source_id,
        )

    # ------------------------------------------------------------------
    # Document movements
    # ------------------------------------------------------------------

    def apply_document(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        lines: Sequence[LineQuantity],
        movement_type: MovementType,
        reason: StockReason,
        source_kind: str,
        source_id: UUID,
        skip_products: frozenset[UUID] = frozenset(),
    ) -> list[StockMovement]:
        """
        Apply one net movement per product for a document.

        ``skip_products`` lists products whose stock for this document is
        already explained by another entry (opening stock of a product the
        same document created).
        """
        t0 = time.monotonic()
        movements = aggregate_movements(lines=list(lines), movement_type=movement_type)

        written: list[StockMovement] = []
        for planned in sorted(movements, key=lambda m: str(m.product_id)):
            if planned.product_id in skip_products:
                continue
            row = self.record_movement(
                organization_id=organization_id,
                actor_id=actor_id,
                product_id=planned.product_id,
                movement_type=planned.movement_type,
                quantity=planned.quantity,
                reason=reason,
                source_kind=source_kind,
                source_id=source_id,
            )
            if row is not None:
                written.append(row)

        logger.info(
            "document_stock_applied",
            extra={
                "source_kind": source_kind,
                "source_id": str(source_id),
                "movement_type": MovementType(movement_type).value,
                "movement_count": len(written),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return written

    # ------------------------------------------------------------------
    # Corrections and audit
    # ------------------------------------------------------------------

    def get_movement(self, organization_id: UUID, movement_id: UUID) -> StockMovement:
        movement = self._session.execute(
            select(StockMovement).where(
                StockMovement.organization_id == organization_id,
                StockMovement.id == movement_id,
            )
        ).scalar_one_or_none()
        if movement is None:
            raise StockMovementNotFoundError(movement_id)
        return movement

    def reverse_movement(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        movement_id: UUID,
    ) -> StockMovement | None:
        """Undo a ledger entry with an opposite entry pointing back at it."""
        original = self.get_movement(organization_id, movement_id)
        existing = self._session.execute(
            select(StockMovement.id).where(StockMovement.reverses_movement_id == original.id)
        ).scalar_one_or_none()
        if existing is not None:
            raise MovementAlreadyReversedError(original.id, existing)

        original_type = MovementType(original.movement_type)
        if original_type is MovementType.ADD:
            reason = self._reasons.reverse_addition
        else:
            reason = self._reasons.reverse_removal

        return self.record_movement(
            organization_id=organization_id,
            actor_id=actor_id,
            product_id=original.product_id,
            movement_type=original_type.opposite,
            quantity=original.quantity,
            reason=reason,
            source_kind=original.source_document_kind,
            source_id=original.source_document_id,
            reverses_movement_id=original.id,
            enforce_available=False,
        )

    def movements_for(self, organization_id: UUID, product_id: UUID) -> list[StockMovement]:
        return list(self._session.execute(
            select(StockMovement)
            .where(
                StockMovement.organization_id == organization_id,
                StockMovement.product_id == product_id,
            )
            .order_by(StockMovement.created_at)
        ).scalars().all())

    def replay(self, organization_id: UUID, product_id: UUID) -> Decimal:
        """Stock level reconstructed from the ledger alone."""
        return sum(
            (m.delta for m in self.movements_for(organization_id, product_id)),
            ZERO,
        )
