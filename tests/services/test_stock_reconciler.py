"""
Tests for StockReconciler.

Covers:
- Single movements: ledger row, previous/new stock, product update
- Removal limits and out-of-stock sales
- Document movements merged per product, skip list
- Reversal (at most once) and ledger replay
- Lost compare-and-set: conflict raised, nothing written
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from intake_engines.stock import LineQuantity
from intake_kernel.domain.product import MovementType, StockReason
from intake_kernel.exceptions import (
    InsufficientStockError,
    MovementAlreadyReversedError,
    ProductNotFoundError,
    StockConflictError,
    StockMovementNotFoundError,
)
from intake_kernel.models import Product

BREAKAGE = StockReason("losses", "breakage")


@pytest.fixture
def move(stock, org_id, actor_id):
    def _move(product, movement_type, quantity, reason=BREAKAGE):
        return stock.record_movement(
            organization_id=org_id,
            actor_id=actor_id,
            product_id=product.id,
            movement_type=movement_type,
            quantity=Decimal(quantity),
            reason=reason,
        )
    return _move


# =============================================================================
# Single movements
# =============================================================================


class TestRecordMovement:
    """Tests for record_movement."""

    def test_removal_writes_ledger_row(self, move, make_product):
        product = make_product()

        movement = move(product, MovementType.REMOVE, "3")

        assert movement.previous_stock == Decimal("10")
        assert movement.new_stock == Decimal("7")
        assert movement.delta == Decimal("-3")
        assert movement.reason_category == "losses"
        assert product.current_stock == Decimal("7")

    def test_addition(self, move, make_product):
        product = make_product()

        movement = move(product, MovementType.ADD, "2.5", StockReason("otherEntries", "bonus"))

        assert movement.new_stock == Decimal("12.5")

    def test_removal_below_zero_refused(self, move, make_product, stock, org_id):
        product = make_product(stock_level=Decimal("2"))

        with pytest.raises(InsufficientStockError) as exc_info:
            move(product, MovementType.REMOVE, "3")

        assert exc_info.value.available == Decimal("2")
        assert exc_info.value.requested == Decimal("3")
        assert len(stock.movements_for(org_id, product.id)) == 1

    def test_out_of_stock_sale_allowed(self, move, make_product):
        product = make_product(stock_level=Decimal("1"), allow_out_of_stock_sale=True)

        movement = move(product, MovementType.REMOVE, "4")

        assert movement.new_stock == Decimal("-3")

    def test_untracked_product_skipped(self, move, make_product, stock, org_id):
        product = make_product(stock_level=None)

        assert move(product, MovementType.REMOVE, "100") is None
        assert stock.movements_for(org_id, product.id) == []

    @pytest.mark.parametrize("quantity", ["0", "-1"])
    def test_non_positive_quantity_rejected(self, move, make_product, quantity):
        product = make_product()

        with pytest.raises(ValueError):
            move(product, MovementType.ADD, quantity)

    def test_unknown_product(self, stock, org_id, actor_id):
        with pytest.raises(ProductNotFoundError):
            stock.record_movement(
                organization_id=org_id,
                actor_id=actor_id,
                product_id=uuid4(),
                movement_type=MovementType.ADD,
                quantity=Decimal("1"),
                reason=BREAKAGE,
            )

    def test_opening_stock_zero_writes_nothing(self, stock, make_product, org_id, actor_id):
        product = make_product(stock_level=Decimal("0"))

        result = stock.record_opening_stock(
            organization_id=org_id, actor_id=actor_id, product_id=product.id, quantity=Decimal("0"),
        )

        assert result is None
        assert stock.movements_for(org_id, product.id) == []

    def test_opening_stock_reason(self, stock, make_product, org_id, policy):
        product = make_product()

        (movement,) = stock.movements_for(org_id, product.id)

        assert movement.reason_category == policy.stock.opening_stock.category
        assert movement.reason_detail == policy.stock.opening_stock.detail


# =============================================================================
# Document movements
# =============================================================================


class TestApplyDocument:
    """Tests for apply_document."""

    def _apply(self, stock, org_id, actor_id, lines, movement_type, **kwargs):
        return stock.apply_document(
            organization_id=org_id,
            actor_id=actor_id,
            lines=lines,
            movement_type=movement_type,
            reason=StockReason("production", "manufactured"),
            source_kind="purchase",
            source_id=kwargs.pop("source_id", uuid4()),
            **kwargs,
        )

    def test_lines_merged_per_product(self, stock, make_product, org_id, actor_id):
        cable = make_product()
        mouse = make_product(name="Souris optique", reference="MOUSE-01")
        lines = [
            LineQuantity(cable.id, Decimal("2")),
            LineQuantity(mouse.id, Decimal("1")),
            LineQuantity(cable.id, Decimal("3")),
        ]

        written = self._apply(stock, org_id, actor_id, lines, MovementType.ADD)

        by_product = {m.product_id: m for m in written}
        assert len(written) == 2
        assert by_product[cable.id].quantity == Decimal("5")
        assert cable.current_stock == Decimal("15")
        assert mouse.current_stock == Decimal("11")

    def test_movements_carry_source(self, stock, make_product, org_id, actor_id):
        cable = make_product()
        source_id = uuid4()

        (movement,) = self._apply(
            stock, org_id, actor_id, [LineQuantity(cable.id, Decimal("1"))],
            MovementType.REMOVE, source_id=source_id,
        )

        assert movement.source_document_kind == "purchase"
        assert movement.source_document_id == source_id

    def test_skip_products(self, stock, make_product, org_id, actor_id):
        cable = make_product()
        mouse = make_product(name="Souris optique", reference="MOUSE-01")

        written = self._apply(
            stock, org_id, actor_id,
            [LineQuantity(cable.id, Decimal("2")), LineQuantity(mouse.id, Decimal("2"))],
            MovementType.ADD,
            skip_products=frozenset({mouse.id}),
        )

        assert [m.product_id for m in written] == [cable.id]
        assert mouse.current_stock == Decimal("10")

    def test_unlimited_lines_move_nothing(self, stock, make_product, org_id, actor_id):
        service = make_product(name="Installation", reference="SRV-01", stock_level=None)

        written = self._apply(
            stock, org_id, actor_id,
            [LineQuantity(service.id, Decimal("1"), unlimited_stock=True)],
            MovementType.REMOVE,
        )

        assert written == []

    def test_insufficient_stock_stops_document(self, stock, make_product, org_id, actor_id):
        cable = make_product(stock_level=Decimal("1"))

        with pytest.raises(InsufficientStockError):
            self._apply(
                stock, org_id, actor_id,
                [LineQuantity(cable.id, Decimal("1")), LineQuantity(cable.id, Decimal("1"))],
                MovementType.REMOVE,
            )


# =============================================================================
# Reversal and replay
# =============================================================================


class TestReversal:
    """Tests for reverse_movement and replay."""

    def test_reverse_removal(self, stock, move, make_product, org_id, actor_id, policy):
        product = make_product()
        original = move(product, MovementType.REMOVE, "4")

        reversal = stock.reverse_movement(
            organization_id=org_id, actor_id=actor_id, movement_id=original.id,
        )

        assert reversal.movement_type == "add"
        assert reversal.quantity == Decimal("4")
        assert reversal.reverses_movement_id == original.id
        assert reversal.reason_category == policy.stock.reverse_removal.category
        assert product.current_stock == Decimal("10")

    def test_reverse_addition_may_go_negative(self, stock, move, make_product, org_id, actor_id):
        """Reversals are never refused for lack of stock."""
        product = make_product(stock_level=Decimal("1"))
        added = move(product, MovementType.ADD, "5", StockReason("otherEntries", "bonus"))
        move(product, MovementType.REMOVE, "6")

        reversal = stock.reverse_movement(
            organization_id=org_id, actor_id=actor_id, movement_id=added.id,
        )

        assert reversal.new_stock == Decimal("-5")

    def test_reversed_at_most_once(self, stock, move, make_product, org_id, actor_id):
        product = make_product()
        original = move(product, MovementType.REMOVE, "1")
        first = stock.reverse_movement(
            organization_id=org_id, actor_id=actor_id, movement_id=original.id,
        )

        with pytest.raises(MovementAlreadyReversedError) as exc_info:
            stock.reverse_movement(
                organization_id=org_id, actor_id=actor_id, movement_id=original.id,
            )

        assert exc_info.value.reversal_id == first.id

    def test_unknown_movement(self, stock, org_id):
        with pytest.raises(StockMovementNotFoundError):
            stock.get_movement(org_id, uuid4())

    def test_replay_matches_current_stock(self, stock, move, make_product, org_id, actor_id):
        product = make_product()
        move(product, MovementType.REMOVE, "3")
        added = move(product, MovementType.ADD, "7.5", StockReason("otherEntries", "bonus"))
        stock.reverse_movement(organization_id=org_id, actor_id=actor_id, movement_id=added.id)

        assert stock.replay(org_id, product.id) == Decimal("7")
        assert product.current_stock == Decimal("7")


# =============================================================================
# Concurrent writes
# =============================================================================


class TestConcurrentWrite:
    """Tests for a stock level changed between the lock and the write."""

    @pytest.fixture
    def interleave(self, session, stock, monkeypatch):
        """Make another writer set the stock to 11 right after every lock."""
        def _activate():
            locked = stock._lock_product

            def _lock_then_write(organization_id, product_id):
                product = locked(organization_id, product_id)
                session.execute(
                    update(Product)
                    .where(Product.id == product_id)
                    .values(current_stock=Decimal("11"))
                    .execution_options(synchronize_session=False)
                )
                return product

            monkeypatch.setattr(stock, "_lock_product", _lock_then_write)
        return _activate

    def test_conflict_raised_and_nothing_written(
        self, session, move, make_product, stock, org_id, interleave, captured_logs,
    ):
        product = make_product()
        product_id = product.id
        interleave()

        with pytest.raises(StockConflictError) as exc_info:
            move(product, MovementType.REMOVE, "3")
        session.rollback()

        assert exc_info.value.product_id == product_id
        assert exc_info.value.expected_stock == Decimal("10")
        assert session.get(Product, product_id).current_stock == Decimal("10")
        entries = stock.movements_for(org_id, product_id)
        assert [e.reason_category for e in entries] == ["manualAdjustment"]
        assert stock.replay(org_id, product_id) == Decimal("10")
        failed = [r for r in captured_logs() if r["message"] == "stock_compare_and_set_failed"]
        assert failed[0]["product_id"] == str(product_id)

    def test_document_conflict_leaves_no_rows(
        self, session, make_product, stock, org_id, actor_id, interleave,
    ):
        cable = make_product()
        mouse = make_product(name="Souris optique", reference="MOUSE-01")
        interleave()

        with pytest.raises(StockConflictError):
            stock.apply_document(
                organization_id=org_id,
                actor_id=actor_id,
                lines=[LineQuantity(cable.id, Decimal("2")), LineQuantity(mouse.id, Decimal("1"))],
                movement_type=MovementType.REMOVE,
                reason=BREAKAGE,
                source_kind="invoice",
                source_id=uuid4(),
            )
        session.rollback()

        for product_id in (cable.id, mouse.id):
            assert session.get(Product, product_id).current_stock == Decimal("10")
            assert len(stock.movements_for(org_id, product_id)) == 1
