"""
ReconciliationCommitter -- the terminal, all-or-nothing write of an intake.

Responsibility:
    Persist a fully verified WorkflowContext in one database transaction:
    the new counterpart (if any), new products with their opening stock,
    the document header, its lines, the stock movements and the update of
    the originating request.

Architecture position:
    Services -- owns the session transaction for the commit (the only
    service that calls ``commit()`` itself; every other service flushes).
    Document-specific writes are delegated to a DocumentWriter supplied by
    the purchasing or invoicing module.

Invariants enforced:
    - The document id is reserved before the first write; lines, ledger
      entries and the request back-link all carry it.
    - Products created by this commit are receipted through their opening
      stock entry; the document movement skips them for purchases.
    - Stock movements are applied per product in a deterministic order.
    - On any failure the transaction is rolled back and nothing is visible.

Failure modes:
    - ExternalStoreError wrapping a SQLAlchemy error, naming the step.
    - Domain errors (InsufficientStockError, DuplicateProductError, ...)
      propagate unchanged after the rollback.
    - InconsistentStateError if the rollback itself fails.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from intake_config.schema import IntakePolicy
from intake_engines.stock import LineQuantity
from intake_kernel.domain.amounts import Totals
from intake_kernel.domain.context import IntakeStep, LineItem, WorkflowContext
from intake_kernel.domain.counterpart import CounterpartRole, NewCounterpart
from intake_kernel.domain.documents import DocumentKind
from intake_kernel.domain.product import CreateNew, MovementType, StockReason
from intake_kernel.exceptions import (
    ExternalStoreError,
    InconsistentStateError,
    RequiredFieldError,
    WorkflowClosedError,
    WorkflowError,
)
from intake_kernel.logging_config import LogContext, get_logger
from intake_services.catalog_service import CatalogService
from intake_services.stock_reconciler import StockReconciler

logger = get_logger("services.committer")


class DocumentWriter(ABC):
    """Document-kind specific part of a commit."""

    document_kind: DocumentKind
    source_kind: str
    movement_type: MovementType
    counterpart_role: CounterpartRole

    @abstractmethod
    def write_header(
        self,
        session: Session,
        ctx: WorkflowContext,
        totals: Totals,
        document_id: UUID,
    ) -> Any:
        """Insert the document row and return it."""

    @abstractmethod
    def write_line(
        self,
        session: Session,
        ctx: WorkflowContext,
        document: Any,
        line: LineItem,
        order_index: int,
    ) -> Any:
        """Insert one line row."""

    @abstractmethod
    def stock_reason(self, ctx: WorkflowContext, document: Any) -> StockReason:
        """Reason written on the document's stock movements."""

    def update_origin(self, session: Session, ctx: WorkflowContext, document: Any) -> None:
        """Update the request the document was created from; nothing by default."""

    def receipts_new_products(self) -> bool:
        """True when a new product's opening stock already is its receipt."""
        return self.movement_type is MovementType.ADD


class ReconciliationCommitter:
    """
    Commits one verified workflow context.

    Usage:
        committer = ReconciliationCommitter(session, policy, PurchaseDocumentWriter())
        document_id = committer.commit(ctx)
    """

    def __init__(self, session: Session, policy: IntakePolicy, writer: DocumentWriter):
        self._session = session
        self._policy = policy
        self._writer = writer
        self._catalog = CatalogService(session)
        self._stock = StockReconciler(session, policy.stock)

    def commit(self, ctx: WorkflowContext) -> UUID:
        if not ctx.is_open or ctx.committed_document_id is not None:
            state = "committed" if ctx.committed_document_id is not None else ctx.status.value
            raise WorkflowClosedError(ctx.workflow_id, state)
        if ctx.current_step is not IntakeStep.COMMIT:
            raise WorkflowError(
                f"Workflow {ctx.workflow_id} is at {ctx.current_step.value}, not commit"
            )
        if ctx.document_kind is not self._writer.document_kind:
            raise WorkflowError(
                f"Writer for {self._writer.document_kind.value} cannot commit "
                f"a {ctx.document_kind.value} workflow"
            )
        if ctx.totals is None or ctx.counterpart_id is None:
            raise RequiredFieldError("totals" if ctx.totals is None else "counterpart_id")

        document_id = uuid4()
        completed: list[str] = []
        step = "start"
        t0 = time.monotonic()

        with LogContext.bind(
            workflow_id=ctx.workflow_id,
            organization_id=ctx.organization_id,
            actor_id=ctx.actor_id,
            document_id=document_id,
        ):
            try:
                step = "counterpart"
                self._create_counterpart(ctx)
                completed.append(step)

                step = "products"
                new_products = self._create_products(ctx, document_id)
                completed.append(step)

                step = "header"
                document = self._writer.write_header(
                    self._session, ctx, ctx.totals.rounded(), document_id,
                )
                self._session.flush()
                completed.append(step)

                step = "lines"
                for order_index, line in enumerate(ctx.lines):
                    self._writer.write_line(self._session, ctx, document, line, order_index)
                self._session.flush()
                completed.append(step)

                step = "stock"
                movements = self._apply_stock(ctx, document, document_id, new_products)
                completed.append(step)

                step = "origin"
                self._writer.update_origin(self._session, ctx, document)
                self._session.flush()
                completed.append(step)

                step = "transaction"
                self._session.commit()
            except SQLAlchemyError as exc:
                self._rollback(document_id, step, completed, exc)
                raise ExternalStoreError(f"commit:{step}", exc) from exc
            except Exception as exc:
                self._rollback(document_id, step, completed, exc)
                raise

            logger.info(
                "document_committed",
                extra={
                    "document_kind": ctx.document_kind.value,
                    "line_count": len(ctx.lines),
                    "new_products": len(new_products),
                    "stock_movements": len(movements),
                    "net_payable": str(ctx.totals.rounded().net_payable),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        return document_id

    def _rollback(
        self,
        document_id: UUID,
        step: str,
        completed: list[str],
        exc: BaseException,
    ) -> None:
        try:
            self._session.rollback()
        except SQLAlchemyError as rollback_exc:
            logger.critical(
                "commit_rollback_failed",
                extra={
                    "failed_step": step,
                    "completed_steps": completed,
                    "error": str(rollback_exc),
                },
            )
            raise InconsistentStateError(document_id, step, tuple(completed)) from rollback_exc
        logger.warning(
            "commit_rolled_back",
            extra={
                "failed_step": step,
                "completed_steps": completed,
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )

    def _create_counterpart(self, ctx: WorkflowContext) -> None:
        resolution = ctx.counterpart
        if not isinstance(resolution, NewCounterpart):
            return
        self._catalog.create_counterpart(
            organization_id=ctx.organization_id,
            actor_id=ctx.actor_id,
            role=self._writer.counterpart_role,
            draft=resolution.draft,
            counterpart_id=resolution.counterpart_id,
        )

    def _create_products(self, ctx: WorkflowContext, document_id: UUID) -> frozenset[UUID]:
        """Insert every create-new product once and record its opening stock.

        Lines that share a reserved product id contribute the sum of their
        opening stock to the single opening movement.
        """
        opening: dict[UUID, Decimal] = {}
        for line in ctx.lines:
            if isinstance(line.decision, CreateNew) and not line.unlimited_stock:
                opening[line.product_id] = (
                    opening.get(line.product_id, Decimal("0")) + line.opening_stock
                )

        created: set[UUID] = set()
        for line in ctx.lines:
            if not isinstance(line.decision, CreateNew) or line.product_id in created:
                continue
            amounts = line.settlement_amounts or line.amounts
            self._catalog.create_product(
                organization_id=ctx.organization_id,
                actor_id=ctx.actor_id,
                draft=line.to_draft(),
                product_id=line.product_id,
                purchase_price_ht=(
                    amounts.ht / line.quantity if line.quantity else line.unit_price_ht
                ),
                purchase_vat_rate=line.vat_rate,
                sale_price=line.sale_price,
                line_index=line.index,
            )
            if line.product_id in opening:
                self._stock.record_opening_stock(
                    organization_id=ctx.organization_id,
                    actor_id=ctx.actor_id,
                    product_id=line.product_id,
                    quantity=opening[line.product_id],
                    source_kind=self._writer.source_kind,
                    source_id=document_id,
                )
            created.add(line.product_id)
        return frozenset(created)

    def _apply_stock(
        self,
        ctx: WorkflowContext,
        document: Any,
        document_id: UUID,
        new_products: frozenset[UUID],
    ) -> list:
        skip = new_products if self._writer.receipts_new_products() else frozenset()
        return self._stock.apply_document(
            organization_id=ctx.organization_id,
            actor_id=ctx.actor_id,
            lines=[
                LineQuantity(line.product_id, line.quantity, line.unlimited_stock)
                for line in ctx.lines
            ],
            movement_type=self._writer.movement_type,
            reason=self._writer.stock_reason(ctx, document),
            source_kind=self._writer.source_kind,
            source_id=document_id,
            skip_products=skip,
        )
