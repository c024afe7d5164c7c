"""
Purchasing Module Service (``intake_modules.purchasing.service``).

Responsibility
--------------
Entry point of the supplier invoice intake: turns an extraction payload
into a workflow context, exposes the step engine for the interactive
steps, and commits the verified context as a purchase document with its
lines and stock receipts.

Architecture position
---------------------
**Modules layer** -- thin glue.  Step logic lives in
``IntakeWorkflowEngine``; the atomic write in ``ReconciliationCommitter``
with ``PurchaseDocumentWriter`` supplying the purchase rows.

Invariants enforced
-------------------
* Each public method owns its transaction boundary (``commit`` on
  success, ``rollback`` on exception).  The step edits hold no
  transaction of their own; nothing is written before commit except an
  explicitly saved exchange rate.

Failure modes
-------------
* Validation and conflict errors from the engine propagate unchanged.
* Store failures surface as ``ExternalStoreError``; the context stays at
  the commit step and may be committed again.

Usage::

    service = PurchasingService(session, get_active_policy(), clock=clock)
    ctx = service.start_intake(
        organization_id=org_id, actor_id=user_id, extraction=payload,
    )
    engine = service.engine
    engine.confirm(ctx)   # intake
    ...
    summary = service.commit(ctx)
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from intake_config.schema import IntakePolicy
from intake_kernel.db.types import round_amount
from intake_kernel.domain.clock import Clock, SystemClock
from intake_kernel.domain.context import WorkflowContext
from intake_kernel.domain.documents import CreationMode
from intake_kernel.domain.extraction import ExtractionResult
from intake_kernel.exceptions import DocumentNotFoundError
from intake_kernel.logging_config import get_logger
from intake_kernel.models.purchase import PurchaseDocument
from intake_modules.purchasing.models import PurchaseDocumentSummary, PurchaseLineSummary
from intake_modules.purchasing.workflows import PURCHASE_INTAKE_WORKFLOW
from intake_modules.purchasing.writer import PurchaseDocumentWriter
from intake_services.committer import ReconciliationCommitter
from intake_services.workflow_engine import IntakeWorkflowEngine

logger = get_logger("modules.purchasing.service")


def document_summary(document: PurchaseDocument) -> PurchaseDocumentSummary:
    return PurchaseDocumentSummary(
        id=document.id,
        invoice_number=document.invoice_number,
        invoice_date=document.invoice_date,
        supplier_id=document.supplier_id,
        status=document.status,
        currency=document.currency,
        exchange_rate=document.exchange_rate,
        subtotal_ht=document.subtotal_ht,
        total_vat=document.total_vat,
        total_ttc=document.total_ttc,
        stamp_duty=document.stamp_duty,
        withholding_amount=document.withholding_amount,
        net_payable=document.net_payable,
        settlement_net_payable=document.settlement_net_payable,
        paid_amount=document.paid_amount,
        payment_status=document.payment_status,
        lines=tuple(
            PurchaseLineSummary(
                order_index=line.order_index,
                product_id=line.product_id,
                name=line.name,
                reference=line.reference,
                quantity=line.quantity,
                unit_price_ht=line.unit_price_ht,
                vat_rate=line.vat_rate,
                discount_percent=line.discount_percent,
                line_ht=line.line_ht,
                line_vat=line.line_vat,
                line_ttc=line.line_ttc,
                settlement_ttc=line.settlement_ttc,
            )
            for line in document.lines
        ),
    )


class PurchasingService:
    """
    Supplier invoice intake.

    Contract
    --------
    * ``start_intake`` never writes.
    * ``commit`` writes the whole document or nothing.
    """

    def __init__(
        self,
        session: Session,
        policy: IntakePolicy,
        clock: Clock | None = None,
    ):
        self._session = session
        self._policy = policy
        self._clock = clock or SystemClock()
        self._engine = IntakeWorkflowEngine(session, policy, self._clock)
        self._committer = ReconciliationCommitter(
            session, policy, PurchaseDocumentWriter(policy),
        )

    @property
    def engine(self) -> IntakeWorkflowEngine:
        return self._engine

    def start_intake(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        extraction: ExtractionResult | dict[str, Any] | None,
        creation_mode: CreationMode = CreationMode.EXTRACTION,
    ) -> WorkflowContext:
        """Open an intake workflow on an extraction result (or its raw payload)."""
        if not isinstance(extraction, ExtractionResult):
            extraction = ExtractionResult.from_dict(extraction)
        return self._engine.start(
            definition=PURCHASE_INTAKE_WORKFLOW,
            organization_id=organization_id,
            actor_id=actor_id,
            extraction=extraction,
            creation_mode=creation_mode,
        )

    def save_exchange_rate(self, ctx: WorkflowContext) -> None:
        """Persist the rate chosen in the currency step for later documents."""
        try:
            self._engine.save_exchange_rate(ctx)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def commit(self, ctx: WorkflowContext) -> PurchaseDocumentSummary:
        """Commit the verified intake; the committer owns the transaction."""
        document_id = self._engine.commit(ctx, self._committer)
        summary = self.get_document(ctx.organization_id, document_id)
        logger.info(
            "purchase_document_recorded",
            extra={
                "document_id": str(document_id),
                "supplier_id": str(summary.supplier_id),
                "invoice_number": summary.invoice_number,
                "currency": summary.currency,
                "net_payable": str(round_amount(summary.net_payable)),
                "line_count": len(summary.lines),
            },
        )
        return summary

    def get_document(self, organization_id: UUID, document_id: UUID) -> PurchaseDocumentSummary:
        document = self._session.execute(
            select(PurchaseDocument).where(
                PurchaseDocument.organization_id == organization_id,
                PurchaseDocument.id == document_id,
            )
        ).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document_summary(document)

    def list_documents(
        self,
        organization_id: UUID,
        supplier_id: UUID | None = None,
    ) -> list[PurchaseDocumentSummary]:
        stmt = select(PurchaseDocument).where(PurchaseDocument.organization_id == organization_id)
        if supplier_id is not None:
            stmt = stmt.where(PurchaseDocument.supplier_id == supplier_id)
        stmt = stmt.order_by(PurchaseDocument.invoice_date, PurchaseDocument.created_at)
        return [document_summary(d) for d in self._session.execute(stmt).scalars()]
