"""Rows written when a client invoice intake commits."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from intake_config.schema import IntakePolicy
from intake_kernel.db.types import ZERO
from intake_kernel.domain.amounts import Totals
from intake_kernel.domain.clock import Clock
from intake_kernel.domain.context import LineItem, WorkflowContext
from intake_kernel.domain.counterpart import CounterpartRole
from intake_kernel.domain.documents import DocumentKind, InvoiceStatus, PaymentStatus
from intake_kernel.domain.product import MovementType, StockReason
from intake_kernel.exceptions import InvoiceRequestNotFoundError
from intake_kernel.logging_config import get_logger
from intake_kernel.models.invoice import Invoice, InvoiceLine, InvoiceRequest
from intake_kernel.services.numbering_service import DocumentNumberService
from intake_modules.invoicing.workflows import INVOICE_REQUEST_WORKFLOW
from intake_services.committer import DocumentWriter
from intake_services.workflow_executor import WorkflowExecutor

logger = get_logger("modules.invoicing.writer")


class InvoiceWriter(DocumentWriter):
    document_kind = DocumentKind.INVOICE
    source_kind = "invoice"
    movement_type = MovementType.REMOVE
    counterpart_role = CounterpartRole.CLIENT

    def __init__(self, policy: IntakePolicy, executor: WorkflowExecutor, clock: Clock):
        self._policy = policy
        self._executor = executor
        self._clock = clock

    def write_header(
        self,
        session: Session,
        ctx: WorkflowContext,
        totals: Totals,
        document_id: UUID,
    ) -> Invoice:
        invoice_date = ctx.invoice_date or self._clock.today()
        numbering = self._policy.numbering
        invoice_number = DocumentNumberService(session).next_number(
            ctx.organization_id, numbering.invoice_prefix, invoice_date.year, numbering.width,
        )
        invoice = Invoice(
            id=document_id,
            organization_id=ctx.organization_id,
            created_by_id=ctx.actor_id,
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            client_id=ctx.counterpart_id,
            request_id=ctx.origin_request_id,
            status=InvoiceStatus.CREATED.value,
            creation_mode=ctx.creation_mode.value,
            document_family=ctx.document_family,
            currency=self._policy.currency.settlement_currency,
            exchange_rate=ctx.exchange_rate,
            gross_ht=totals.gross_ht,
            total_discount=totals.total_discount,
            subtotal_ht=totals.subtotal_ht,
            total_vat=totals.total_vat,
            total_ttc=totals.total_ttc,
            stamp_duty=totals.stamp_duty,
            net_payable=totals.net_payable,
            paid_amount=ZERO,
            payment_status=PaymentStatus.UNPAID.value,
        )
        session.add(invoice)
        return invoice

    def write_line(
        self,
        session: Session,
        ctx: WorkflowContext,
        document: Invoice,
        line: LineItem,
        order_index: int,
    ) -> InvoiceLine:
        row = InvoiceLine(
            organization_id=ctx.organization_id,
            created_by_id=ctx.actor_id,
            invoice_id=document.id,
            order_index=order_index,
            product_id=line.product_id,
            name=line.name,
            reference=line.reference,
            unit=line.unit,
            quantity=line.quantity,
            unit_price_ht=line.unit_price_ht,
            vat_rate=line.vat_rate,
            discount_percent=line.discount_percent,
            is_exempt=line.is_exempt,
            line_ht=line.amounts.ht,
            line_vat=line.amounts.vat,
            line_ttc=line.amounts.ttc,
        )
        session.add(row)
        return row

    def stock_reason(self, ctx: WorkflowContext, document: Invoice) -> StockReason:
        request_number = ctx.source_reference if ctx.origin_request_id else None
        return self._policy.stock.sale_reason(document.invoice_number, request_number)

    def receipts_new_products(self) -> bool:
        return False

    def update_origin(self, session: Session, ctx: WorkflowContext, document: Invoice) -> None:
        """Mark the originating request processed and link it to the invoice and client."""
        if ctx.origin_request_id is None:
            return
        request = session.execute(
            select(InvoiceRequest)
            .where(
                InvoiceRequest.organization_id == ctx.organization_id,
                InvoiceRequest.id == ctx.origin_request_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise InvoiceRequestNotFoundError(ctx.origin_request_id)

        request.generated_invoice_id = document.id
        request.linked_client_id = ctx.counterpart_id
        result = self._executor.require_transition(
            INVOICE_REQUEST_WORKFLOW,
            "invoice_request",
            request.id,
            request.status,
            "process",
            context=request,
        )
        request.status = result.new_state
        request.updated_by_id = ctx.actor_id
        logger.info(
            "invoice_request_processed",
            extra={
                "request_id": str(request.id),
                "request_number": request.request_number,
                "invoice_number": document.invoice_number,
            },
        )
