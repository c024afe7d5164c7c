"""Rows written when a supplier invoice intake commits."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from intake_config.schema import IntakePolicy
from intake_kernel.db.types import ZERO
from intake_kernel.domain.amounts import Totals
from intake_kernel.domain.context import LineItem, WorkflowContext
from intake_kernel.domain.counterpart import CounterpartRole
from intake_kernel.domain.documents import DocumentKind, PaymentStatus, PurchaseDocumentStatus
from intake_kernel.domain.product import MovementType, StockReason
from intake_kernel.models.purchase import PurchaseDocument, PurchaseLine
from intake_services.committer import DocumentWriter


class PurchaseDocumentWriter(DocumentWriter):
    document_kind = DocumentKind.PURCHASE
    source_kind = "purchase"
    movement_type = MovementType.ADD
    counterpart_role = CounterpartRole.SUPPLIER

    def __init__(self, policy: IntakePolicy):
        self._policy = policy

    def write_header(
        self,
        session: Session,
        ctx: WorkflowContext,
        totals: Totals,
        document_id: UUID,
    ) -> PurchaseDocument:
        document = PurchaseDocument(
            id=document_id,
            organization_id=ctx.organization_id,
            created_by_id=ctx.actor_id,
            invoice_number=ctx.invoice_number,
            invoice_date=ctx.invoice_date,
            supplier_id=ctx.counterpart_id,
            status=PurchaseDocumentStatus.VALIDATED.value,
            creation_mode=ctx.creation_mode.value,
            document_family=ctx.document_family,
            totals_source=totals.source.value,
            currency=ctx.currency,
            exchange_rate=ctx.exchange_rate,
            gross_ht=totals.gross_ht,
            total_discount=totals.total_discount,
            subtotal_ht=totals.subtotal_ht,
            total_vat=totals.total_vat,
            total_ttc=totals.total_ttc,
            stamp_duty=totals.stamp_duty,
            withholding_rate=ZERO,
            withholding_amount=ZERO,
            net_payable=totals.net_payable,
            settlement_total_ttc=(
                totals.settlement_total_ttc
                if totals.settlement_total_ttc is not None else totals.total_ttc
            ),
            settlement_net_payable=(
                totals.settlement_net_payable
                if totals.settlement_net_payable is not None else totals.net_payable
            ),
            paid_amount=ZERO,
            payment_status=PaymentStatus.UNPAID.value,
            pdf_url=ctx.source_reference,
            pdf_hash=ctx.extraction.pdf_hash,
        )
        session.add(document)
        return document

    def write_line(
        self,
        session: Session,
        ctx: WorkflowContext,
        document: PurchaseDocument,
        line: LineItem,
        order_index: int,
    ) -> PurchaseLine:
        settlement = line.settlement_amounts
        row = PurchaseLine(
            organization_id=ctx.organization_id,
            created_by_id=ctx.actor_id,
            document_id=document.id,
            order_index=order_index,
            product_id=line.product_id,
            name=line.name,
            reference=line.reference,
            ean=line.ean,
            unit=line.unit,
            quantity=line.quantity,
            unit_price_ht=line.unit_price_ht,
            vat_rate=line.vat_rate,
            discount_percent=line.discount_percent,
            is_exempt=line.is_exempt,
            line_ht=line.amounts.ht,
            line_vat=line.amounts.vat,
            line_ttc=line.amounts.ttc,
            settlement_ht=settlement.ht if settlement else None,
            settlement_ttc=settlement.ttc if settlement else None,
        )
        session.add(row)
        return row

    def stock_reason(self, ctx: WorkflowContext, document: PurchaseDocument) -> StockReason:
        return self._policy.stock.purchase_receipt
