"""
Invoicing Module Service (``intake_modules.invoicing.service``).

Responsibility
--------------
Client invoice requests and the invoices generated from them: records
incoming requests, opens an invoice intake seeded from a request (client
identity, requested lines, the request total as target amount), commits
it as a numbered invoice with stock removals, and handles the request
lifecycle (reject, convert).

Architecture position
---------------------
**Modules layer** -- thin glue over ``IntakeWorkflowEngine``,
``ReconciliationCommitter`` (with ``InvoiceWriter``) and
``WorkflowExecutor`` for request statuses.

Invariants enforced
-------------------
* Each public method owns its transaction boundary.
* Request status changes go through ``INVOICE_REQUEST_WORKFLOW``; a
  refused transition raises ``InvalidStatusTransitionError``.
* The invoice net payable must equal the request total (within 0.001)
  before the totals step can be confirmed.

Failure modes
-------------
* ``InvoiceRequestNotFoundError`` for an unknown request.
* ``InvalidStatusTransitionError`` when the request is not pending.
* Stock errors from the committer (``InsufficientStockError``) roll the
  whole invoice back.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from intake_config.schema import IntakePolicy
from intake_kernel.db.types import HUNDRED, ZERO, round_amount
from intake_kernel.domain.clock import Clock, SystemClock
from intake_kernel.domain.context import WorkflowContext
from intake_kernel.domain.documents import CreationMode, InvoiceRequestStatus
from intake_kernel.domain.extraction import (
    ExtractedCounterpart,
    ExtractedLine,
    ExtractedTotals,
    ExtractionResult,
)
from intake_kernel.exceptions import (
    DocumentNotFoundError,
    InvalidStatusTransitionError,
    InvoiceRequestNotFoundError,
    ProductNotFoundError,
)
from intake_kernel.logging_config import get_logger
from intake_kernel.models.invoice import Invoice, InvoiceRequest, InvoiceRequestLine
from intake_modules.invoicing.models import (
    ClientIdentity,
    InvoiceLineSummary,
    InvoiceRequestSummary,
    InvoiceSummary,
    RequestLineInput,
)
from intake_modules.invoicing.workflows import INVOICE_INTAKE_WORKFLOW, INVOICE_REQUEST_WORKFLOW
from intake_modules.invoicing.writer import InvoiceWriter
from intake_services.catalog_service import CatalogService
from intake_services.committer import ReconciliationCommitter
from intake_services.workflow_engine import IntakeWorkflowEngine
from intake_services.workflow_executor import WorkflowExecutor, default_guard_executor

logger = get_logger("modules.invoicing.service")


def request_summary(request: InvoiceRequest) -> InvoiceRequestSummary:
    return InvoiceRequestSummary(
        id=request.id,
        request_number=request.request_number,
        status=request.status,
        total_ttc=request.total_ttc,
        purchase_date=request.purchase_date,
        rejection_reason=request.rejection_reason,
        generated_invoice_id=request.generated_invoice_id,
        linked_client_id=request.linked_client_id,
    )


def invoice_summary(invoice: Invoice) -> InvoiceSummary:
    return InvoiceSummary(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        invoice_date=invoice.invoice_date,
        client_id=invoice.client_id,
        request_id=invoice.request_id,
        status=invoice.status,
        currency=invoice.currency,
        subtotal_ht=invoice.subtotal_ht,
        total_vat=invoice.total_vat,
        total_ttc=invoice.total_ttc,
        stamp_duty=invoice.stamp_duty,
        net_payable=invoice.net_payable,
        payment_status=invoice.payment_status,
        lines=tuple(
            InvoiceLineSummary(
                order_index=line.order_index,
                product_id=line.product_id,
                name=line.name,
                quantity=line.quantity,
                unit_price_ht=line.unit_price_ht,
                vat_rate=line.vat_rate,
                discount_percent=line.discount_percent,
                line_ht=line.line_ht,
                line_vat=line.line_vat,
                line_ttc=line.line_ttc,
            )
            for line in invoice.lines
        ),
    )


class InvoicingService:
    """
    Invoice requests and client invoices.

    Contract
    --------
    * ``submit_request``, ``reject_request`` and ``convert_request`` commit
      on success and roll back on any exception.
    * ``start_from_request`` and ``start_manual`` never write.
    * ``commit`` writes the invoice, its lines, the stock removals and the
      request update atomically.
    """

    def __init__(
        self,
        session: Session,
        policy: IntakePolicy,
        workflow_executor: WorkflowExecutor | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._policy = policy
        self._clock = clock or SystemClock()
        self._executor = workflow_executor or WorkflowExecutor(default_guard_executor())
        self._engine = IntakeWorkflowEngine(session, policy, self._clock)
        self._catalog = CatalogService(session)
        self._committer = ReconciliationCommitter(
            session, policy, InvoiceWriter(policy, self._executor, self._clock),
        )

    @property
    def engine(self) -> IntakeWorkflowEngine:
        return self._engine

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _get_request(self, organization_id: UUID, request_id: UUID, lock: bool = False) -> InvoiceRequest:
        stmt = select(InvoiceRequest).where(
            InvoiceRequest.organization_id == organization_id,
            InvoiceRequest.id == request_id,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        request = self._session.execute(stmt).scalar_one_or_none()
        if request is None:
            raise InvoiceRequestNotFoundError(request_id)
        return request

    def get_request(self, organization_id: UUID, request_id: UUID) -> InvoiceRequestSummary:
        return request_summary(self._get_request(organization_id, request_id))

    def submit_request(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        request_number: str,
        client: ClientIdentity,
        lines: Sequence[RequestLineInput],
        total_ttc: Decimal,
        purchase_date: date | None = None,
        transaction_number: str | None = None,
    ) -> InvoiceRequestSummary:
        """Record a client's invoice request as pending."""
        if not lines:
            raise ValueError("An invoice request needs at least one line")
        if total_ttc <= ZERO:
            raise ValueError("Request total must be positive")
        try:
            request = InvoiceRequest(
                organization_id=organization_id,
                created_by_id=actor_id,
                request_number=request_number,
                transaction_number=transaction_number,
                purchase_date=purchase_date,
                total_ttc=total_ttc,
                client_type=client.client_type,
                first_name=client.first_name,
                last_name=client.last_name,
                company_name=client.company_name,
                identifier_type=client.identifier_type,
                identifier_value=client.identifier_value,
                country=client.country,
                governorate=client.governorate,
                address=client.address,
                phone=client.phone,
                email=client.email,
                status=INVOICE_REQUEST_WORKFLOW.initial_state,
            )
            self._session.add(request)
            self._session.flush()
            for order_index, line in enumerate(lines):
                self._session.add(InvoiceRequestLine(
                    organization_id=organization_id,
                    created_by_id=actor_id,
                    request_id=request.id,
                    order_index=order_index,
                    product_id=line.product_id,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price_ttc=line.unit_price_ttc,
                ))
            self._session.flush()
            logger.info(
                "invoice_request_submitted",
                extra={
                    "request_id": str(request.id),
                    "request_number": request_number,
                    "line_count": len(lines),
                    "total_ttc": str(total_ttc),
                },
            )
            self._session.commit()
            return request_summary(request)
        except Exception:
            self._session.rollback()
            raise

    def reject_request(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        request_id: UUID,
        reason: str | None,
    ) -> InvoiceRequestSummary:
        try:
            request = self._get_request(organization_id, request_id, lock=True)
            result = self._executor.require_transition(
                INVOICE_REQUEST_WORKFLOW,
                "invoice_request",
                request.id,
                request.status,
                "reject",
                context={"rejection_reason": reason},
            )
            request.status = result.new_state
            request.rejection_reason = reason.strip()
            request.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "invoice_request_rejected",
                extra={"request_id": str(request.id), "request_number": request.request_number},
            )
            self._session.commit()
            return request_summary(request)
        except Exception:
            self._session.rollback()
            raise

    def convert_request(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        request_id: UUID,
    ) -> InvoiceRequestSummary:
        """Mark a request converted (handled outside the invoice flow)."""
        try:
            request = self._get_request(organization_id, request_id, lock=True)
            result = self._executor.require_transition(
                INVOICE_REQUEST_WORKFLOW,
                "invoice_request",
                request.id,
                request.status,
                "convert",
            )
            request.status = result.new_state
            request.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "invoice_request_converted",
                extra={"request_id": str(request.id), "request_number": request.request_number},
            )
            self._session.commit()
            return request_summary(request)
        except Exception:
            self._session.rollback()
            raise

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def _request_line(self, organization_id: UUID, line: InvoiceRequestLine) -> ExtractedLine:
        """Extraction-shaped line of a request line; TTC prices are turned into HT."""
        vat_rate = self._policy.vat.default_rate
        if line.product_id is not None:
            try:
                row = self._catalog.get_product(organization_id, line.product_id)
            except ProductNotFoundError:
                row = None
            if row is not None and row.sale_vat_rate is not None:
                vat_rate = row.sale_vat_rate
        unit_price_ht = None
        if line.unit_price_ttc is not None:
            unit_price_ht = line.unit_price_ttc / (1 + vat_rate / HUNDRED)
        return ExtractedLine(
            name=line.description,
            quantity=line.quantity,
            unit_price_ht=unit_price_ht,
            unit_price_ttc=line.unit_price_ttc,
            vat_rate=vat_rate,
            product_id=line.product_id,
        )

    def start_from_request(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        request_id: UUID,
    ) -> WorkflowContext:
        """Open an invoice intake for a pending request; its total becomes the target."""
        request = self._get_request(organization_id, request_id)
        if request.status != InvoiceRequestStatus.PENDING.value:
            raise InvalidStatusTransitionError(
                INVOICE_REQUEST_WORKFLOW.name, request.status, "process",
                "only pending requests can be invoiced",
            )

        counterpart = ExtractedCounterpart(
            name=request.company_name
            or " ".join(p for p in (request.first_name, request.last_name) if p) or None,
            counterpart_type=request.client_type,
            first_name=request.first_name,
            last_name=request.last_name,
            company_name=request.company_name,
            identifier_type=request.identifier_type,
            identifier_value=request.identifier_value,
            country=request.country,
            governorate=request.governorate,
            address=request.address,
            phone=request.phone,
            email=request.email,
        )
        extraction = ExtractionResult(
            invoice_date=self._clock.today(),
            counterpart=counterpart,
            lines=tuple(self._request_line(organization_id, line) for line in request.lines),
            # No extracted amounts: the invoice totals always come from its lines
            totals=ExtractedTotals(currency=self._policy.currency.settlement_currency),
        )
        requested: dict[UUID, Decimal] = {}
        for line in request.lines:
            if line.product_id is not None:
                requested[line.product_id] = requested.get(line.product_id, ZERO) + line.quantity

        ctx = self._engine.start(
            definition=INVOICE_INTAKE_WORKFLOW,
            organization_id=organization_id,
            actor_id=actor_id,
            extraction=extraction,
            creation_mode=CreationMode.INVOICE_REQUEST,
            origin_request_id=request.id,
            target_amount=request.total_ttc,
            source_reference=request.request_number,
            requested_quantities=requested,
        )
        logger.info(
            "invoice_intake_started_from_request",
            extra={
                "request_id": str(request.id),
                "request_number": request.request_number,
                "target_amount": str(request.total_ttc),
            },
        )
        return ctx

    def start_manual(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        draft: ExtractionResult | dict[str, Any] | None = None,
    ) -> WorkflowContext:
        """Open an invoice intake without a request; ``draft`` may pre-fill it."""
        if not isinstance(draft, ExtractionResult):
            draft = ExtractionResult.from_dict(draft)
        if draft.invoice_date is None:
            draft = replace(draft, invoice_date=self._clock.today())
        return self._engine.start(
            definition=INVOICE_INTAKE_WORKFLOW,
            organization_id=organization_id,
            actor_id=actor_id,
            extraction=draft,
            creation_mode=CreationMode.MANUAL,
        )

    def commit(self, ctx: WorkflowContext) -> InvoiceSummary:
        document_id = self._engine.commit(ctx, self._committer)
        summary = self.get_invoice(ctx.organization_id, document_id)
        logger.info(
            "invoice_recorded",
            extra={
                "invoice_id": str(document_id),
                "invoice_number": summary.invoice_number,
                "client_id": str(summary.client_id),
                "net_payable": str(round_amount(summary.net_payable)),
                "request_id": str(summary.request_id) if summary.request_id else None,
            },
        )
        return summary

    def get_invoice(self, organization_id: UUID, invoice_id: UUID) -> InvoiceSummary:
        invoice = self._session.execute(
            select(Invoice).where(
                Invoice.organization_id == organization_id,
                Invoice.id == invoice_id,
            )
        ).scalar_one_or_none()
        if invoice is None:
            raise DocumentNotFoundError(invoice_id)
        return invoice_summary(invoice)
