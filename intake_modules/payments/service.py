"""
Payments Module Service (``intake_modules.payments.service``).

Responsibility
--------------
Settlement of committed purchase documents: withholding configuration,
direct payments (record, delete), the document's remaining balance and
payment status, and the payment request lifecycle whose approval is the
one path that turns a supplier's response into a ledger payment.

Architecture position
---------------------
**Modules layer** -- thin glue over the kernel models, MoneyMath
(``withholding_amount``, ``net_payable``), CurrencyConverter and
``WorkflowExecutor`` for request statuses.

Invariants enforced
-------------------
* Each public method owns its transaction boundary (``commit`` on
  success, ``rollback`` on exception).
* The document row is locked before its balance is read and changed.
* ``0 < amount <= remaining`` for every payment; remaining is
  ``max(0, payable - paid)`` where payable is the HT subtotal for foreign
  documents and the net payable otherwise.
* Withholding applies to local documents only and only while no payment
  exists.  The per-payment exchange rate changes that payment's
  settlement amount and nothing else.

Failure modes
-------------
* ``PaymentAmountError``, ``PaymentReferenceRequiredError``,
  ``WithholdingLockedError``, ``ExchangeRateLockedError``,
  ``DocumentAlreadyPaidError``.
* ``InvalidStatusTransitionError`` for a refused request transition.

Usage::

    service = PaymentsService(session, policy, clock=clock)
    service.configure_withholding(
        organization_id=org_id, actor_id=user_id,
        document_id=doc_id, withholding_rate=Decimal("1.5"),
    )
    service.record_payment(
        organization_id=org_id, actor_id=user_id, document_id=doc_id,
        amount=Decimal("500.000"), method=PaymentMethod.CHECK,
        reference_number="CHQ-0042",
    )
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from intake_config.schema import IntakePolicy
from intake_engines.currency import convert, validate_rate
from intake_engines.money_math import net_payable, withholding_amount
from intake_kernel.db.types import HUNDRED, ZERO, round_amount
from intake_kernel.domain.clock import Clock, SystemClock
from intake_kernel.domain.documents import PaymentMethod, PaymentStatus
from intake_kernel.exceptions import (
    DocumentAlreadyPaidError,
    DocumentNotFoundError,
    ExchangeRateLockedError,
    PaymentAmountError,
    PaymentNotFoundError,
    PaymentReferenceRequiredError,
    PaymentRequestNotFoundError,
    ValidationError,
    ValueOutOfRangeError,
    WithholdingLockedError,
)
from intake_kernel.logging_config import LogContext, get_logger
from intake_kernel.models.payment import PaymentRequest, PurchasePayment
from intake_kernel.models.purchase import PurchaseDocument
from intake_kernel.services.numbering_service import DocumentNumberService
from intake_modules.payments.models import DocumentBalance, PaymentRequestSummary, PaymentSummary
from intake_modules.payments.workflows import PAYMENT_REQUEST_WORKFLOW
from intake_services.workflow_executor import WorkflowExecutor, default_guard_executor

logger = get_logger("modules.payments.service")


def payment_summary(payment: PurchasePayment) -> PaymentSummary:
    return PaymentSummary(
        id=payment.id,
        document_id=payment.document_id,
        payment_date=payment.payment_date,
        amount=payment.amount,
        exchange_rate=payment.exchange_rate,
        settlement_amount=payment.settlement_amount,
        method=payment.method,
        reference_number=payment.reference_number,
        payment_request_id=payment.payment_request_id,
    )


def request_summary(request: PaymentRequest) -> PaymentRequestSummary:
    return PaymentRequestSummary(
        id=request.id,
        request_number=request.request_number,
        document_id=request.document_id,
        status=request.status,
        requested_amount=request.requested_amount,
        withholding_rate=request.withholding_rate,
        withholding_amount=request.withholding_amount,
        net_requested_amount=request.net_requested_amount,
        paid_amount=request.paid_amount,
        payment_method=request.payment_method,
        reference_number=request.reference_number,
        rejection_reason=request.rejection_reason,
        decided_at=request.decided_at,
        payment_id=request.payment_id,
    )


def payment_status_for(paid: Decimal, payable: Decimal) -> PaymentStatus:
    if paid <= ZERO:
        return PaymentStatus.UNPAID
    if paid >= payable:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIAL


class PaymentsService:
    """
    Payments and payment requests on purchase documents.

    Contract
    --------
    * Every mutating method commits on success and rolls back on any
      exception; read helpers never write.
    * ``paid_amount`` and ``payment_status`` of a document are only changed
      here, always together.
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

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_document(self, organization_id: UUID, document_id: UUID) -> PurchaseDocument:
        document = self._session.execute(
            select(PurchaseDocument)
            .where(
                PurchaseDocument.organization_id == organization_id,
                PurchaseDocument.id == document_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def _lock_request(self, organization_id: UUID, request_id: UUID) -> PaymentRequest:
        request = self._session.execute(
            select(PaymentRequest)
            .where(
                PaymentRequest.organization_id == organization_id,
                PaymentRequest.id == request_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise PaymentRequestNotFoundError(request_id)
        return request

    def _is_foreign(self, document: PurchaseDocument) -> bool:
        return document.currency != self._policy.currency.settlement_currency

    def _payable(self, document: PurchaseDocument) -> Decimal:
        """Amount the document settles in full: HT subtotal abroad, net payable locally."""
        if self._is_foreign(document):
            return document.subtotal_ht
        return document.net_payable

    def _remaining(self, document: PurchaseDocument) -> Decimal:
        return max(ZERO, self._payable(document) - document.paid_amount)

    def _payment_count(self, document_id: UUID) -> int:
        return self._session.execute(
            select(func.count()).select_from(PurchasePayment).where(
                PurchasePayment.document_id == document_id,
            )
        ).scalar_one()

    def _balance(self, document: PurchaseDocument) -> DocumentBalance:
        return DocumentBalance(
            document_id=document.id,
            currency=document.currency,
            payable=self._payable(document),
            paid_amount=document.paid_amount,
            remaining=self._remaining(document),
            payment_status=document.payment_status,
            withholding_rate=document.withholding_rate,
            withholding_amount=document.withholding_amount,
            net_payable=document.net_payable,
        )

    def _apply_paid(self, document: PurchaseDocument, paid: Decimal, actor_id: UUID) -> None:
        document.paid_amount = round_amount(paid)
        document.payment_status = payment_status_for(
            document.paid_amount, self._payable(document),
        ).value
        document.updated_by_id = actor_id

    def _set_withholding(self, document: PurchaseDocument, rate: Decimal, actor_id: UUID) -> None:
        amount = round_amount(withholding_amount(document.total_ttc, rate))
        document.withholding_rate = rate
        document.withholding_amount = amount
        document.net_payable = round_amount(
            net_payable(document.total_ttc, document.stamp_duty, amount)
        )
        document.settlement_net_payable = document.net_payable
        document.updated_by_id = actor_id

    # ------------------------------------------------------------------
    # Balance and withholding
    # ------------------------------------------------------------------

    def get_balance(self, organization_id: UUID, document_id: UUID) -> DocumentBalance:
        document = self._session.execute(
            select(PurchaseDocument).where(
                PurchaseDocument.organization_id == organization_id,
                PurchaseDocument.id == document_id,
            )
        ).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(document_id)
        return self._balance(document)

    def configure_withholding(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        document_id: UUID,
        withholding_rate: Decimal,
    ) -> DocumentBalance:
        """Set the withholding rate of a local document that has no payment yet."""
        try:
            document = self._lock_document(organization_id, document_id)
            if self._is_foreign(document):
                raise ValidationError(
                    "Withholding does not apply to foreign documents", field="withholding_rate",
                )
            if withholding_rate < ZERO or withholding_rate > HUNDRED:
                raise ValueOutOfRangeError("withholding_rate", withholding_rate, ZERO, HUNDRED)
            if self._payment_count(document.id):
                raise WithholdingLockedError(document.id)

            self._set_withholding(document, withholding_rate, actor_id)
            self._apply_paid(document, document.paid_amount, actor_id)
            self._session.flush()
            logger.info(
                "withholding_configured",
                extra={
                    "document_id": str(document.id),
                    "withholding_rate": str(withholding_rate),
                    "withholding_amount": str(document.withholding_amount),
                    "net_payable": str(document.net_payable),
                },
            )
            self._session.commit()
            return self._balance(document)
        except Exception:
            self._session.rollback()
            raise

    def set_document_exchange_rate(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        document_id: UUID,
        exchange_rate: Decimal,
    ) -> DocumentBalance:
        """Correct the rate of a foreign document; frozen once a payment exists."""
        try:
            document = self._lock_document(organization_id, document_id)
            if not self._is_foreign(document):
                raise ValidationError(
                    "Local documents have no exchange rate", field="exchange_rate",
                )
            rate = validate_rate(exchange_rate, document.currency)
            if self._payment_count(document.id):
                raise ExchangeRateLockedError(document.id)

            document.exchange_rate = rate
            document.settlement_total_ttc = round_amount(convert(document.total_ttc, rate))
            document.settlement_net_payable = round_amount(convert(document.net_payable, rate))
            document.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "document_exchange_rate_updated",
                extra={"document_id": str(document.id), "exchange_rate": str(rate)},
            )
            self._session.commit()
            return self._balance(document)
        except Exception:
            self._session.rollback()
            raise

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def _add_payment(
        self,
        document: PurchaseDocument,
        *,
        actor_id: UUID,
        amount: Decimal,
        method: PaymentMethod,
        payment_date=None,
        reference_number: str | None = None,
        exchange_rate: Decimal | None = None,
        method_lines: list[dict[str, Any]] | None = None,
        notes: str | None = None,
        payment_request_id: UUID | None = None,
    ) -> PurchasePayment:
        method = PaymentMethod(method)
        remaining = self._remaining(document)
        if amount <= ZERO or amount > remaining:
            raise PaymentAmountError(amount, remaining)
        if method.requires_reference and not (reference_number or "").strip():
            raise PaymentReferenceRequiredError(method.value)

        if self._is_foreign(document):
            rate = validate_rate(
                exchange_rate if exchange_rate is not None else document.exchange_rate,
                document.currency,
            )
        else:
            rate = Decimal("1")

        payment = PurchasePayment(
            organization_id=document.organization_id,
            created_by_id=actor_id,
            document_id=document.id,
            payment_date=payment_date or self._clock.today(),
            amount=amount,
            exchange_rate=rate,
            settlement_amount=round_amount(convert(amount, rate)),
            method=method.value,
            method_lines=method_lines,
            reference_number=reference_number,
            notes=notes,
            payment_request_id=payment_request_id,
        )
        self._session.add(payment)
        self._apply_paid(document, document.paid_amount + amount, actor_id)
        self._session.flush()

        logger.info(
            "payment_recorded",
            extra={
                "payment_id": str(payment.id),
                "document_id": str(document.id),
                "amount": str(amount),
                "currency": document.currency,
                "exchange_rate": str(rate),
                "settlement_amount": str(payment.settlement_amount),
                "method": method.value,
                "payment_status": document.payment_status,
            },
        )
        return payment

    def record_payment(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        document_id: UUID,
        amount: Decimal,
        method: PaymentMethod,
        payment_date=None,
        reference_number: str | None = None,
        exchange_rate: Decimal | None = None,
        method_lines: list[dict[str, Any]] | None = None,
        notes: str | None = None,
    ) -> PaymentSummary:
        with LogContext.bind(organization_id=organization_id, actor_id=actor_id, document_id=document_id):
            try:
                document = self._lock_document(organization_id, document_id)
                payment = self._add_payment(
                    document,
                    actor_id=actor_id,
                    amount=amount,
                    method=method,
                    payment_date=payment_date,
                    reference_number=reference_number,
                    exchange_rate=exchange_rate,
                    method_lines=method_lines,
                    notes=notes,
                )
                self._session.commit()
                return payment_summary(payment)
            except Exception:
                self._session.rollback()
                raise

    def delete_payment(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        payment_id: UUID,
    ) -> DocumentBalance:
        """Remove a payment and give its amount back to the document balance."""
        try:
            payment = self._session.execute(
                select(PurchasePayment).where(
                    PurchasePayment.organization_id == organization_id,
                    PurchasePayment.id == payment_id,
                )
            ).scalar_one_or_none()
            if payment is None:
                raise PaymentNotFoundError(payment_id)
            document = self._lock_document(organization_id, payment.document_id)

            self._apply_paid(document, max(ZERO, document.paid_amount - payment.amount), actor_id)
            self._session.delete(payment)
            self._session.flush()
            logger.info(
                "payment_deleted",
                extra={
                    "payment_id": str(payment_id),
                    "document_id": str(document.id),
                    "amount": str(payment.amount),
                    "payment_status": document.payment_status,
                },
            )
            self._session.commit()
            return self._balance(document)
        except Exception:
            self._session.rollback()
            raise

    def list_payments(self, organization_id: UUID, document_id: UUID) -> list[PaymentSummary]:
        rows = self._session.execute(
            select(PurchasePayment)
            .where(
                PurchasePayment.organization_id == organization_id,
                PurchasePayment.document_id == document_id,
            )
            .order_by(PurchasePayment.payment_date, PurchasePayment.created_at)
        ).scalars()
        return [payment_summary(p) for p in rows]

    # ------------------------------------------------------------------
    # Payment requests
    # ------------------------------------------------------------------

    def _transition(self, request: PaymentRequest, action: str, context: dict[str, Any] | None = None):
        from_state = request.status
        result = self._executor.require_transition(
            PAYMENT_REQUEST_WORKFLOW,
            "payment_request",
            request.id,
            from_state,
            action,
            context=context,
        )
        request.status = result.new_state
        logger.info(
            "payment_request_transition",
            extra={
                "request_id": str(request.id),
                "request_number": request.request_number,
                "action": action,
                "from_state": from_state,
                "to_state": result.new_state,
            },
        )
        return result

    def create_payment_request(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        document_id: UUID,
        withholding_rate: Decimal = ZERO,
        requested_amount: Decimal | None = None,
    ) -> PaymentRequestSummary:
        """
        Ask the supplier side to register a payment.

        The requested amount defaults to the remaining balance; withholding
        is computed on the document's TTC total and deducted from it.
        """
        try:
            document = self._lock_document(organization_id, document_id)
            remaining = self._remaining(document)
            if remaining <= ZERO:
                raise DocumentAlreadyPaidError(document.id)
            requested = remaining if requested_amount is None else requested_amount
            if requested <= ZERO or requested > remaining:
                raise PaymentAmountError(requested, remaining)
            if withholding_rate and self._is_foreign(document):
                raise ValidationError(
                    "Withholding does not apply to foreign documents", field="withholding_rate",
                )

            withheld = round_amount(withholding_amount(document.total_ttc, withholding_rate))
            net_requested = round_amount(requested - withheld)
            if net_requested <= ZERO:
                raise PaymentAmountError(net_requested, remaining)

            today = self._clock.today()
            numbering = self._policy.numbering
            request = PaymentRequest(
                organization_id=organization_id,
                created_by_id=actor_id,
                request_number=DocumentNumberService(self._session).next_number(
                    organization_id, numbering.payment_request_prefix, today.year, numbering.width,
                ),
                document_id=document.id,
                requested_amount=requested,
                withholding_base=document.total_ttc,
                withholding_rate=withholding_rate,
                withholding_amount=withheld,
                net_requested_amount=net_requested,
                status=PAYMENT_REQUEST_WORKFLOW.initial_state,
            )
            self._session.add(request)
            self._session.flush()
            logger.info(
                "payment_request_created",
                extra={
                    "request_id": str(request.id),
                    "request_number": request.request_number,
                    "document_id": str(document.id),
                    "requested_amount": str(requested),
                    "withholding_amount": str(withheld),
                    "net_requested_amount": str(net_requested),
                },
            )
            self._session.commit()
            return request_summary(request)
        except Exception:
            self._session.rollback()
            raise

    def submit_response(
        self,
        *,
        organization_id: UUID,
        request_id: UUID,
        paid_amount: Decimal,
        payment_method: PaymentMethod,
        reference_number: str | None = None,
        payment_date=None,
        method_lines: list[dict[str, Any]] | None = None,
        notes: str | None = None,
    ) -> PaymentRequestSummary:
        """Store the supplier's payment response; the request then awaits approval."""
        try:
            request = self._lock_request(organization_id, request_id)
            method = PaymentMethod(payment_method)
            if paid_amount <= ZERO or paid_amount > request.net_requested_amount:
                raise PaymentAmountError(paid_amount, request.net_requested_amount)
            if method.requires_reference and not (reference_number or "").strip():
                raise PaymentReferenceRequiredError(method.value)

            self._transition(request, "submit_response", context={
                "paid_amount": paid_amount,
                "payment_method": method.value,
                "reference_number": reference_number,
            })
            request.paid_amount = paid_amount
            request.payment_method = method.value
            request.reference_number = reference_number
            request.payment_date = payment_date or self._clock.today()
            request.method_lines = method_lines
            request.payment_notes = notes
            self._session.flush()
            self._session.commit()
            return request_summary(request)
        except Exception:
            self._session.rollback()
            raise

    def approve_request(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        request_id: UUID,
    ) -> PaymentRequestSummary:
        """
        Approve a supplier response: fix the document withholding and record
        the reported payment.
        """
        with LogContext.bind(organization_id=organization_id, actor_id=actor_id):
            try:
                request = self._lock_request(organization_id, request_id)
                document = self._lock_document(organization_id, request.document_id)

                if request.withholding_rate != document.withholding_rate:
                    if self._payment_count(document.id):
                        raise WithholdingLockedError(document.id)
                    self._set_withholding(document, request.withholding_rate, actor_id)

                result = self._transition(request, "approve", context={
                    "paid_amount": request.paid_amount,
                    "net_requested_amount": request.net_requested_amount,
                    "remaining_balance": self._remaining(document),
                })
                if result.records_payment:
                    payment = self._add_payment(
                        document,
                        actor_id=actor_id,
                        amount=request.paid_amount,
                        method=PaymentMethod(request.payment_method),
                        payment_date=request.payment_date,
                        reference_number=request.reference_number,
                        method_lines=request.method_lines,
                        notes=request.payment_notes,
                        payment_request_id=request.id,
                    )
                    request.payment_id = payment.id
                request.decided_at = self._clock.now()
                request.updated_by_id = actor_id
                self._session.flush()
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
    ) -> PaymentRequestSummary:
        try:
            request = self._lock_request(organization_id, request_id)
            self._transition(request, "reject", context={"rejection_reason": reason})
            request.rejection_reason = reason.strip()
            request.decided_at = self._clock.now()
            request.updated_by_id = actor_id
            self._session.flush()
            self._session.commit()
            return request_summary(request)
        except Exception:
            self._session.rollback()
            raise

    def cancel_request(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        request_id: UUID,
    ) -> PaymentRequestSummary:
        try:
            request = self._lock_request(organization_id, request_id)
            self._transition(request, "cancel")
            request.updated_by_id = actor_id
            self._session.flush()
            self._session.commit()
            return request_summary(request)
        except Exception:
            self._session.rollback()
            raise

    def get_payment_request(self, organization_id: UUID, request_id: UUID) -> PaymentRequestSummary:
        request = self._session.execute(
            select(PaymentRequest).where(
                PaymentRequest.organization_id == organization_id,
                PaymentRequest.id == request_id,
            )
        ).scalar_one_or_none()
        if request is None:
            raise PaymentRequestNotFoundError(request_id)
        return request_summary(request)
