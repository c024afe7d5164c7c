"""
Tests for PaymentsService.

Covers:
- Withholding on the TTC total and the net payable it leaves
- Payment amount and reference rules, payment status progression
- Locks once a payment exists (withholding, document exchange rate)
- Foreign documents: payable HT subtotal, settlement conversion
- Payment request lifecycle: respond, approve, reject, cancel
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from intake_kernel.domain.documents import PaymentMethod
from intake_kernel.exceptions import (
    DocumentAlreadyPaidError,
    DocumentNotFoundError,
    ExchangeRateLockedError,
    InvalidStatusTransitionError,
    PaymentAmountError,
    PaymentNotFoundError,
    PaymentReferenceRequiredError,
    ValidationError,
    WithholdingLockedError,
)
from tests.workflow_support import foreign_purchase_payload, local_purchase_payload


def thousand_dinar_payload() -> dict:
    """One exempt-rate line: TTC 1000.000, stamp 1.000, net 1001.000."""
    return local_purchase_payload(products=[{
        "name": "Serveur rack",
        "reference": "SRV-1U",
        "quantity": "1",
        "unit_price_ht": "1000.000",
        "vat_rate": "0",
    }])


@pytest.fixture
def local_document(commit_purchase):
    return commit_purchase(thousand_dinar_payload())


@pytest.fixture
def foreign_document(commit_purchase):
    return commit_purchase(foreign_purchase_payload())


@pytest.fixture
def pay(payments, org_id, actor_id):
    def _pay(document, amount, method=PaymentMethod.CASH, **kwargs):
        return payments.record_payment(
            organization_id=org_id,
            actor_id=actor_id,
            document_id=document.id,
            amount=Decimal(amount),
            method=method,
            **kwargs,
        )
    return _pay


# =============================================================================
# Withholding
# =============================================================================


class TestWithholding:
    """Tests for withholding configuration."""

    def test_withholding_on_ttc(self, payments, local_document, org_id, actor_id):
        balance = payments.configure_withholding(
            organization_id=org_id,
            actor_id=actor_id,
            document_id=local_document.id,
            withholding_rate=Decimal("5"),
        )

        assert balance.withholding_amount == Decimal("50.000")
        assert balance.net_payable == Decimal("951.000")
        assert balance.remaining == Decimal("951.000")

    def test_rate_out_of_range(self, payments, local_document, org_id, actor_id):
        with pytest.raises(ValidationError):
            payments.configure_withholding(
                organization_id=org_id,
                actor_id=actor_id,
                document_id=local_document.id,
                withholding_rate=Decimal("101"),
            )

    def test_locked_after_payment(self, payments, local_document, pay, org_id, actor_id):
        pay(local_document, "100")

        with pytest.raises(WithholdingLockedError):
            payments.configure_withholding(
                organization_id=org_id,
                actor_id=actor_id,
                document_id=local_document.id,
                withholding_rate=Decimal("1.5"),
            )

    def test_foreign_document_refused(self, payments, foreign_document, org_id, actor_id):
        with pytest.raises(ValidationError) as exc_info:
            payments.configure_withholding(
                organization_id=org_id,
                actor_id=actor_id,
                document_id=foreign_document.id,
                withholding_rate=Decimal("5"),
            )

        assert exc_info.value.field == "withholding_rate"


# =============================================================================
# Payments
# =============================================================================


class TestPayments:
    """Tests for recording and deleting payments."""

    def test_status_progression(self, payments, local_document, pay, org_id):
        first = pay(local_document, "400")
        partial = payments.get_balance(org_id, local_document.id)

        pay(local_document, "601")
        paid = payments.get_balance(org_id, local_document.id)

        assert first.payment_date == date(2025, 3, 15)
        assert first.settlement_amount == Decimal("400.000")
        assert partial.payment_status == "partial"
        assert partial.remaining == Decimal("601.000")
        assert paid.payment_status == "paid"
        assert paid.remaining == Decimal("0")

    def test_amount_over_remaining(self, local_document, pay):
        with pytest.raises(PaymentAmountError) as exc_info:
            pay(local_document, "1001.001")

        assert exc_info.value.remaining == Decimal("1001.000")

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_amount_must_be_positive(self, local_document, pay, amount):
        with pytest.raises(PaymentAmountError):
            pay(local_document, amount)

    def test_check_needs_reference(self, local_document, pay):
        with pytest.raises(PaymentReferenceRequiredError):
            pay(local_document, "100", PaymentMethod.CHECK, reference_number="  ")

        payment = pay(local_document, "100", PaymentMethod.CHECK, reference_number="CHQ-0091")
        assert payment.reference_number == "CHQ-0091"

    def test_delete_restores_balance(self, payments, local_document, pay, org_id, actor_id):
        payment = pay(local_document, "1001")

        balance = payments.delete_payment(
            organization_id=org_id, actor_id=actor_id, payment_id=payment.id,
        )

        assert balance.payment_status == "unpaid"
        assert balance.remaining == Decimal("1001.000")
        assert payments.list_payments(org_id, local_document.id) == []

    def test_delete_unknown_payment(self, payments, org_id, actor_id):
        with pytest.raises(PaymentNotFoundError):
            payments.delete_payment(organization_id=org_id, actor_id=actor_id, payment_id=uuid4())

    def test_unknown_document(self, payments, org_id):
        with pytest.raises(DocumentNotFoundError):
            payments.get_balance(org_id, uuid4())

    def test_payment_logged(self, local_document, pay, captured_logs):
        pay(local_document, "10")

        (record,) = [r for r in captured_logs() if r["message"] == "payment_recorded"]
        assert record["amount"] == "10"
        assert record["payment_status"] == "partial"


# =============================================================================
# Foreign documents
# =============================================================================


class TestForeignDocument:
    """Tests for payments on documents in a foreign currency."""

    def test_payable_is_ht_subtotal(self, payments, foreign_document, org_id):
        balance = payments.get_balance(org_id, foreign_document.id)

        assert balance.currency == "EUR"
        assert balance.payable == Decimal("300.000")

    def test_payment_converted_at_document_rate(self, foreign_document, pay):
        payment = pay(foreign_document, "100", PaymentMethod.SWIFT_TRANSFER, reference_number="SW-1")

        assert payment.exchange_rate == Decimal("3.4")
        assert payment.settlement_amount == Decimal("340.000")

    def test_payment_rate_override(self, foreign_document, pay):
        payment = pay(
            foreign_document, "100", PaymentMethod.SWIFT_TRANSFER,
            reference_number="SW-2", exchange_rate=Decimal("3.45"),
        )

        assert payment.settlement_amount == Decimal("345.000")

    def test_document_rate_correction(self, payments, purchasing, foreign_document, org_id, actor_id):
        payments.set_document_exchange_rate(
            organization_id=org_id,
            actor_id=actor_id,
            document_id=foreign_document.id,
            exchange_rate=Decimal("3.5"),
        )

        document = purchasing.get_document(org_id, foreign_document.id)
        assert document.exchange_rate == Decimal("3.5")
        assert document.settlement_net_payable == Decimal("1050.000")

    def test_document_rate_locked_after_payment(
        self, payments, foreign_document, pay, org_id, actor_id,
    ):
        pay(foreign_document, "50", PaymentMethod.SWIFT_TRANSFER, reference_number="SW-3")

        with pytest.raises(ExchangeRateLockedError):
            payments.set_document_exchange_rate(
                organization_id=org_id,
                actor_id=actor_id,
                document_id=foreign_document.id,
                exchange_rate=Decimal("3.5"),
            )

    def test_local_document_has_no_rate(self, payments, local_document, org_id, actor_id):
        with pytest.raises(ValidationError):
            payments.set_document_exchange_rate(
                organization_id=org_id,
                actor_id=actor_id,
                document_id=local_document.id,
                exchange_rate=Decimal("3.5"),
            )


# =============================================================================
# Payment requests
# =============================================================================


class TestPaymentRequests:
    """Tests for the payment request lifecycle."""

    @pytest.fixture
    def request_5pct(self, payments, local_document, org_id, actor_id):
        return payments.create_payment_request(
            organization_id=org_id,
            actor_id=actor_id,
            document_id=local_document.id,
            withholding_rate=Decimal("5"),
        )

    def respond(self, payments, org_id, request, amount="951.000"):
        return payments.submit_response(
            organization_id=org_id,
            request_id=request.id,
            paid_amount=Decimal(amount),
            payment_method=PaymentMethod.CHECK,
            reference_number="CHQ-2201",
        )

    def test_create_defaults_to_remaining(self, request_5pct):
        assert request_5pct.request_number == "DEM-2025-00001"
        assert request_5pct.status == "pending"
        assert request_5pct.requested_amount == Decimal("1001.000")
        assert request_5pct.withholding_amount == Decimal("50.000")
        assert request_5pct.net_requested_amount == Decimal("951.000")

    def test_response_awaits_approval(self, payments, request_5pct, org_id):
        responded = self.respond(payments, org_id, request_5pct)

        assert responded.status == "awaiting_approval"
        assert responded.paid_amount == Decimal("951.000")
        assert responded.payment_method == "check"

    def test_response_over_net_requested(self, payments, request_5pct, org_id):
        with pytest.raises(PaymentAmountError):
            self.respond(payments, org_id, request_5pct, amount="951.001")

        assert payments.get_payment_request(org_id, request_5pct.id).status == "pending"

    def test_approve_records_payment(
        self, payments, local_document, request_5pct, org_id, actor_id,
    ):
        self.respond(payments, org_id, request_5pct)

        approved = payments.approve_request(
            organization_id=org_id, actor_id=actor_id, request_id=request_5pct.id,
        )

        assert approved.status == "approved"
        assert approved.decided_at is not None
        (payment,) = payments.list_payments(org_id, local_document.id)
        assert approved.payment_id == payment.id
        assert payment.payment_request_id == request_5pct.id
        assert payment.amount == Decimal("951.000")
        balance = payments.get_balance(org_id, local_document.id)
        assert balance.withholding_amount == Decimal("50.000")
        assert balance.payment_status == "paid"

    def test_approve_before_response_refused(self, payments, request_5pct, org_id, actor_id):
        with pytest.raises(InvalidStatusTransitionError):
            payments.approve_request(
                organization_id=org_id, actor_id=actor_id, request_id=request_5pct.id,
            )

    def test_reject_needs_reason(self, payments, request_5pct, org_id, actor_id):
        self.respond(payments, org_id, request_5pct)

        with pytest.raises(InvalidStatusTransitionError):
            payments.reject_request(
                organization_id=org_id, actor_id=actor_id,
                request_id=request_5pct.id, reason=" ",
            )

        rejected = payments.reject_request(
            organization_id=org_id, actor_id=actor_id,
            request_id=request_5pct.id, reason="Chèque sans provision",
        )
        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Chèque sans provision"

    def test_cancel_then_nothing_else(self, payments, request_5pct, org_id, actor_id):
        cancelled = payments.cancel_request(
            organization_id=org_id, actor_id=actor_id, request_id=request_5pct.id,
        )

        assert cancelled.status == "cancelled"
        with pytest.raises(InvalidStatusTransitionError):
            self.respond(payments, org_id, request_5pct)

    def test_paid_document_refuses_requests(
        self, payments, local_document, pay, org_id, actor_id,
    ):
        pay(local_document, "1001")

        with pytest.raises(DocumentAlreadyPaidError):
            payments.create_payment_request(
                organization_id=org_id, actor_id=actor_id, document_id=local_document.id,
            )
