"""
Tests for InvoicingService.

Covers:
- Invoice requests: submit, reject, convert and their refused transitions
- Invoice intake from a request: target amount, stock removal, request processed
- Manual invoices: quantity caps, numbering, foreign clients
- Rollback when stock ran out between verification and commit
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from intake_kernel.domain.context import IntakeStep
from intake_kernel.domain.counterpart import (
    CounterpartDraft,
    CounterpartRole,
    CounterpartType,
    MatchedCounterpart,
    NewCounterpart,
)
from intake_kernel.domain.product import MovementType, StockReason
from intake_kernel.exceptions import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    InvoiceRequestNotFoundError,
    StepValidationError,
    TotalsMismatchError,
)
from intake_kernel.models import Invoice
from intake_modules.invoicing.models import ClientIdentity, RequestLineInput
from tests.workflow_support import advance_to, drive_to_commit

CLIENT = ClientIdentity(
    client_type="individual_local",
    first_name="Amira",
    last_name="Ben Salah",
    identifier_type="cin",
    identifier_value="01234567",
    governorate="Sfax",
    email="amira@example.tn",
)


@pytest.fixture
def submit(invoicing, org_id, actor_id):
    """Submit a one-line request for ``product`` (59.500 TTC per unit)."""

    def _submit(product, quantity="2", total="120.000", number="DI-001"):
        return invoicing.submit_request(
            organization_id=org_id,
            actor_id=actor_id,
            request_number=number,
            client=CLIENT,
            lines=[RequestLineInput(
                quantity=Decimal(quantity),
                product_id=product.id,
                description=product.name,
                unit_price_ttc=Decimal("59.500"),
            )],
            total_ttc=Decimal(total),
            purchase_date=date(2025, 3, 12),
        )

    return _submit


def manual_draft(product, quantity="1", **counterpart):
    fields = {
        "counterpart_type": "individual_local",
        "first_name": "Amira",
        "last_name": "Ben Salah",
        "identifier_type": "cin",
        "identifier_value": "01234567",
        "governorate": "Sfax",
    }
    fields.update(counterpart)
    return {
        "counterpart": fields,
        "lines": [{
            "name": product.name,
            "product_id": str(product.id),
            "quantity": quantity,
            "unit_price_ht": "50.000",
            "vat_rate": "19",
        }],
    }


# =============================================================================
# Requests
# =============================================================================


class TestRequests:
    """Tests for the invoice request lifecycle."""

    def test_submit_is_pending(self, submit, make_product):
        request = submit(make_product())

        assert request.status == "pending"
        assert request.total_ttc == Decimal("120.000")
        assert request.generated_invoice_id is None

    def test_submit_needs_lines(self, invoicing, org_id, actor_id):
        with pytest.raises(ValueError):
            invoicing.submit_request(
                organization_id=org_id,
                actor_id=actor_id,
                request_number="DI-002",
                client=CLIENT,
                lines=[],
                total_ttc=Decimal("10"),
            )

    def test_reject_with_reason(self, invoicing, submit, make_product, org_id, actor_id):
        request = submit(make_product())

        rejected = invoicing.reject_request(
            organization_id=org_id, actor_id=actor_id,
            request_id=request.id, reason=" Client cancelled ",
        )

        assert rejected.status == "rejected"
        assert rejected.rejection_reason == "Client cancelled"

    def test_reject_needs_reason(self, invoicing, submit, make_product, org_id, actor_id):
        request = submit(make_product())

        with pytest.raises(InvalidStatusTransitionError):
            invoicing.reject_request(
                organization_id=org_id, actor_id=actor_id,
                request_id=request.id, reason="  ",
            )

        assert invoicing.get_request(org_id, request.id).status == "pending"

    def test_convert_pending(self, invoicing, submit, make_product, org_id, actor_id):
        request = submit(make_product())

        converted = invoicing.convert_request(
            organization_id=org_id, actor_id=actor_id, request_id=request.id,
        )

        assert converted.status == "converted"
        with pytest.raises(InvalidStatusTransitionError):
            invoicing.reject_request(
                organization_id=org_id, actor_id=actor_id,
                request_id=request.id, reason="too late",
            )

    def test_unknown_request(self, invoicing, org_id):
        with pytest.raises(InvoiceRequestNotFoundError):
            invoicing.get_request(org_id, uuid4())


# =============================================================================
# Invoice from a request
# =============================================================================


class TestInvoiceFromRequest:
    """Tests for the request-seeded invoice intake."""

    def test_context_seeded_from_request(self, invoicing, submit, make_product, org_id, actor_id):
        product = make_product()
        request = submit(product)

        ctx = invoicing.start_from_request(
            organization_id=org_id, actor_id=actor_id, request_id=request.id,
        )

        assert ctx.target_amount == Decimal("120.000")
        assert ctx.origin_request_id == request.id
        assert isinstance(ctx.counterpart, NewCounterpart)
        assert ctx.lines[0].unit_price_ht == Decimal("50")
        assert ctx.requested_quantities == {product.id: Decimal("2")}
        assert IntakeStep.CURRENCY_SELECTION not in [d.step for d in ctx.definition.steps]

    def test_commit_removes_stock_and_processes_request(
        self, invoicing, submit, make_product, catalog, stock, org_id, actor_id,
    ):
        product = make_product()
        request = submit(product)
        ctx = invoicing.start_from_request(
            organization_id=org_id, actor_id=actor_id, request_id=request.id,
        )
        drive_to_commit(invoicing.engine, ctx)

        invoice = invoicing.commit(ctx)

        assert invoice.invoice_number == "FAC-2025-00001"
        assert invoice.invoice_date == date(2025, 3, 15)
        assert invoice.net_payable == Decimal("120.000")
        assert invoice.stamp_duty == Decimal("1.000")
        assert invoice.request_id == request.id

        assert catalog.get_product(org_id, product.id).current_stock == Decimal("8")
        (sale,) = [
            m for m in stock.movements_for(org_id, product.id) if m.source_document_id == invoice.id
        ]
        assert sale.movement_type == MovementType.REMOVE.value
        assert sale.reason_category == "commercial"
        assert sale.reason_detail == "Facture FAC-2025-00001 (Demande DI-001)"

        processed = invoicing.get_request(org_id, request.id)
        assert processed.status == "processed"
        assert processed.generated_invoice_id == invoice.id
        assert processed.linked_client_id == invoice.client_id

    def test_existing_client_matched(
        self, invoicing, submit, make_product, make_client, org_id, actor_id,
    ):
        client = make_client()
        request = submit(make_product())

        ctx = invoicing.start_from_request(
            organization_id=org_id, actor_id=actor_id, request_id=request.id,
        )

        assert isinstance(ctx.counterpart, MatchedCounterpart)
        assert ctx.counterpart_id == client.id

    def test_total_must_match_request(self, invoicing, submit, make_product, org_id, actor_id):
        request = submit(make_product(), total="121.000")
        ctx = invoicing.start_from_request(
            organization_id=org_id, actor_id=actor_id, request_id=request.id,
        )
        advance_to(invoicing.engine, ctx, IntakeStep.TOTALS_CONFIRMATION)

        with pytest.raises(TotalsMismatchError) as exc_info:
            invoicing.engine.confirm(ctx)

        assert exc_info.value.difference == Decimal("1.000")

    def test_processed_request_cannot_be_invoiced_again(
        self, invoicing, submit, make_product, org_id, actor_id,
    ):
        request = submit(make_product())
        ctx = invoicing.start_from_request(
            organization_id=org_id, actor_id=actor_id, request_id=request.id,
        )
        drive_to_commit(invoicing.engine, ctx)
        invoicing.commit(ctx)

        with pytest.raises(InvalidStatusTransitionError):
            invoicing.start_from_request(
                organization_id=org_id, actor_id=actor_id, request_id=request.id,
            )

    def test_stock_gone_before_commit_rolls_back(
        self, invoicing, submit, make_product, stock, session, org_id, actor_id,
    ):
        product = make_product()
        request = submit(product)
        ctx = invoicing.start_from_request(
            organization_id=org_id, actor_id=actor_id, request_id=request.id,
        )
        drive_to_commit(invoicing.engine, ctx)
        stock.record_movement(
            organization_id=org_id,
            actor_id=actor_id,
            product_id=product.id,
            movement_type=MovementType.REMOVE,
            quantity=Decimal("9"),
            reason=StockReason("losses", "breakage"),
        )
        session.commit()

        with pytest.raises(InsufficientStockError):
            invoicing.commit(ctx)

        assert session.execute(select(func.count()).select_from(Invoice)).scalar_one() == 0
        assert invoicing.get_request(org_id, request.id).status == "pending"


# =============================================================================
# Manual invoices
# =============================================================================


class TestManualInvoice:
    """Tests for invoices opened without a request."""

    def test_quantity_over_stock_refused(self, invoicing, make_product, make_client, org_id, actor_id):
        make_client()
        product = make_product(stock_level=Decimal("10"))
        ctx = invoicing.start_manual(
            organization_id=org_id, actor_id=actor_id, draft=manual_draft(product, "12"),
        )
        advance_to(invoicing.engine, ctx, IntakeStep.LINE_VERIFICATION)

        with pytest.raises(StepValidationError) as exc_info:
            invoicing.engine.confirm(ctx)

        assert exc_info.value.fields == ("quantity",)

    def test_quantity_edit_clamped_to_stock(
        self, invoicing, make_product, make_client, org_id, actor_id,
    ):
        make_client()
        product = make_product(stock_level=Decimal("10"))
        ctx = invoicing.start_manual(
            organization_id=org_id, actor_id=actor_id, draft=manual_draft(product),
        )
        advance_to(invoicing.engine, ctx, IntakeStep.LINE_ANALYSIS)

        line = invoicing.engine.update_line(ctx, 0, quantity=Decimal("20"))

        assert line.quantity == Decimal("10")

    def test_unlimited_stock_not_capped(self, invoicing, make_product, make_client, org_id, actor_id):
        make_client()
        product = make_product(stock_level=None)
        ctx = invoicing.start_manual(
            organization_id=org_id, actor_id=actor_id, draft=manual_draft(product, "500"),
        )
        drive_to_commit(invoicing.engine, ctx)

        invoice = invoicing.commit(ctx)

        assert invoice.lines[0].quantity == Decimal("500")

    def test_numbers_are_sequential(self, invoicing, make_product, make_client, org_id, actor_id):
        make_client()
        product = make_product()
        numbers = []
        for _ in range(2):
            ctx = invoicing.start_manual(
                organization_id=org_id, actor_id=actor_id, draft=manual_draft(product),
            )
            drive_to_commit(invoicing.engine, ctx)
            numbers.append(invoicing.commit(ctx).invoice_number)

        assert numbers == ["FAC-2025-00001", "FAC-2025-00002"]

    def test_foreign_client_exempt(
        self, invoicing, catalog, session, make_product, org_id, actor_id, captured_logs,
    ):
        catalog.create_counterpart(
            organization_id=org_id,
            actor_id=actor_id,
            role=CounterpartRole.CLIENT,
            draft=CounterpartDraft(
                counterpart_type=CounterpartType.FOREIGN,
                company_name="Kontor GmbH",
                identifier_type="vat_eu",
                identifier_value="DE123456789",
                country="DE",
            ),
        )
        session.commit()
        product = make_product()
        ctx = invoicing.start_manual(
            organization_id=org_id,
            actor_id=actor_id,
            draft=manual_draft(
                product,
                counterpart_type="foreign",
                company_name="Kontor GmbH",
                identifier_type="vat_eu",
                identifier_value="DE123456789",
                country="DE",
            ),
        )
        drive_to_commit(invoicing.engine, ctx)

        invoice = invoicing.commit(ctx)

        assert invoice.total_vat == Decimal("0")
        assert invoice.stamp_duty == Decimal("0")
        assert invoice.net_payable == Decimal("50.000")
        assert invoice.currency == "TND"
        warnings = [r for r in captured_logs() if r["message"] == "vat_rule_pending_confirmation"]
        assert warnings
