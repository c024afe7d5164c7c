"""
Shared payloads and workflow drivers for intake tests.

Imported by test modules as ``tests.workflow_support``; fixtures live in
``tests/conftest.py``.
"""

from decimal import Decimal

from intake_engines.pricing import SalePriceField
from intake_kernel.domain.context import IntakeStep, WorkflowContext
from intake_kernel.domain.product import CreateNew
from intake_services.workflow_engine import IntakeWorkflowEngine


# =============================================================================
# Extraction payloads
# =============================================================================


def local_purchase_payload(**overrides) -> dict:
    """
    Supplier invoice from a local business, two lines, no extracted amounts.

    Lines: 10 x 5.000 @19% and 4 x 12.500 @7% with 10% discount.
    Totals: HT 95.000, VAT 12.650, TTC 107.650, stamp 1.000, net 108.650.
    """
    payload = {
        "invoice_number": "F-2025-0042",
        "invoice_date": "2025-03-10",
        "supplier": {
            "name": "Société Alpha",
            "supplier_type": "business_local",
            "company_name": "Société Alpha",
            "identifier_type": "MF",
            "identifier_value": "1234567/A",
            "governorate": "Tunis",
            "email": "contact@alpha.tn",
        },
        "products": [
            {
                "name": "Câble HDMI",
                "reference": "HDMI-2M",
                "quantity": "10",
                "unit_price_ht": "5.000",
                "vat_rate": "19",
            },
            {
                "name": "Souris optique",
                "reference": "MOUSE-01",
                "quantity": "4",
                "unit_price_ht": "12.500",
                "vat_rate": "7",
                "discount_percent": "10",
            },
        ],
        "totals": {"currency": "tnd"},
    }
    payload.update(overrides)
    return payload


def foreign_purchase_payload(**overrides) -> dict:
    """Supplier invoice in EUR from a German supplier: 3 x 100.00, exempt."""
    payload = {
        "invoice_number": "INV-7781",
        "invoice_date": "2025-03-01",
        "supplier": {
            "name": "Kontor GmbH",
            "supplier_type": "foreign",
            "company_name": "Kontor GmbH",
            "identifier_type": "vat_eu",
            "identifier_value": "DE123456789",
            "country": "DE",
        },
        "products": [
            {
                "name": "Lecteur code-barres",
                "reference": "SCAN-9",
                "quantity": "3",
                "unit_price_ht": "100.00",
                "vat_rate": "19",
            },
        ],
        "totals": {"currency": "EUR"},
    }
    payload.update(overrides)
    return payload


# =============================================================================
# Workflow drivers
# =============================================================================


def advance_to(engine: IntakeWorkflowEngine, ctx: WorkflowContext, step: IntakeStep) -> None:
    """Confirm steps until ``step`` is current."""
    while ctx.current_step is not step:
        engine.confirm(ctx)


def price_new_products(
    engine: IntakeWorkflowEngine,
    ctx: WorkflowContext,
    price_ht: Decimal = Decimal("20.000"),
    vat_rate: Decimal = Decimal("19"),
) -> None:
    """Give every create-new line the sale price block its creation requires."""
    for line in ctx.lines:
        if isinstance(line.decision, CreateNew) and not line.sale_price.is_set:
            engine.set_sale_price(ctx, line.index, SalePriceField.VAT_RATE, vat_rate)
            engine.set_sale_price(ctx, line.index, SalePriceField.PRICE_HT, price_ht)


def drive_to_commit(engine: IntakeWorkflowEngine, ctx: WorkflowContext) -> None:
    """Walk a context through every step, pricing new products on the way."""
    advance_to(engine, ctx, IntakeStep.LINE_DETAIL_COMPLETION)
    price_new_products(engine, ctx)
    advance_to(engine, ctx, IntakeStep.COMMIT)
