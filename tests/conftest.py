"""
Pytest fixtures for the intake reconciliation test suite.

Provides:
- In-memory SQLite database sessions (one fresh schema per test)
- Policy, clock and identity fixtures
- Catalog factories (suppliers, clients, products with stock)
- An end-to-end purchase commit (drivers in tests/workflow_support.py)
"""

import json
import logging
from collections.abc import Callable
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from intake_config import clear_policy_cache, get_active_policy
from intake_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from intake_kernel.domain.amounts import SalePrice
from intake_kernel.domain.clock import DeterministicClock
from intake_kernel.domain.counterpart import CounterpartDraft, CounterpartRole, CounterpartType
from intake_kernel.domain.product import ProductDraft
from intake_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from intake_modules.invoicing.service import InvoicingService
from intake_modules.payments.service import PaymentsService
from intake_modules.purchasing.service import PurchasingService
from intake_services.catalog_service import CatalogService
from intake_services.stock_reconciler import StockReconciler
from intake_services.workflow_engine import IntakeWorkflowEngine
from tests.workflow_support import drive_to_commit, local_purchase_payload


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture intake_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, purchasing):
            purchasing.commit(ctx)
            logs = captured_logs()
            assert any(r["message"] == "document_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("intake_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine():
    """Fresh in-memory database with every table and immutability listener."""
    engine = init_engine_from_url("sqlite://")
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine):
    s = get_session()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Identity, clock and policy
# =============================================================================


@pytest.fixture
def org_id():
    return uuid4()


@pytest.fixture
def actor_id():
    return uuid4()


@pytest.fixture
def clock():
    """Fixed at 2025-03-15 09:00 UTC."""
    return DeterministicClock()


@pytest.fixture
def policy():
    clear_policy_cache()
    yield get_active_policy()
    clear_policy_cache()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def catalog(session):
    return CatalogService(session)


@pytest.fixture
def stock(session, policy):
    return StockReconciler(session, policy.stock)


@pytest.fixture
def workflow_engine(session, policy, clock):
    return IntakeWorkflowEngine(session, policy, clock)


@pytest.fixture
def purchasing(session, policy, clock):
    return PurchasingService(session, policy, clock=clock)


@pytest.fixture
def invoicing(session, policy, clock):
    return InvoicingService(session, policy, clock=clock)


@pytest.fixture
def payments(session, policy, clock):
    return PaymentsService(session, policy, clock=clock)


# =============================================================================
# Catalog factories
# =============================================================================


@pytest.fixture
def make_supplier(session, catalog, org_id, actor_id) -> Callable:
    """Create and commit a supplier; returns the Counterpart row."""

    def _make(
        company_name: str = "Société Alpha",
        identifier_value: str = "1234567/A",
        counterpart_type: CounterpartType = CounterpartType.BUSINESS_LOCAL,
        **fields,
    ):
        draft_fields = {
            "company_name": company_name,
            "identifier_type": "tax_id",
            "identifier_value": identifier_value,
            "governorate": "Tunis",
        }
        if counterpart_type is CounterpartType.FOREIGN:
            draft_fields.update(governorate=None, country="DE")
        draft_fields.update(fields)
        row = catalog.create_counterpart(
            organization_id=org_id,
            actor_id=actor_id,
            role=CounterpartRole.SUPPLIER,
            draft=CounterpartDraft(counterpart_type=counterpart_type, **draft_fields),
        )
        session.commit()
        return row

    return _make


@pytest.fixture
def make_client(session, catalog, org_id, actor_id) -> Callable:
    """Create and commit a local individual client; returns the Counterpart row."""

    def _make(
        first_name: str = "Amira",
        last_name: str = "Ben Salah",
        identifier_value: str = "01234567",
        **fields,
    ):
        draft_fields = {
            "first_name": first_name,
            "last_name": last_name,
            "identifier_type": "cin",
            "identifier_value": identifier_value,
            "governorate": "Sfax",
        }
        draft_fields.update(fields)
        row = catalog.create_counterpart(
            organization_id=org_id,
            actor_id=actor_id,
            role=CounterpartRole.CLIENT,
            draft=CounterpartDraft(counterpart_type=CounterpartType.INDIVIDUAL_LOCAL, **draft_fields),
        )
        session.commit()
        return row

    return _make


@pytest.fixture
def make_product(session, catalog, stock, org_id, actor_id) -> Callable:
    """
    Create and commit a product with a sale price and an opening stock.

    ``stock_level=None`` creates an unlimited-stock product.
    """

    def _make(
        name: str = "Câble HDMI",
        reference: str | None = "HDMI-2M",
        ean: str | None = None,
        stock_level: Decimal | None = Decimal("10"),
        sale_vat_rate: Decimal = Decimal("19"),
        sale_price_ht: Decimal = Decimal("50.000"),
        allow_out_of_stock_sale: bool = False,
        max_discount: Decimal = Decimal("100"),
    ):
        unlimited = stock_level is None
        row = catalog.create_product(
            organization_id=org_id,
            actor_id=actor_id,
            draft=ProductDraft(
                name=name,
                reference=reference,
                ean=ean,
                unit="piece",
                unlimited_stock=unlimited,
                allow_out_of_stock_sale=allow_out_of_stock_sale,
                max_discount=max_discount,
            ),
            sale_price=SalePrice(
                vat_rate=sale_vat_rate,
                price_ht=sale_price_ht,
                price_ttc=(sale_price_ht * (1 + sale_vat_rate / 100)).quantize(Decimal("0.001")),
            ),
        )
        if not unlimited:
            stock.record_opening_stock(
                organization_id=org_id,
                actor_id=actor_id,
                product_id=row.id,
                quantity=stock_level,
            )
        session.commit()
        return row

    return _make


# =============================================================================
# Workflow drivers
# =============================================================================


@pytest.fixture
def commit_purchase(purchasing, org_id, actor_id) -> Callable:
    """Run a purchase intake end to end and return its PurchaseDocumentSummary."""

    def _commit(payload: dict | None = None):
        ctx = purchasing.start_intake(
            organization_id=org_id,
            actor_id=actor_id,
            extraction=payload if payload is not None else local_purchase_payload(),
        )
        drive_to_commit(purchasing.engine, ctx)
        return purchasing.commit(ctx)

    return _commit
