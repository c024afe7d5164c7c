"""
Tests for CatalogService.

Covers:
- Counterpart creation, validation and identifier conflicts
- Active-only counterpart snapshots per role
- Product creation, uniqueness across archived products
- Product search and lookups
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from intake_kernel.domain.amounts import SalePrice
from intake_kernel.domain.counterpart import CounterpartDraft, CounterpartRole, CounterpartType
from intake_kernel.domain.product import ProductDraft
from intake_kernel.exceptions import (
    CounterpartNotFoundError,
    DuplicateCounterpartError,
    DuplicateProductError,
    ProductNotFoundError,
    StepValidationError,
)


def _draft(name, reference=None, ean=None, unlimited=False):
    return ProductDraft(
        name=name, reference=reference, ean=ean, unit="piece", unlimited_stock=unlimited,
    )


# =============================================================================
# Counterparts
# =============================================================================


class TestCounterparts:
    """Tests for counterpart creation and snapshots."""

    def test_create_normalizes_draft(self, catalog, org_id, actor_id):
        row = catalog.create_counterpart(
            organization_id=org_id,
            actor_id=actor_id,
            role=CounterpartRole.SUPPLIER,
            draft=CounterpartDraft(
                counterpart_type=CounterpartType.BUSINESS_LOCAL,
                company_name="Société Alpha",
                identifier_type="MF",
                identifier_value="1234567/A",
                governorate="Tunis",
            ),
        )

        assert row.identifier_type == "tax_id"
        assert row.country == "Tunisie"
        assert row.role == "supplier"
        assert row.created_by_id == actor_id

    def test_reserved_id_kept(self, catalog, org_id, actor_id):
        reserved = uuid4()

        row = catalog.create_counterpart(
            organization_id=org_id,
            actor_id=actor_id,
            role=CounterpartRole.CLIENT,
            draft=CounterpartDraft(
                counterpart_type=CounterpartType.FOREIGN, company_name="Kontor GmbH", country="DE",
            ),
            counterpart_id=reserved,
        )

        assert row.id == reserved

    def test_invalid_draft_rejected(self, catalog, org_id, actor_id):
        with pytest.raises(StepValidationError):
            catalog.create_counterpart(
                organization_id=org_id,
                actor_id=actor_id,
                role=CounterpartRole.SUPPLIER,
                draft=CounterpartDraft(counterpart_type=CounterpartType.BUSINESS_LOCAL),
            )

    def test_duplicate_identifier_rejected(self, catalog, make_supplier, org_id, actor_id):
        existing = make_supplier()

        with pytest.raises(DuplicateCounterpartError) as exc_info:
            catalog.create_counterpart(
                organization_id=org_id,
                actor_id=actor_id,
                role=CounterpartRole.SUPPLIER,
                draft=CounterpartDraft(
                    counterpart_type=CounterpartType.BUSINESS_LOCAL,
                    company_name="Alpha bis",
                    identifier_value="1234567/a",
                    governorate="Tunis",
                ),
            )

        assert exc_info.value.field == "identifier_value"
        assert exc_info.value.existing_id == existing.id

    def test_same_identifier_allowed_across_roles(self, catalog, make_supplier, org_id, actor_id):
        """A supplier and a client may share an identifier."""
        make_supplier()

        row = catalog.create_counterpart(
            organization_id=org_id,
            actor_id=actor_id,
            role=CounterpartRole.CLIENT,
            draft=CounterpartDraft(
                counterpart_type=CounterpartType.BUSINESS_LOCAL,
                company_name="Société Alpha",
                identifier_value="1234567/A",
                governorate="Tunis",
            ),
        )

        assert row.role == "client"

    def test_records_active_and_role_scoped(self, session, catalog, make_supplier, make_client, org_id):
        alpha = make_supplier()
        beta = make_supplier(company_name="Beta Import", identifier_value="7654321/B")
        make_client()
        beta.is_active = False
        session.flush()

        records = catalog.counterpart_records(org_id, CounterpartRole.SUPPLIER)

        assert [r.id for r in records] == [alpha.id]

    def test_records_scoped_to_organization(self, catalog, make_supplier):
        make_supplier()

        assert catalog.counterpart_records(uuid4(), CounterpartRole.SUPPLIER) == ()

    def test_get_counterpart_not_found(self, catalog, org_id):
        with pytest.raises(CounterpartNotFoundError):
            catalog.get_counterpart(org_id, uuid4())


# =============================================================================
# Products
# =============================================================================


class TestProducts:
    """Tests for product creation and lookups."""

    def test_create_with_sale_price(self, catalog, org_id, actor_id):
        row = catalog.create_product(
            organization_id=org_id,
            actor_id=actor_id,
            draft=_draft(" Câble HDMI ", "HDMI-2M", "6191234567890"),
            purchase_price_ht=Decimal("5"),
            purchase_vat_rate=Decimal("19"),
            sale_price=SalePrice(Decimal("19"), Decimal("8"), Decimal("9.52"), Decimal("60")),
        )

        assert row.name == "Câble HDMI"
        assert row.current_stock == Decimal("0")
        assert row.sale_price_ttc == Decimal("9.52")
        assert row.tracks_stock

    def test_unlimited_has_no_stock_level(self, catalog, org_id, actor_id):
        row = catalog.create_product(
            organization_id=org_id, actor_id=actor_id,
            draft=_draft("Installation", unlimited=True),
        )

        assert row.current_stock is None
        assert not row.tracks_stock

    @pytest.mark.parametrize("field,draft", [
        ("name", _draft("câble hdmi", "OTHER")),
        ("reference", _draft("Autre", "hdmi-2m")),
        ("ean", _draft("Autre", "OTHER", "6191234567890")),
    ])
    def test_duplicate_rejected(self, catalog, make_product, org_id, actor_id, field, draft):
        existing = make_product(ean="6191234567890")

        with pytest.raises(DuplicateProductError) as exc_info:
            catalog.create_product(
                organization_id=org_id, actor_id=actor_id, draft=draft, line_index=4,
            )

        assert exc_info.value.field == field
        assert exc_info.value.existing_id == existing.id
        assert exc_info.value.line_index == 4

    def test_archived_product_still_conflicts(self, session, catalog, make_product, org_id, actor_id):
        existing = make_product()
        existing.status = "archived"
        session.flush()

        with pytest.raises(DuplicateProductError):
            catalog.create_product(
                organization_id=org_id, actor_id=actor_id, draft=_draft("Câble HDMI"),
            )
        assert catalog.product_records(org_id) == ()
        assert len(catalog.product_records(org_id, include_archived=True)) == 1

    def test_search(self, catalog, make_product, org_id):
        make_product()
        make_product(name="Souris optique", reference="MOUSE-01")

        results = catalog.search_products(org_id, "hdmi")

        assert [r.product.name for r in results] == ["Câble HDMI"]

    def test_products_by_id(self, catalog, make_product, org_id):
        row = make_product()

        records = catalog.products_by_id(org_id, [row.id, uuid4()])

        assert list(records) == [row.id]
        assert records[row.id].current_stock == Decimal("10")

    def test_products_by_id_empty(self, catalog, org_id):
        assert catalog.products_by_id(org_id, []) == {}

    def test_get_product_not_found(self, catalog, org_id):
        with pytest.raises(ProductNotFoundError):
            catalog.get_product(org_id, uuid4())
