"""
CatalogService -- master catalog reads and entity creation.

Responsibility:
    Loads counterpart and product snapshots for the EntityMatcher, resolves
    ids picked by the user, and creates counterparts and products after
    checking every uniqueness rule synchronously.

Architecture position:
    Services -- stateful, session-bound.  Flushes, never commits.

Invariants enforced:
    - A new entity never silently merges with an existing one: a duplicate
      name, reference, EAN or identifier raises a ConflictError naming the
      field and the existing id.
    - Counterpart drafts pass full validation before insert.
    - Archived products and inactive counterparts are invisible to
      matching and search.

Failure modes:
    - DuplicateProductError / DuplicateCounterpartError.
    - CounterpartNotFoundError / ProductNotFoundError.
    - StepValidationError from counterpart draft validation.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from intake_engines.identifiers import validate_counterpart_draft
from intake_engines.matching import ProductConflict, find_product_conflicts, search_products
from intake_kernel.db.types import ZERO
from intake_kernel.domain.amounts import SalePrice
from intake_kernel.domain.counterpart import (
    CounterpartDraft,
    CounterpartRecord,
    CounterpartRole,
    CounterpartType,
)
from intake_kernel.domain.product import (
    ProductDraft,
    ProductRecord,
    ProductStatus,
    ProductType,
    RankedProduct,
)
from intake_kernel.exceptions import (
    CounterpartNotFoundError,
    DuplicateCounterpartError,
    DuplicateProductError,
    ProductNotFoundError,
)
from intake_kernel.logging_config import get_logger
from intake_kernel.models.counterpart import Counterpart
from intake_kernel.models.product import Product
from intake_kernel.services.base import BaseService

logger = get_logger("services.catalog")


def counterpart_record(row: Counterpart) -> CounterpartRecord:
    return CounterpartRecord(
        id=row.id,
        role=CounterpartRole(row.role),
        counterpart_type=CounterpartType(row.counterpart_type),
        first_name=row.first_name,
        last_name=row.last_name,
        company_name=row.company_name,
        identifier_type=row.identifier_type,
        identifier_value=row.identifier_value,
        country=row.country,
        governorate=row.governorate,
    )


def product_record(row: Product) -> ProductRecord:
    return ProductRecord(
        id=row.id,
        name=row.name,
        reference=row.reference,
        ean=row.ean,
        current_stock=row.current_stock,
        reserved_stock=row.reserved_stock or ZERO,
        unlimited_stock=row.unlimited_stock,
        allow_out_of_stock_sale=row.allow_out_of_stock_sale,
        status=ProductStatus(row.status),
    )


class CatalogService(BaseService[Product]):
    """
    Master catalog access for one session.

    Usage:
        catalog = CatalogService(session)
        suppliers = catalog.counterpart_records(org_id, CounterpartRole.SUPPLIER)
        result = match_counterpart(extracted=..., catalog=suppliers)
    """

    # ------------------------------------------------------------------
    # Counterparts
    # ------------------------------------------------------------------

    def counterpart_records(
        self,
        organization_id: UUID,
        role: CounterpartRole,
    ) -> tuple[CounterpartRecord, ...]:
        """Active counterparts of one role, in a stable order."""
        rows = self.session.execute(
            select(Counterpart)
            .where(
                Counterpart.organization_id == organization_id,
                Counterpart.role == CounterpartRole(role).value,
                Counterpart.is_active.is_(True),
            )
            .order_by(Counterpart.id)
        ).scalars().all()
        return tuple(counterpart_record(r) for r in rows)

    def get_counterpart(self, organization_id: UUID, counterpart_id: UUID) -> Counterpart:
        row = self.session.execute(
            select(Counterpart).where(
                Counterpart.organization_id == organization_id,
                Counterpart.id == counterpart_id,
            )
        ).scalar_one_or_none()
        if row is None:
            raise CounterpartNotFoundError(counterpart_id)
        return row

    def find_counterpart_by_identifier(
        self,
        organization_id: UUID,
        role: CounterpartRole,
        identifier_value: str,
    ) -> Counterpart | None:
        return self.session.execute(
            select(Counterpart).where(
                Counterpart.organization_id == organization_id,
                Counterpart.role == CounterpartRole(role).value,
                func.lower(Counterpart.identifier_value) == identifier_value.strip().lower(),
            )
        ).scalars().first()

    def check_counterpart_conflict(
        self,
        organization_id: UUID,
        role: CounterpartRole,
        draft: CounterpartDraft,
    ) -> None:
        """Raise DuplicateCounterpartError when the identifier is already taken."""
        if not draft.identifier_value:
            return
        existing = self.find_counterpart_by_identifier(
            organization_id, role, draft.identifier_value,
        )
        if existing is not None:
            raise DuplicateCounterpartError(
                "identifier_value", draft.identifier_value, existing.id,
            )

    def create_counterpart(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        role: CounterpartRole,
        draft: CounterpartDraft,
        counterpart_id: UUID | None = None,
    ) -> Counterpart:
        """Validate and insert a counterpart; ``counterpart_id`` may be reserved beforehand."""
        draft = validate_counterpart_draft(draft)
        self.check_counterpart_conflict(organization_id, role, draft)

        row = Counterpart(
            organization_id=organization_id,
            role=CounterpartRole(role).value,
            counterpart_type=CounterpartType(draft.counterpart_type).value,
            first_name=draft.first_name,
            last_name=draft.last_name,
            company_name=draft.company_name,
            identifier_type=draft.identifier_type,
            identifier_value=draft.identifier_value,
            country=draft.country,
            governorate=draft.governorate,
            address=draft.address,
            phone=draft.phone,
            email=draft.email,
            created_by_id=actor_id,
        )
        if counterpart_id is not None:
            row.id = counterpart_id
        self.session.add(row)
        self.session.flush()

        logger.info(
            "counterpart_created",
            extra={
                "counterpart_id": str(row.id),
                "role": row.role,
                "counterpart_type": row.counterpart_type,
            },
        )
        return row

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def product_records(
        self,
        organization_id: UUID,
        include_archived: bool = False,
    ) -> tuple[ProductRecord, ...]:
        stmt = select(Product).where(Product.organization_id == organization_id)
        if not include_archived:
            stmt = stmt.where(Product.status == ProductStatus.ACTIVE.value)
        rows = self.session.execute(stmt.order_by(Product.id)).scalars().all()
        return tuple(product_record(r) for r in rows)

    def get_product(self, organization_id: UUID, product_id: UUID) -> Product:
        row = self.session.execute(
            select(Product).where(
                Product.organization_id == organization_id,
                Product.id == product_id,
            )
        ).scalar_one_or_none()
        if row is None:
            raise ProductNotFoundError(product_id)
        return row

    def products_by_id(
        self,
        organization_id: UUID,
        product_ids: list[UUID],
    ) -> dict[UUID, ProductRecord]:
        if not product_ids:
            return {}
        rows = self.session.execute(
            select(Product).where(
                Product.organization_id == organization_id,
                Product.id.in_(product_ids),
            )
        ).scalars().all()
        return {r.id: product_record(r) for r in rows}

    def search_products(self, organization_id: UUID, query: str) -> tuple[RankedProduct, ...]:
        return search_products(query, self.product_records(organization_id))

    def product_conflicts(
        self,
        organization_id: UUID,
        name: str,
        reference: str | None,
        ean: str | None,
        exclude_id: UUID | None = None,
    ) -> tuple[ProductConflict, ...]:
        """Conflicts against every product, archived ones included."""
        return find_product_conflicts(
            name=name,
            reference=reference,
            ean=ean,
            catalog=self.product_records(organization_id, include_archived=True),
            exclude_id=exclude_id,
        )

    def create_product(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        draft: ProductDraft,
        product_id: UUID | None = None,
        purchase_price_ht: Decimal | None = None,
        purchase_vat_rate: Decimal | None = None,
        sale_price: SalePrice = SalePrice(),
        line_index: int | None = None,
    ) -> Product:
        """
        Insert a product with zero stock.

        Opening stock is recorded afterwards by the StockReconciler so the
        ledger holds the entry that explains it.  Products with unlimited
        stock get no stock level at all.
        """
        conflicts = self.product_conflicts(
            organization_id, draft.name, draft.reference, draft.ean,
        )
        if conflicts:
            first = conflicts[0]
            raise DuplicateProductError(first.field, first.value, first.existing_id, line_index)

        row = Product(
            organization_id=organization_id,
            name=draft.name.strip(),
            reference=draft.reference.strip() if draft.reference else None,
            ean=draft.ean.strip() if draft.ean else None,
            unit=draft.unit,
            product_type=ProductType(draft.product_type).value,
            status=ProductStatus.ACTIVE.value,
            purchase_year=draft.purchase_year,
            purchase_price_ht=purchase_price_ht,
            purchase_vat_rate=purchase_vat_rate,
            sale_vat_rate=sale_price.vat_rate,
            sale_price_ht=sale_price.price_ht,
            sale_price_ttc=sale_price.price_ttc,
            gain_rate=sale_price.gain_rate,
            max_discount=draft.max_discount,
            current_stock=None if draft.unlimited_stock else ZERO,
            reserved_stock=ZERO,
            unlimited_stock=draft.unlimited_stock,
            allow_out_of_stock_sale=draft.allow_out_of_stock_sale,
            created_by_id=actor_id,
        )
        if product_id is not None:
            row.id = product_id
        self.session.add(row)
        self.session.flush()

        logger.info(
            "product_created",
            extra={
                "product_id": str(row.id),
                "reference": row.reference,
                "unlimited_stock": row.unlimited_stock,
            },
        )
        return row
