"""
Module: intake_kernel.models.counterpart
Responsibility: ORM persistence for counterparts, the other party of a
    document: suppliers on purchases, clients on invoices.  One table holds
    both roles; ``role`` tells them apart.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, domain/, or outer layers.

Invariants enforced:
    - identifier_value is unique per (organization, role)
      (uq_counterpart_identifier).  Several counterparts without an
      identifier (foreign, identifier optional) may coexist.
    - Identity fields (type, names, identifier) are immutable once the
      counterpart is referenced by a committed document; ORM listener in
      db/immutability.py.

Failure modes:
    - IntegrityError on duplicate identifier (checked earlier by the
      catalog service, which raises DuplicateCounterpartError).
    - ImmutabilityViolationError on an identity change of a referenced row.
"""

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from intake_kernel.db.base import OrganizationScoped, TrackedBase


class Counterpart(OrganizationScoped, TrackedBase):
    """
    Supplier or client record of the master catalog.

    Contract:
        Local counterparts carry an identifier and a governorate; foreign
        counterparts carry a country and may omit the identifier.  Either
        company_name or first/last name is present depending on type.
    """

    __tablename__ = "counterparts"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "role", "identifier_value",
            name="uq_counterpart_identifier",
        ),
        Index("idx_counterpart_role", "organization_id", "role"),
    )

    # supplier | client
    role: Mapped[str] = mapped_column(String(20), nullable=False)

    # individual_local | business_local | foreign
    counterpart_type: Mapped[str] = mapped_column(String(30), nullable=False)

    first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    identifier_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    identifier_value: Mapped[str | None] = mapped_column(String(60), nullable=True)

    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    governorate: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def display_name(self) -> str:
        if self.company_name and self.company_name.strip():
            return self.company_name.strip()
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def __repr__(self) -> str:
        return f"<Counterpart {self.role}: {self.display_name} ({self.counterpart_type})>"
