"""
Module: intake_kernel.models.exchange_rate
Responsibility: ORM persistence for the per-organization exchange rate
    store, keyed by (organization, from_currency, to_currency).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (organization, from, to) (uq_exchange_rate_pair); saving
      a rate upserts that row.
    - rate > 0 (ck_exchange_rate_positive).

Non-goals:
    - No rate history.  Documents and payments copy the rate they used, so
      overwriting the stored rate never alters a committed amount.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from intake_kernel.db.base import OrganizationScoped, TrackedBase


class ExchangeRate(OrganizationScoped, TrackedBase):
    """Latest saved conversion factor: from_amount * rate = to_amount."""

    __tablename__ = "exchange_rates"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "from_currency", "to_currency",
            name="uq_exchange_rate_pair",
        ),
        CheckConstraint("rate > 0", name="ck_exchange_rate_positive"),
    )

    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(38, 12), nullable=False)

    def __repr__(self) -> str:
        return f"<ExchangeRate {self.from_currency}/{self.to_currency} = {self.rate}>"
