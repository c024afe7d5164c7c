"""
Module: intake_kernel.models.document_counter
Responsibility: Counter rows backing human-readable document numbers
    (``FAC-2025-00001``, ``DEM-2025-00001``).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (organization, series, year) (uq_document_counter).
    - The row is the only source of the next number; it is read under a
      row lock and incremented, never derived from MAX(number) + 1.
"""

from sqlalchemy import BigInteger, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from intake_kernel.db.base import Base, OrganizationScoped


class DocumentCounter(OrganizationScoped, Base):
    """Last number handed out for one document series in one year."""

    __tablename__ = "document_counters"

    __table_args__ = (
        UniqueConstraint("organization_id", "series", "year", name="uq_document_counter"),
    )

    series: Mapped[str] = mapped_column(String(10), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
