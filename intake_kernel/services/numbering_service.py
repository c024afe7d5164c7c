"""
DocumentNumberService -- human-readable document numbers via locked counter rows.

Responsibility:
    Allocates ``{PREFIX}-{YEAR}-{NNNNN}`` numbers for invoices (``FAC``) and
    payment requests (``DEM``), one counter per (organization, series,
    year).

Invariants enforced:
    - Numbers are strictly increasing within a series and year.  The
      MAX(number) + 1 pattern is never used; the locked counter row is
      the only source of truth.
    - Allocation is transactional: a rolled-back caller returns its number.

Failure modes:
    - IntegrityError on concurrent first use of a counter (handled via
      savepoint rollback and retry).
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from intake_kernel.logging_config import get_logger
from intake_kernel.models.document_counter import DocumentCounter
from intake_kernel.services.base import BaseService

logger = get_logger("services.numbering")


def format_document_number(prefix: str, year: int, value: int, width: int = 5) -> str:
    return f"{prefix}-{year}-{value:0{width}d}"


class DocumentNumberService(BaseService[DocumentCounter]):
    """
    Allocate the next number of a document series.

    Usage:
        number = DocumentNumberService(session).next_number(org_id, "FAC", 2025)
        # "FAC-2025-00001"; consumed only when the caller commits
    """

    def _locked_counter(self, organization_id: UUID, series: str, year: int):
        return self.session.execute(
            select(DocumentCounter)
            .where(
                DocumentCounter.organization_id == organization_id,
                DocumentCounter.series == series,
                DocumentCounter.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, organization_id: UUID, series: str, year: int) -> int:
        """Lock (or create) the counter row and return its incremented value."""
        counter = self._locked_counter(organization_id, series, year)

        if counter is None:
            # First number of the year; another session may race us to the insert
            savepoint = self.session.begin_nested()
            try:
                counter = DocumentCounter(
                    organization_id=organization_id,
                    series=series,
                    year=year,
                    current_value=1,
                )
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                logger.debug(
                    "document_number_allocated",
                    extra={"series": series, "year": year, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "document_counter_race_retry",
                    extra={"series": series, "year": year},
                )
                savepoint.rollback()
                counter = self._locked_counter(organization_id, series, year)
                if counter is None:
                    raise

        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "document_number_allocated",
            extra={"series": series, "year": year, "value": counter.current_value},
        )
        return counter.current_value

    def next_number(
        self,
        organization_id: UUID,
        prefix: str,
        year: int,
        width: int = 5,
    ) -> str:
        value = self.next_value(organization_id, prefix, year)
        return format_document_number(prefix, year, value, width)

    def current_value(self, organization_id: UUID, series: str, year: int) -> int | None:
        counter = self.session.execute(
            select(DocumentCounter).where(
                DocumentCounter.organization_id == organization_id,
                DocumentCounter.series == series,
                DocumentCounter.year == year,
            )
        ).scalar_one_or_none()
        return counter.current_value if counter else None
