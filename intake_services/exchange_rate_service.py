"""
ExchangeRateService -- the per-organization rate store.

Responsibility:
    Reads the stored rate of a currency pair, resolves the starting rate of
    the currency step (stored, else policy fallback), and upserts a rate
    the user chose to save.

Architecture position:
    Services -- stateful, session-bound.  Flushes, never commits.

Invariants enforced:
    - One row per (organization, from, to); saving overwrites it.
    - Saved rates are strictly positive.

Failure modes:
    - InvalidExchangeRateError / InvalidCurrencyError from validation.
    - IntegrityError on a concurrent first save (handled via savepoint
      rollback and retry).
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from intake_config.schema import CurrencyPolicy
from intake_engines.currency import RateQuote, resolve_rate, validate_currency, validate_rate
from intake_kernel.logging_config import get_logger
from intake_kernel.models.exchange_rate import ExchangeRate
from intake_kernel.services.base import BaseService

logger = get_logger("services.exchange_rate")


class ExchangeRateService(BaseService[ExchangeRate]):
    """Rate store access for one session."""

    def _row(self, organization_id: UUID, from_currency: str, to_currency: str, lock: bool = False):
        stmt = select(ExchangeRate).where(
            ExchangeRate.organization_id == organization_id,
            ExchangeRate.from_currency == from_currency,
            ExchangeRate.to_currency == to_currency,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def get_rate(
        self,
        organization_id: UUID,
        from_currency: str,
        to_currency: str,
    ) -> Decimal | None:
        row = self._row(
            organization_id,
            validate_currency(from_currency),
            validate_currency(to_currency),
        )
        return row.rate if row is not None else None

    def quote(
        self,
        organization_id: UUID,
        currency: str,
        policy: CurrencyPolicy,
    ) -> RateQuote:
        """Starting rate for ``currency`` into the settlement currency."""
        code = validate_currency(currency)
        stored = None
        if code != policy.settlement_currency:
            stored = self.get_rate(organization_id, code, policy.settlement_currency)
        return resolve_rate(
            currency=code,
            settlement_currency=policy.settlement_currency,
            stored_rate=stored,
            fallback_rates=dict(policy.fallback_rates),
            unknown_fallback_rate=policy.unknown_fallback_rate,
        )

    def save_rate(
        self,
        *,
        organization_id: UUID,
        actor_id: UUID,
        from_currency: str,
        to_currency: str,
        rate: Decimal,
    ) -> ExchangeRate:
        """Insert or overwrite the stored rate of a pair."""
        from_currency = validate_currency(from_currency)
        to_currency = validate_currency(to_currency)
        rate = validate_rate(rate, from_currency)

        row = self._row(organization_id, from_currency, to_currency, lock=True)
        if row is None:
            savepoint = self.session.begin_nested()
            try:
                row = ExchangeRate(
                    organization_id=organization_id,
                    from_currency=from_currency,
                    to_currency=to_currency,
                    rate=rate,
                    created_by_id=actor_id,
                )
                self.session.add(row)
                self.session.flush()
                savepoint.commit()
            except IntegrityError:
                logger.debug(
                    "exchange_rate_race_retry",
                    extra={"from_currency": from_currency, "to_currency": to_currency},
                )
                savepoint.rollback()
                row = self._row(organization_id, from_currency, to_currency, lock=True)
                if row is None:
                    raise
                row.rate = rate
                row.updated_by_id = actor_id
                self.session.flush()
        else:
            row.rate = rate
            row.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "exchange_rate_saved",
            extra={
                "from_currency": from_currency,
                "to_currency": to_currency,
                "rate": str(rate),
            },
        )
        return row
