"""
Tests for ExchangeRateService.

Covers:
- Stored rate lookup and upsert (one row per pair)
- Starting quote: identity, stored, policy fallback, default
- Rate and currency validation
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from intake_engines.currency import RateSource
from intake_kernel.exceptions import InvalidCurrencyError, InvalidExchangeRateError
from intake_services.exchange_rate_service import ExchangeRateService


@pytest.fixture
def rates(session):
    return ExchangeRateService(session)


@pytest.fixture
def save(rates, session, org_id, actor_id):
    def _save(code, rate, to_currency="TND"):
        row = rates.save_rate(
            organization_id=org_id,
            actor_id=actor_id,
            from_currency=code,
            to_currency=to_currency,
            rate=Decimal(rate),
        )
        session.commit()
        return row
    return _save


class TestStore:
    """Tests for get_rate and save_rate."""

    def test_missing_pair(self, rates, org_id):
        assert rates.get_rate(org_id, "EUR", "TND") is None

    def test_save_and_read(self, rates, save, org_id):
        save("eur", "3.45")

        assert rates.get_rate(org_id, "EUR", "tnd") == Decimal("3.45")

    def test_save_overwrites(self, rates, save, org_id):
        first = save("EUR", "3.45")
        second = save("EUR", "3.5")

        assert second.id == first.id
        assert rates.get_rate(org_id, "EUR", "TND") == Decimal("3.5")

    def test_scoped_to_organization(self, rates, save):
        save("EUR", "3.45")

        assert rates.get_rate(uuid4(), "EUR", "TND") is None

    @pytest.mark.parametrize("rate", [Decimal("0"), Decimal("-1"), None, 3.4])
    def test_invalid_rate(self, rates, org_id, actor_id, rate):
        with pytest.raises(InvalidExchangeRateError):
            rates.save_rate(
                organization_id=org_id,
                actor_id=actor_id,
                from_currency="EUR",
                to_currency="TND",
                rate=rate,
            )

    def test_invalid_currency(self, rates, org_id):
        with pytest.raises(InvalidCurrencyError):
            rates.get_rate(org_id, "EURO", "TND")


class TestQuote:
    """Tests for the starting rate of the currency step."""

    def test_settlement_currency_is_identity(self, rates, org_id, policy):
        quote = rates.quote(org_id, "TND", policy.currency)

        assert quote.rate == Decimal("1")
        assert quote.source is RateSource.IDENTITY

    def test_stored_rate_preferred(self, rates, save, org_id, policy):
        save("EUR", "3.45")

        quote = rates.quote(org_id, "EUR", policy.currency)

        assert quote.rate == Decimal("3.45")
        assert quote.source is RateSource.STORED

    def test_policy_fallback(self, rates, org_id, policy):
        quote = rates.quote(org_id, "EUR", policy.currency)

        assert quote.rate == Decimal("3.40")
        assert quote.source is RateSource.FALLBACK

    def test_unknown_currency_default(self, rates, org_id, policy):
        quote = rates.quote(org_id, "SEK", policy.currency)

        assert quote.rate == Decimal("1")
        assert quote.source is RateSource.DEFAULT
        assert quote.to_currency == "TND"
