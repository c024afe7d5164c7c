"""
Intake policy schema.

Frozen dataclasses the YAML policy pack is parsed into.  Values are
declarative data only; the engines and services interpret them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from intake_kernel.domain.documents import DocumentKind
from intake_kernel.domain.product import StockReason

LOCAL = "local"
FOREIGN = "foreign"


# ---------------------------------------------------------------------------
# VAT
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VatPolicyRule:
    """VAT treatment of one (document kind, counterpart locality) pair.

    ``exempt`` forces line VAT and stamp duty to zero.  ``default_rate`` is
    the rate proposed for lines (and for the sale price block) when none
    was extracted.
    """

    document_kind: DocumentKind
    locality: str
    exempt: bool
    default_rate: Decimal
    pending_confirmation: bool = False
    note: str | None = None


@dataclass(frozen=True)
class VatPolicy:
    rates: tuple[Decimal, ...]
    default_rate: Decimal
    rules: tuple[VatPolicyRule, ...]

    def rule_for(self, document_kind: DocumentKind, foreign: bool) -> VatPolicyRule:
        locality = FOREIGN if foreign else LOCAL
        for rule in self.rules:
            if rule.document_kind == document_kind and rule.locality == locality:
                return rule
        raise KeyError(f"No VAT rule for {document_kind.value}/{locality}")

    def is_allowed_rate(self, rate: Decimal) -> bool:
        return any(rate == r for r in self.rates)


# ---------------------------------------------------------------------------
# Stamp duty, currency, stock, numbering, references
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StampDutyPolicy:
    """Flat per-document fee; local counterparts only."""

    enabled: bool
    amount: Decimal


@dataclass(frozen=True)
class CurrencyPolicy:
    settlement_currency: str
    default_foreign_currency: str
    fallback_rates: tuple[tuple[str, Decimal], ...]
    unknown_fallback_rate: Decimal = Decimal("1")

    def fallback_rate(self, currency: str) -> Decimal:
        code = currency.upper()
        if code == self.settlement_currency:
            return Decimal("1")
        for known, rate in self.fallback_rates:
            if known == code:
                return rate
        return self.unknown_fallback_rate


@dataclass(frozen=True)
class StockReasonPolicy:
    """Reason classification written on each ledger entry the pipeline creates."""

    purchase_receipt: StockReason
    opening_stock: StockReason
    sale_category: str
    sale_detail_template: str
    reverse_addition: StockReason
    reverse_removal: StockReason

    def sale_reason(self, invoice_number: str, request_number: str | None) -> StockReason:
        detail = self.sale_detail_template.format(
            invoice_number=invoice_number,
            request_number=request_number or "-",
        )
        return StockReason(self.sale_category, detail)


@dataclass(frozen=True)
class NumberingPolicy:
    invoice_prefix: str
    payment_request_prefix: str
    width: int


@dataclass(frozen=True)
class ReferencePolicy:
    """Defaults applied when extraction leaves product fields empty."""

    prefix: str
    default_unit: str
    default_name_template: str
    min_purchase_year: int
    max_purchase_year: int


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IntakePolicy:
    """The complete policy pack, the sole runtime configuration artifact."""

    config_id: str
    version: int
    vat: VatPolicy
    stamp_duty: StampDutyPolicy
    currency: CurrencyPolicy
    stock: StockReasonPolicy
    numbering: NumberingPolicy
    reference: ReferencePolicy
    checksum: str = ""

    @property
    def pending_rules(self) -> tuple[VatPolicyRule, ...]:
        return tuple(r for r in self.vat.rules if r.pending_confirmation)
