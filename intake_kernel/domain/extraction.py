"""
Extraction shapes (``intake_kernel.domain.extraction``).

Responsibility
--------------
Typed, immutable view of the draft produced by the external extraction
service.  The draft is untrusted: every field may be absent or malformed.
Parsing never raises on bad values; it records ``None`` and leaves
defaulting to ``intake_engines.normalization``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID


def _opt_decimal(value: Any) -> Decimal | None:
    """Lenient decimal parse for untrusted input (floats accepted at this boundary only)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    text = str(value).strip().replace(" ", "").replace(",", ".")
    if not text:
        return None
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_int(value: Any) -> int | None:
    parsed = _opt_decimal(value)
    if parsed is None or parsed != parsed.to_integral_value():
        return None
    return int(parsed)


def _opt_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _opt_str(value)
    if text is None:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _opt_uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    text = _opt_str(value)
    if text is None:
        return None
    try:
        return UUID(text)
    except ValueError:
        return None


def _opt_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class ExtractedCounterpart:
    name: str | None = None
    counterpart_type: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    company_name: str | None = None
    identifier_type: str | None = None
    identifier_value: str | None = None
    country: str | None = None
    governorate: str | None = None
    address: str | None = None
    phone: str | None = None
    email: str | None = None
    existing_id: UUID | None = None
    match_confidence: str | None = None
    match_reason: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractedCounterpart:
        return cls(
            name=_opt_str(data.get("name")),
            counterpart_type=_opt_str(data.get("counterpart_type") or data.get("supplier_type")),
            first_name=_opt_str(data.get("first_name")),
            last_name=_opt_str(data.get("last_name")),
            company_name=_opt_str(data.get("company_name")),
            identifier_type=_opt_str(data.get("identifier_type")),
            identifier_value=_opt_str(data.get("identifier_value")),
            country=_opt_str(data.get("country")),
            governorate=_opt_str(data.get("governorate")),
            address=_opt_str(data.get("address")),
            phone=_opt_str(data.get("phone")),
            email=_opt_str(data.get("email")),
            existing_id=_opt_uuid(data.get("existing_id") or data.get("existing_supplier_id")),
            match_confidence=_opt_str(data.get("match_confidence")),
            match_reason=_opt_str(data.get("match_reason")),
        )


@dataclass(frozen=True)
class ExtractedLine:
    name: str | None = None
    reference: str | None = None
    ean: str | None = None
    quantity: Decimal | None = None
    unit_price_ht: Decimal | None = None
    unit_price_ttc: Decimal | None = None
    vat_rate: Decimal | None = None
    discount_percent: Decimal | None = None
    line_total_ht: Decimal | None = None
    line_total_ttc: Decimal | None = None
    product_type: str | None = None
    unit: str | None = None
    max_discount: Decimal | None = None
    unlimited_stock: bool | None = None
    allow_out_of_stock_sale: bool | None = None
    purchase_year: int | None = None
    product_id: UUID | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractedLine:
        return cls(
            name=_opt_str(data.get("name")),
            reference=_opt_str(data.get("reference")),
            ean=_opt_str(data.get("ean")),
            quantity=_opt_decimal(data.get("quantity")),
            unit_price_ht=_opt_decimal(data.get("unit_price_ht")),
            unit_price_ttc=_opt_decimal(data.get("unit_price_ttc")),
            vat_rate=_opt_decimal(data.get("vat_rate")),
            discount_percent=_opt_decimal(data.get("discount_percent")),
            line_total_ht=_opt_decimal(data.get("line_total_ht")),
            line_total_ttc=_opt_decimal(data.get("line_total_ttc")),
            product_type=_opt_str(data.get("product_type")),
            unit=_opt_str(data.get("unit")),
            max_discount=_opt_decimal(data.get("max_discount")),
            unlimited_stock=_opt_bool(data.get("unlimited_stock")),
            allow_out_of_stock_sale=_opt_bool(data.get("allow_out_of_stock_sale")),
            purchase_year=_opt_int(data.get("purchase_year")),
            product_id=_opt_uuid(data.get("product_id")),
        )


@dataclass(frozen=True)
class VatBreakdownEntry:
    rate: Decimal
    base_ht: Decimal
    vat_amount: Decimal


@dataclass(frozen=True)
class ExtractedTotals:
    subtotal_ht: Decimal | None = None
    total_vat: Decimal | None = None
    total_discount: Decimal | None = None
    ht_after_discount: Decimal | None = None
    total_ttc: Decimal | None = None
    stamp_duty_amount: Decimal | None = None
    net_payable: Decimal | None = None
    currency: str | None = None
    vat_breakdown: tuple[VatBreakdownEntry, ...] = ()

    @property
    def has_amounts(self) -> bool:
        """True when the extraction carries a usable (non-zero) TTC total."""
        return self.total_ttc is not None and self.total_ttc != 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExtractedTotals:
        breakdown = []
        raw_breakdown = data.get("vat_breakdown")
        if not isinstance(raw_breakdown, (list, tuple)):
            raw_breakdown = ()
        for entry in raw_breakdown:
            if not isinstance(entry, dict):
                continue
            rate = _opt_decimal(entry.get("rate"))
            if rate is None:
                continue
            breakdown.append(VatBreakdownEntry(
                rate=rate,
                base_ht=_opt_decimal(entry.get("base_ht")) or Decimal("0"),
                vat_amount=_opt_decimal(entry.get("vat_amount")) or Decimal("0"),
            ))
        currency = _opt_str(data.get("currency"))
        return cls(
            subtotal_ht=_opt_decimal(data.get("subtotal_ht")),
            total_vat=_opt_decimal(data.get("total_vat")),
            total_discount=_opt_decimal(data.get("total_discount")),
            ht_after_discount=_opt_decimal(data.get("ht_after_discount")),
            total_ttc=_opt_decimal(data.get("total_ttc")),
            stamp_duty_amount=_opt_decimal(data.get("stamp_duty_amount")),
            net_payable=_opt_decimal(data.get("net_payable")),
            currency=currency.upper() if currency else None,
            vat_breakdown=tuple(breakdown),
        )


@dataclass(frozen=True)
class ExtractionResult:
    """The whole extracted draft.  Never authoritative once the user edits."""

    invoice_number: str | None = None
    invoice_date: date | None = None
    counterpart: ExtractedCounterpart | None = None
    lines: tuple[ExtractedLine, ...] = ()
    totals: ExtractedTotals = ExtractedTotals()
    is_duplicate: bool = False
    duplicate_reason: str | None = None
    pdf_url: str | None = None
    pdf_hash: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ExtractionResult:
        """Parse a raw extraction payload; tolerant of missing and malformed fields."""
        data = data or {}
        raw_counterpart = data.get("counterpart") or data.get("supplier")
        raw_lines = data.get("lines") or data.get("products") or ()
        if not isinstance(raw_lines, (list, tuple)):
            raw_lines = ()
        raw_totals = data.get("totals")
        return cls(
            invoice_number=_opt_str(data.get("invoice_number")),
            invoice_date=_opt_date(data.get("invoice_date")),
            counterpart=(
                ExtractedCounterpart.from_dict(raw_counterpart)
                if isinstance(raw_counterpart, dict) else None
            ),
            lines=tuple(
                ExtractedLine.from_dict(line) for line in raw_lines if isinstance(line, dict)
            ),
            totals=ExtractedTotals.from_dict(raw_totals if isinstance(raw_totals, dict) else {}),
            is_duplicate=bool(data.get("is_duplicate")),
            duplicate_reason=_opt_str(data.get("duplicate_reason")),
            pdf_url=_opt_str(data.get("pdf_url")),
            pdf_hash=_opt_str(data.get("pdf_hash")),
        )
