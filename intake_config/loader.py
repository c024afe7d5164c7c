"""
Policy loader (``intake_config.loader``).

Responsibility
--------------
Loads the YAML policy pack and parses it into the frozen dataclasses of
``intake_config.schema``.  Runtime callers go through
``intake_config.get_active_policy()``; this module is the parsing layer
underneath it.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; there are no silent defaults for required keys.
* Numbers are converted to ``Decimal`` through their string form, so a YAML
  float such as ``0.021`` becomes ``Decimal("0.021")`` exactly.
* ``compute_checksum`` is a deterministic SHA-256 of the canonical JSON of
  the raw document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Inconsistent values (unknown document kind, default rate not among the
  allowed rates, bad year bounds)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from intake_config.schema import (
    FOREIGN,
    LOCAL,
    CurrencyPolicy,
    IntakePolicy,
    NumberingPolicy,
    ReferencePolicy,
    StampDutyPolicy,
    StockReasonPolicy,
    VatPolicy,
    VatPolicyRule,
)
from intake_kernel.domain.documents import DocumentKind
from intake_kernel.domain.product import (
    STOCK_ADD_REASONS,
    STOCK_REMOVE_REASONS,
    StockReason,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, key: str) -> Decimal:
    """Parse a YAML scalar into a Decimal via its string form."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{key}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{key}: expected a number, got {value!r}") from e


def _parse_reason(data: dict[str, Any], key: str, add: bool) -> StockReason:
    catalog = STOCK_ADD_REASONS if add else STOCK_REMOVE_REASONS
    category = data["category"]
    detail = data["detail"]
    if category not in catalog:
        raise ValueError(f"{key}: unknown stock reason category {category!r}")
    if detail not in catalog[category]:
        raise ValueError(f"{key}: detail {detail!r} not valid for category {category!r}")
    return StockReason(category, detail)


def parse_vat(data: dict[str, Any]) -> VatPolicy:
    rates = tuple(parse_decimal(r, "vat.rates") for r in data["rates"])
    default_rate = parse_decimal(data["default_rate"], "vat.default_rate")
    if default_rate not in rates:
        raise ValueError(f"vat.default_rate {default_rate} is not among vat.rates")

    rules = []
    for item in data["policy_table"]:
        try:
            kind = DocumentKind(item["document_kind"])
        except ValueError as e:
            raise ValueError(
                f"vat.policy_table: unknown document kind {item['document_kind']!r}"
            ) from e
        locality = item["locality"]
        if locality not in (LOCAL, FOREIGN):
            raise ValueError(f"vat.policy_table: unknown locality {locality!r}")
        rule_rate = parse_decimal(
            item.get("default_rate", data["default_rate"]), "vat.policy_table.default_rate",
        )
        rules.append(VatPolicyRule(
            document_kind=kind,
            locality=locality,
            exempt=bool(item.get("exempt", False)),
            default_rate=rule_rate,
            pending_confirmation=bool(item.get("pending_confirmation", False)),
            note=item.get("note"),
        ))

    seen = {(r.document_kind, r.locality) for r in rules}
    for kind in DocumentKind:
        for locality in (LOCAL, FOREIGN):
            if (kind, locality) not in seen:
                raise ValueError(
                    f"vat.policy_table: missing rule for {kind.value}/{locality}"
                )

    return VatPolicy(rates=rates, default_rate=default_rate, rules=tuple(rules))


def parse_stamp_duty(data: dict[str, Any]) -> StampDutyPolicy:
    amount = parse_decimal(data["amount"], "stamp_duty.amount")
    if amount < 0:
        raise ValueError("stamp_duty.amount must be >= 0")
    return StampDutyPolicy(enabled=bool(data.get("enabled", True)), amount=amount)


def parse_currency(data: dict[str, Any]) -> CurrencyPolicy:
    fallback = []
    for code, rate in sorted((data.get("fallback_rates") or {}).items()):
        value = parse_decimal(rate, f"currency.fallback_rates.{code}")
        if value <= 0:
            raise ValueError(f"currency.fallback_rates.{code} must be > 0")
        fallback.append((code.upper(), value))
    return CurrencyPolicy(
        settlement_currency=data["settlement_currency"].upper(),
        default_foreign_currency=data["default_foreign_currency"].upper(),
        fallback_rates=tuple(fallback),
        unknown_fallback_rate=parse_decimal(
            data.get("unknown_fallback_rate", 1), "currency.unknown_fallback_rate",
        ),
    )


def parse_stock(data: dict[str, Any]) -> StockReasonPolicy:
    sale = data["sale"]
    if sale["category"] not in STOCK_REMOVE_REASONS:
        raise ValueError(f"stock.sale: unknown category {sale['category']!r}")
    return StockReasonPolicy(
        purchase_receipt=_parse_reason(data["purchase_receipt"], "stock.purchase_receipt", add=True),
        opening_stock=_parse_reason(data["opening_stock"], "stock.opening_stock", add=True),
        sale_category=sale["category"],
        sale_detail_template=sale["detail_template"],
        reverse_addition=_parse_reason(data["reverse_addition"], "stock.reverse_addition", add=False),
        reverse_removal=_parse_reason(data["reverse_removal"], "stock.reverse_removal", add=True),
    )


def parse_numbering(data: dict[str, Any]) -> NumberingPolicy:
    width = int(data.get("width", 5))
    if width < 1:
        raise ValueError("numbering.width must be >= 1")
    return NumberingPolicy(
        invoice_prefix=data["invoice_prefix"],
        payment_request_prefix=data["payment_request_prefix"],
        width=width,
    )


def parse_reference(data: dict[str, Any]) -> ReferencePolicy:
    min_year = int(data["min_purchase_year"])
    max_year = int(data["max_purchase_year"])
    if min_year > max_year:
        raise ValueError("reference: min_purchase_year must be <= max_purchase_year")
    template = data["default_name_template"]
    if "{n}" not in template:
        raise ValueError("reference.default_name_template must contain '{n}'")
    return ReferencePolicy(
        prefix=data["prefix"],
        default_unit=data["default_unit"],
        default_name_template=template,
        min_purchase_year=min_year,
        max_purchase_year=max_year,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization; deterministic."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_policy(data: dict[str, Any]) -> IntakePolicy:
    """Parse a whole policy document (already loaded from YAML)."""
    return IntakePolicy(
        config_id=data["config_id"],
        version=int(data["version"]),
        vat=parse_vat(data["vat"]),
        stamp_duty=parse_stamp_duty(data["stamp_duty"]),
        currency=parse_currency(data["currency"]),
        stock=parse_stock(data["stock"]),
        numbering=parse_numbering(data["numbering"]),
        reference=parse_reference(data["reference"]),
        checksum=compute_checksum(data),
    )


def load_policy(path: Path) -> IntakePolicy:
    return parse_policy(load_yaml_file(path))
