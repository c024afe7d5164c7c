"""
intake_engines.matching -- EntityMatcher for counterparts and product lines.

Responsibility:
    Resolve an extracted counterpart or product line against catalog
    snapshots, producing a ranked candidate set and a recommended decision.

    Counterparts:  extraction hint (3) > exact identifier (2) > name containment (1)
    Product lines: exact reference (3) = exact EAN (3) > exact name, case-insensitive (2)
    Manual search: substring on name / reference / EAN (1), never auto-selected

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Catalog snapshots are
    loaded by ``intake_services.catalog_service`` and passed in.

Invariants enforced:
    - Determinism: identical inputs yield the identical ranked tuple and
      decision.  Ties break on the lowercased display name, then the id.
    - No side effects: matching never creates or links anything; the
      workflow applies the decision when the step is confirmed.
    - Archived products never match.  Counterpart snapshots are loaded
      active-only, for one role.

Failure modes:
    - None; an empty catalog yields ``create_new``.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from intake_engines.identifiers import normalize_barcode
from intake_engines.tracer import traced_engine
from intake_kernel.domain.counterpart import (
    CounterpartDecision,
    CounterpartMatchType,
    CounterpartRecord,
    RankedCounterpart,
)
from intake_kernel.domain.extraction import ExtractedCounterpart
from intake_kernel.domain.product import (
    ProductDecision,
    ProductMatchType,
    ProductRecord,
    ProductStatus,
    RankedProduct,
)
from intake_kernel.logging_config import get_logger

logger = get_logger("engines.matching")

SEARCH_MIN_QUERY_LENGTH = 2
SEARCH_MAX_RESULTS = 10

_COUNTERPART_SCORES = {
    CounterpartMatchType.HINT: 3,
    CounterpartMatchType.IDENTIFIER: 2,
    CounterpartMatchType.NAME: 1,
}

_PRODUCT_SCORES = {
    ProductMatchType.REFERENCE: 3,
    ProductMatchType.EAN: 3,
    ProductMatchType.NAME: 2,
}

_PRODUCT_TYPE_ORDER = {
    ProductMatchType.REFERENCE: 0,
    ProductMatchType.EAN: 1,
    ProductMatchType.NAME: 2,
}


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


@dataclass(frozen=True)
class CounterpartMatchResult:
    candidates: tuple[RankedCounterpart, ...]
    decision: CounterpartDecision

    @property
    def best(self) -> RankedCounterpart | None:
        return self.candidates[0] if self.candidates else None


@dataclass(frozen=True)
class ProductMatchResult:
    candidates: tuple[RankedProduct, ...]
    decision: ProductDecision

    @property
    def best(self) -> RankedProduct | None:
        return self.candidates[0] if self.candidates else None


@dataclass(frozen=True)
class ProductConflict:
    """A catalog product already holding a value a new product wants."""

    field: str
    value: str
    existing_id: UUID


def extracted_comparison_name(extracted: ExtractedCounterpart) -> str:
    if extracted.company_name:
        return _norm(extracted.company_name)
    if extracted.name:
        return _norm(extracted.name)
    return _norm(f"{extracted.first_name or ''} {extracted.last_name or ''}")


def _contains_name(haystack: str, needle: str) -> bool:
    """Substring match; needles shorter than the search minimum never match."""
    return len(needle) >= SEARCH_MIN_QUERY_LENGTH and needle in haystack


def _counterpart_candidate(
    extracted: ExtractedCounterpart,
    record: CounterpartRecord,
    extracted_name: str,
) -> RankedCounterpart | None:
    if extracted.existing_id is not None and extracted.existing_id == record.id:
        return RankedCounterpart(
            counterpart=record,
            score=_COUNTERPART_SCORES[CounterpartMatchType.HINT],
            match_type=CounterpartMatchType.HINT,
            reason=extracted.match_reason or "extraction matched an existing counterpart",
        )

    identifier = _norm(extracted.identifier_value)
    if identifier and identifier == _norm(record.identifier_value):
        return RankedCounterpart(
            counterpart=record,
            score=_COUNTERPART_SCORES[CounterpartMatchType.IDENTIFIER],
            match_type=CounterpartMatchType.IDENTIFIER,
            reason=f"identifier {record.identifier_value}",
        )

    record_name = record.comparison_name
    if extracted_name and record_name and (
        extracted_name == record_name
        or _contains_name(record_name, extracted_name)
        or _contains_name(extracted_name, record_name)
    ):
        return RankedCounterpart(
            counterpart=record,
            score=_COUNTERPART_SCORES[CounterpartMatchType.NAME],
            match_type=CounterpartMatchType.NAME,
            reason=f"name {record_name!r}",
        )
    return None


def _counterpart_rank_key(candidate: RankedCounterpart) -> tuple:
    return (-candidate.score, candidate.counterpart.comparison_name, str(candidate.counterpart.id))


@traced_engine("matching", "1.0", fingerprint_fields=("extracted", "catalog"))
def match_counterpart(
    *,
    extracted: ExtractedCounterpart | None,
    catalog: Sequence[CounterpartRecord],
) -> CounterpartMatchResult:
    """
    Rank catalog counterparts against the extracted one.

    Without an extracted counterpart the user must pick one
    (``select_existing``).  Otherwise the highest-ranked candidate is
    offered as ``matched``; no candidate means ``create_new``.
    """
    t0 = time.monotonic()
    if extracted is None:
        return CounterpartMatchResult((), CounterpartDecision.SELECT_EXISTING)

    extracted_name = extracted_comparison_name(extracted)
    candidates = []
    for record in catalog:
        candidate = _counterpart_candidate(extracted, record, extracted_name)
        if candidate is not None:
            candidates.append(candidate)
    candidates.sort(key=_counterpart_rank_key)

    decision = CounterpartDecision.MATCHED if candidates else CounterpartDecision.CREATE_NEW
    logger.info(
        "counterpart_match_completed",
        extra={
            "candidate_count": len(candidates),
            "decision": decision.value,
            "best_match_type": candidates[0].match_type.value if candidates else None,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        },
    )
    return CounterpartMatchResult(tuple(candidates), decision)


def _product_match_types(
    name: str | None,
    reference: str | None,
    ean: str | None,
    record: ProductRecord,
) -> list[ProductMatchType]:
    found = []
    if _norm(reference) and _norm(reference) == _norm(record.reference):
        found.append(ProductMatchType.REFERENCE)
    barcode = normalize_barcode(ean)
    if barcode and barcode == normalize_barcode(record.ean):
        found.append(ProductMatchType.EAN)
    if _norm(name) and _norm(name) == _norm(record.name):
        found.append(ProductMatchType.NAME)
    return found


def _product_rank_key(candidate: RankedProduct) -> tuple:
    return (
        -candidate.score,
        _PRODUCT_TYPE_ORDER[candidate.match_type],
        _norm(candidate.product.name),
        str(candidate.product.id),
    )


@traced_engine("matching", "1.0", fingerprint_fields=("name", "reference", "ean", "catalog"))
def match_product(
    *,
    name: str | None,
    reference: str | None,
    ean: str | None,
    catalog: Sequence[ProductRecord],
) -> ProductMatchResult:
    """
    Rank active catalog products against one extracted line.

    A product matching on several keys is listed once, under its
    strongest key.  The top candidate is recommended as ``use_existing``;
    no candidate recommends ``create_new``.
    """
    candidates = []
    for record in catalog:
        if record.status is not ProductStatus.ACTIVE:
            continue
        found = _product_match_types(name, reference, ean, record)
        if not found:
            continue
        best = min(found, key=lambda t: (-_PRODUCT_SCORES[t], _PRODUCT_TYPE_ORDER[t]))
        candidates.append(RankedProduct(record, _PRODUCT_SCORES[best], best))
    candidates.sort(key=_product_rank_key)

    decision = ProductDecision.USE_EXISTING if candidates else ProductDecision.CREATE_NEW
    logger.debug(
        "product_match_completed",
        extra={"candidate_count": len(candidates), "decision": decision.value},
    )
    return ProductMatchResult(tuple(candidates), decision)


def search_products(
    query: str,
    catalog: Sequence[ProductRecord],
    limit: int = SEARCH_MAX_RESULTS,
) -> tuple[RankedProduct, ...]:
    """Manual search: substring on name, reference or EAN; score 1."""
    needle = _norm(query)
    if len(needle) < SEARCH_MIN_QUERY_LENGTH:
        return ()

    results = []
    for record in catalog:
        if record.status is not ProductStatus.ACTIVE:
            continue
        if needle in _norm(record.name):
            results.append(RankedProduct(record, 1, ProductMatchType.NAME))
        elif needle in _norm(record.reference):
            results.append(RankedProduct(record, 1, ProductMatchType.REFERENCE))
        elif needle in _norm(record.ean):
            results.append(RankedProduct(record, 1, ProductMatchType.EAN))
    results.sort(key=lambda r: (_norm(r.product.name), str(r.product.id)))
    return tuple(results[:limit])


def find_product_conflicts(
    *,
    name: str,
    reference: str | None,
    ean: str | None,
    catalog: Sequence[ProductRecord],
    exclude_id: UUID | None = None,
) -> tuple[ProductConflict, ...]:
    """
    Catalog products that already hold the name, reference or EAN.

    Names and references compare case-insensitively; the barcode compares
    exactly after trimming.  At most one conflict per field.
    """
    conflicts: dict[str, ProductConflict] = {}
    barcode = normalize_barcode(ean)
    for record in sorted(catalog, key=lambda r: str(r.id)):
        if exclude_id is not None and record.id == exclude_id:
            continue
        if "name" not in conflicts and _norm(name) and _norm(name) == _norm(record.name):
            conflicts["name"] = ProductConflict("name", name.strip(), record.id)
        if (
            "reference" not in conflicts
            and _norm(reference)
            and _norm(reference) == _norm(record.reference)
        ):
            conflicts["reference"] = ProductConflict("reference", reference.strip(), record.id)
        if "ean" not in conflicts and barcode and barcode == normalize_barcode(record.ean):
            conflicts["ean"] = ProductConflict("ean", barcode, record.id)
    return tuple(conflicts[f] for f in ("name", "reference", "ean") if f in conflicts)
