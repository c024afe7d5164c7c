"""
Module: intake_engines
Responsibility:
    Package entrypoint re-exporting the pure calculators of the intake
    pipeline: MoneyMath, sale pricing, CurrencyConverter, EntityMatcher,
    identifier and barcode validation, extraction normalization and stock
    aggregation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import intake_kernel (domain, db.types, exceptions, logging).
    MUST NOT import intake_config, intake_services or intake_modules;
    policy values are passed in as parameters.

Invariants enforced:
    - Engines never read the clock; dates are passed in.
    - Decimal-only arithmetic.
    - Identical inputs always produce identical outputs.

Audit relevance:
    Traced engine calls emit INTAKE_ENGINE_TRACE records
    (see ``intake_engines.tracer``).
"""

from intake_kernel.logging_config import get_logger

logger = get_logger("engines")

from intake_engines.currency import (
    RateQuote,
    RateSource,
    convert,
    convert_line_amounts,
    resolve_rate,
    validate_currency,
    validate_rate,
)
from intake_engines.identifiers import (
    BarcodeFormat,
    country_name,
    detect_barcode_format,
    normalize_identifier_type,
    validate_barcode,
    validate_counterpart_draft,
    validate_email,
    validate_identifier,
)
from intake_engines.matching import (
    CounterpartMatchResult,
    ProductConflict,
    ProductMatchResult,
    find_product_conflicts,
    match_counterpart,
    match_product,
    search_products,
)
from intake_engines.money_math import (
    aggregate_totals,
    authoritative_totals,
    line_total,
    net_payable,
    stamp_duty_for,
    totals_from_extraction,
    withholding_amount,
)
from intake_engines.normalization import (
    LineDefaults,
    generated_reference,
    normalize_lines,
    recompute_line,
)
from intake_engines.pricing import (
    SalePriceField,
    derive_sale_price,
    reprice_for_cost,
    unit_purchase_cost,
)
from intake_engines.stock import (
    LineQuantity,
    ProductMovement,
    aggregate_movements,
    apply_movement,
    max_quantities,
)
from intake_engines.tracer import traced_engine

logger.debug("engines_package_loaded")

__all__ = [
    "BarcodeFormat",
    "CounterpartMatchResult",
    "LineDefaults",
    "LineQuantity",
    "ProductConflict",
    "ProductMatchResult",
    "ProductMovement",
    "RateQuote",
    "RateSource",
    "SalePriceField",
    "aggregate_movements",
    "aggregate_totals",
    "apply_movement",
    "authoritative_totals",
    "convert",
    "convert_line_amounts",
    "country_name",
    "derive_sale_price",
    "detect_barcode_format",
    "find_product_conflicts",
    "generated_reference",
    "line_total",
    "match_counterpart",
    "match_product",
    "max_quantities",
    "net_payable",
    "normalize_identifier_type",
    "normalize_lines",
    "recompute_line",
    "reprice_for_cost",
    "resolve_rate",
    "search_products",
    "stamp_duty_for",
    "totals_from_extraction",
    "traced_engine",
    "unit_purchase_cost",
    "validate_barcode",
    "validate_counterpart_draft",
    "validate_currency",
    "validate_email",
    "validate_identifier",
    "validate_rate",
    "withholding_amount",
]
