"""
Barcode and counterpart identifier validation.

Barcodes
--------
A barcode is optional: an empty value is always valid.  A non-empty value
must match one of the recognized formats, tried in this order::

    EAN-13    13 digits
    EAN-8     8 digits
    UPC-A     12 digits
    UPC-E     8 digits (shadowed by EAN-8 on detection)
    Code-128  1..48 ASCII characters
    Code-39   1..43 of A-Z 0-9 - . space $ / + %
    Code-93   1..48 of the Code-39 set
    ITF-14    14 digits

Anything else is an error, never a silent fallback.

Counterparts
------------
Local counterparts need a government identifier and a governorate; the
foreign type needs a country and only validates an identifier when one is
given.  Identifier types coming from extraction use local naming (``MF``,
``RNE``) and are normalized first.
"""

from __future__ import annotations

import re
from dataclasses import replace
from enum import Enum

from intake_kernel.domain.counterpart import (
    ALLOWED_IDENTIFIER_TYPES,
    GOVERNORATES,
    LOCAL_COUNTRY,
    CounterpartDraft,
    CounterpartType,
    IdentifierType,
)
from intake_kernel.exceptions import (
    InvalidBarcodeError,
    InvalidEmailError,
    InvalidIdentifierError,
    RequiredFieldError,
    StepValidationError,
    ValidationError,
)
from intake_kernel.logging_config import get_logger

logger = get_logger("engines.identifiers")


class BarcodeFormat(str, Enum):
    EAN_13 = "ean13"
    EAN_8 = "ean8"
    UPC_A = "upca"
    UPC_E = "upce"
    CODE_128 = "code128"
    CODE_39 = "code39"
    CODE_93 = "code93"
    ITF_14 = "itf14"


_BARCODE_PATTERNS: tuple[tuple[BarcodeFormat, re.Pattern], ...] = (
    (BarcodeFormat.EAN_13, re.compile(r"^[0-9]{13}$")),
    (BarcodeFormat.EAN_8, re.compile(r"^[0-9]{8}$")),
    (BarcodeFormat.UPC_A, re.compile(r"^[0-9]{12}$")),
    (BarcodeFormat.UPC_E, re.compile(r"^[0-9]{8}$")),
    (BarcodeFormat.CODE_128, re.compile(r"^[\x00-\x7F]{1,48}$")),
    (BarcodeFormat.CODE_39, re.compile(r"^[A-Z0-9\-. $/+%]{1,43}$")),
    (BarcodeFormat.CODE_93, re.compile(r"^[A-Z0-9\-. $/+%]{1,48}$")),
    (BarcodeFormat.ITF_14, re.compile(r"^[0-9]{14}$")),
)


def normalize_barcode(value: str | None) -> str | None:
    """Trimmed barcode, or None when blank."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def detect_barcode_format(value: str | None) -> BarcodeFormat | None:
    """First format the trimmed value matches; None for a blank or unrecognized value."""
    value = normalize_barcode(value)
    if value is None:
        return None
    for barcode_format, pattern in _BARCODE_PATTERNS:
        if pattern.match(value):
            return barcode_format
    return None


def is_valid_barcode(value: str | None) -> bool:
    return normalize_barcode(value) is None or detect_barcode_format(value) is not None


def validate_barcode(value: str | None, line_index: int | None = None) -> BarcodeFormat | None:
    """
    Validate an optional barcode.

    Returns:
        The detected format, or None for a blank value.

    Raises:
        InvalidBarcodeError: non-empty value matching no format.
    """
    if normalize_barcode(value) is None:
        return None
    detected = detect_barcode_format(value)
    if detected is None:
        raise InvalidBarcodeError(value, line_index)
    return detected


# -----------------------------------------------------------------------------
# Identifiers
# -----------------------------------------------------------------------------

_IDENTIFIER_ALIASES: dict[str, IdentifierType] = {
    "MF": IdentifierType.TAX_ID,
    "CIN": IdentifierType.CIN,
    "PASSPORT": IdentifierType.PASSPORT,
    "RNE": IdentifierType.TRADE_REGISTER,
    "TAX_ID": IdentifierType.TAX_ID,
    "VAT_EU": IdentifierType.VAT_EU,
}

_CIN = re.compile(r"^\d{8}$")
_TAX_ID = re.compile(r"^(\d{6,7}/[A-Z]|\d{6,7}[A-Z]/[A-Z]/[A-Z]/\d{3})$")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_identifier_type(
    raw: str | None,
    counterpart_type: CounterpartType | None,
) -> str:
    """
    Map an extracted identifier type onto the catalog vocabulary.

    Missing types default to ``tax_id`` for local businesses and ``cin``
    otherwise.  Unknown names are lowercased and left for validation.
    """
    if raw is None or not raw.strip():
        if counterpart_type is CounterpartType.BUSINESS_LOCAL:
            return IdentifierType.TAX_ID.value
        return IdentifierType.CIN.value
    alias = _IDENTIFIER_ALIASES.get(raw.strip().upper())
    if alias is not None:
        return alias.value
    return raw.strip().lower()


def validate_identifier(
    identifier_type: str | None,
    value: str | None,
    counterpart_type: CounterpartType,
) -> None:
    """
    Raise InvalidIdentifierError unless the identifier fits the counterpart type.

    CIN is 8 digits.  A local tax id follows the matricule fiscal shape
    (``1234567/A`` or ``1234567A/B/C/000``); foreign tax ids are only
    required to be present.
    """
    counterpart_type = CounterpartType(counterpart_type)
    value = (value or "").strip()
    if not value:
        if counterpart_type.is_foreign:
            return
        raise InvalidIdentifierError(identifier_type, value, "identifier is required")

    try:
        kind = IdentifierType(identifier_type)
    except ValueError as e:
        raise InvalidIdentifierError(identifier_type, value, "unknown identifier type") from e

    if kind not in ALLOWED_IDENTIFIER_TYPES[counterpart_type]:
        raise InvalidIdentifierError(
            identifier_type, value,
            f"not allowed for {counterpart_type.value} counterparts",
        )
    if kind is IdentifierType.CIN and not _CIN.match(value):
        raise InvalidIdentifierError(identifier_type, value, "CIN must be 8 digits")
    if kind is IdentifierType.TAX_ID and not counterpart_type.is_foreign:
        if not _TAX_ID.match(value.upper()):
            raise InvalidIdentifierError(
                identifier_type, value, "tax id must look like 1234567/A or 1234567A/B/C/000",
            )


def validate_email(value: str | None) -> None:
    if value and value.strip() and not _EMAIL.match(value.strip()):
        raise InvalidEmailError(value)


_COUNTRY_NAMES: dict[str, str] = {
    "TN": "Tunisie", "FR": "France", "DE": "Allemagne", "IT": "Italie",
    "ES": "Espagne", "US": "États-Unis", "CN": "Chine", "TR": "Turquie",
    "AE": "Émirats arabes unis", "SA": "Arabie saoudite", "EG": "Égypte",
    "MA": "Maroc", "DZ": "Algérie", "LY": "Libye", "GB": "Royaume-Uni",
    "JP": "Japon", "KR": "Corée du Sud", "IN": "Inde", "BR": "Brésil",
}


def country_name(value: str | None) -> str:
    """Two-letter codes become names; a missing country means the local one."""
    if value is None or not value.strip():
        return LOCAL_COUNTRY
    value = value.strip()
    if len(value) > 2:
        return value
    return _COUNTRY_NAMES.get(value.upper(), value)


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def validate_counterpart_draft(
    draft: CounterpartDraft,
    step: str = "counterpart_identification",
) -> CounterpartDraft:
    """
    Validate a counterpart before creation and return its normalized form.

    Every failing field is collected; the step fails with all of them at
    once.  Local counterparts get the local country.

    Raises:
        StepValidationError: aggregate of the field errors.
    """
    counterpart_type = CounterpartType(draft.counterpart_type)
    errors: list[ValidationError] = []

    has_person = not _blank(draft.first_name) and not _blank(draft.last_name)
    has_company = not _blank(draft.company_name)
    if counterpart_type is CounterpartType.INDIVIDUAL_LOCAL:
        if _blank(draft.first_name):
            errors.append(RequiredFieldError("first_name"))
        if _blank(draft.last_name):
            errors.append(RequiredFieldError("last_name"))
    elif counterpart_type is CounterpartType.BUSINESS_LOCAL:
        if not has_company:
            errors.append(RequiredFieldError("company_name"))
    elif not (has_person or has_company):
        errors.append(RequiredFieldError("company_name"))

    identifier_type = draft.identifier_type
    if not _blank(draft.identifier_value) or not counterpart_type.is_foreign:
        identifier_type = normalize_identifier_type(draft.identifier_type, counterpart_type)
    try:
        validate_identifier(identifier_type, draft.identifier_value, counterpart_type)
    except InvalidIdentifierError as e:
        errors.append(e)

    if counterpart_type.is_foreign:
        country = draft.country.strip() if not _blank(draft.country) else None
        if country is None:
            errors.append(RequiredFieldError("country"))
        else:
            country = country_name(country)
    else:
        country = LOCAL_COUNTRY
        if _blank(draft.governorate):
            errors.append(RequiredFieldError("governorate"))
        elif draft.governorate.strip() not in GOVERNORATES:
            errors.append(ValidationError(
                f"Unknown governorate: {draft.governorate!r}", "governorate",
            ))

    try:
        validate_email(draft.email)
    except InvalidEmailError as e:
        errors.append(e)

    if errors:
        logger.info(
            "counterpart_validation_failed",
            extra={
                "counterpart_type": counterpart_type.value,
                "fields": [e.field for e in errors],
            },
        )
        raise StepValidationError(step, errors)

    return replace(
        draft,
        counterpart_type=counterpart_type,
        identifier_type=identifier_type if not _blank(draft.identifier_value) else None,
        identifier_value=draft.identifier_value.strip() if not _blank(draft.identifier_value) else None,
        country=country,
        governorate=draft.governorate.strip() if not counterpart_type.is_foreign else draft.governorate,
    )
