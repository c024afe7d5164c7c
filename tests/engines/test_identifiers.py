"""
Tests for barcode and identifier validation (intake_engines.identifiers).

Covers:
- Barcode format detection order and rejection
- Identifier type normalization (MF, RNE, blanks)
- CIN and local tax id shapes, allowed types per counterpart type
- Counterpart draft validation with aggregated field errors
"""

import pytest

from intake_engines.identifiers import (
    BarcodeFormat,
    country_name,
    detect_barcode_format,
    is_valid_barcode,
    normalize_identifier_type,
    validate_barcode,
    validate_counterpart_draft,
    validate_email,
    validate_identifier,
)
from intake_kernel.domain.counterpart import CounterpartDraft, CounterpartType
from intake_kernel.exceptions import (
    InvalidBarcodeError,
    InvalidEmailError,
    InvalidIdentifierError,
    StepValidationError,
)


# =============================================================================
# Barcodes
# =============================================================================


class TestBarcodes:
    """Tests for barcode detection and validation."""

    @pytest.mark.parametrize("value,expected", [
        ("6191234567890", BarcodeFormat.EAN_13),
        ("61912345", BarcodeFormat.EAN_8),
        ("036000291452", BarcodeFormat.UPC_A),
        ("ABC-123", BarcodeFormat.CODE_128),
        ("  6191234567890  ", BarcodeFormat.EAN_13),
    ])
    def test_detected_formats(self, value, expected):
        assert detect_barcode_format(value) is expected

    def test_eight_digits_detect_as_ean8(self):
        """EAN-8 shadows UPC-E on detection."""
        assert validate_barcode("01234565") is BarcodeFormat.EAN_8

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_blank_is_valid(self, value):
        assert is_valid_barcode(value)
        assert validate_barcode(value) is None

    @pytest.mark.parametrize("value", ["é123", "X" * 49])
    def test_unrecognized_rejected(self, value):
        with pytest.raises(InvalidBarcodeError) as exc_info:
            validate_barcode(value, line_index=3)

        assert exc_info.value.field == "ean"
        assert exc_info.value.line_index == 3
        assert not is_valid_barcode(value)


# =============================================================================
# Identifiers
# =============================================================================


class TestIdentifierTypes:
    """Tests for normalize_identifier_type."""

    @pytest.mark.parametrize("raw,expected", [
        ("MF", "tax_id"),
        ("mf", "tax_id"),
        ("RNE", "trade_register"),
        ("CIN", "cin"),
        ("Passport", "passport"),
        ("VAT_EU", "vat_eu"),
        ("SSN", "ssn"),
    ])
    def test_aliases(self, raw, expected):
        assert normalize_identifier_type(raw, CounterpartType.FOREIGN) == expected

    def test_blank_defaults_by_type(self):
        assert normalize_identifier_type(None, CounterpartType.BUSINESS_LOCAL) == "tax_id"
        assert normalize_identifier_type(" ", CounterpartType.INDIVIDUAL_LOCAL) == "cin"


class TestValidateIdentifier:
    """Tests for validate_identifier."""

    def test_cin(self):
        validate_identifier("cin", "01234567", CounterpartType.INDIVIDUAL_LOCAL)

    @pytest.mark.parametrize("value", ["1234567", "123456789", "ABCDEFGH"])
    def test_bad_cin(self, value):
        with pytest.raises(InvalidIdentifierError):
            validate_identifier("cin", value, CounterpartType.INDIVIDUAL_LOCAL)

    @pytest.mark.parametrize("value", ["1234567/A", "123456/B", "1234567A/B/C/000", "1234567a/b/c/000"])
    def test_local_tax_id(self, value):
        validate_identifier("tax_id", value, CounterpartType.BUSINESS_LOCAL)

    @pytest.mark.parametrize("value", ["1234567", "12345/A", "1234567/AB"])
    def test_bad_local_tax_id(self, value):
        with pytest.raises(InvalidIdentifierError):
            validate_identifier("tax_id", value, CounterpartType.BUSINESS_LOCAL)

    def test_foreign_tax_id_any_shape(self):
        validate_identifier("tax_id", "EIN 12-3456789", CounterpartType.FOREIGN)

    def test_type_not_allowed_for_business(self):
        """Local businesses are identified by tax id only."""
        with pytest.raises(InvalidIdentifierError) as exc_info:
            validate_identifier("cin", "01234567", CounterpartType.BUSINESS_LOCAL)

        assert "not allowed" in exc_info.value.reason

    def test_unknown_type(self):
        with pytest.raises(InvalidIdentifierError):
            validate_identifier("library_card", "42", CounterpartType.FOREIGN)

    def test_missing_value_local(self):
        with pytest.raises(InvalidIdentifierError):
            validate_identifier("cin", "", CounterpartType.INDIVIDUAL_LOCAL)

    def test_missing_value_foreign_ok(self):
        validate_identifier(None, None, CounterpartType.FOREIGN)


class TestEmailAndCountry:
    """Tests for validate_email and country_name."""

    def test_valid_email(self):
        validate_email("contact@alpha.tn")

    def test_blank_email_ok(self):
        validate_email("")

    def test_invalid_email(self):
        with pytest.raises(InvalidEmailError):
            validate_email("contact@alpha")

    @pytest.mark.parametrize("value,expected", [
        (None, "Tunisie"),
        ("FR", "France"),
        ("de", "Allemagne"),
        ("Portugal", "Portugal"),
        ("XX", "XX"),
    ])
    def test_country_name(self, value, expected):
        assert country_name(value) == expected


# =============================================================================
# Counterpart drafts
# =============================================================================


class TestCounterpartDraft:
    """Tests for validate_counterpart_draft."""

    def test_local_business_normalized(self):
        draft = validate_counterpart_draft(CounterpartDraft(
            counterpart_type=CounterpartType.BUSINESS_LOCAL,
            company_name="Société Alpha",
            identifier_type="MF",
            identifier_value=" 1234567/A ",
            governorate="Tunis",
        ))

        assert draft.identifier_type == "tax_id"
        assert draft.identifier_value == "1234567/A"
        assert draft.country == "Tunisie"

    def test_individual_requires_names(self):
        with pytest.raises(StepValidationError) as exc_info:
            validate_counterpart_draft(CounterpartDraft(
                counterpart_type=CounterpartType.INDIVIDUAL_LOCAL,
                identifier_value="01234567",
                governorate="Sfax",
            ))

        assert set(exc_info.value.fields) == {"first_name", "last_name"}

    def test_all_errors_reported_together(self):
        """Every failing field is reported in one error."""
        with pytest.raises(StepValidationError) as exc_info:
            validate_counterpart_draft(CounterpartDraft(
                counterpart_type=CounterpartType.BUSINESS_LOCAL,
                identifier_value="bad",
                governorate="Atlantis",
                email="nope",
            ))

        assert set(exc_info.value.fields) == {
            "company_name", "identifier_value", "governorate", "email",
        }
        assert exc_info.value.step == "counterpart_identification"

    def test_local_requires_governorate(self):
        with pytest.raises(StepValidationError) as exc_info:
            validate_counterpart_draft(CounterpartDraft(
                counterpart_type=CounterpartType.BUSINESS_LOCAL,
                company_name="Société Alpha",
                identifier_value="1234567/A",
            ))

        assert exc_info.value.fields == ("governorate",)

    def test_foreign_requires_country(self):
        with pytest.raises(StepValidationError) as exc_info:
            validate_counterpart_draft(CounterpartDraft(
                counterpart_type=CounterpartType.FOREIGN,
                company_name="Kontor GmbH",
            ))

        assert exc_info.value.fields == ("country",)

    def test_foreign_without_identifier(self):
        draft = validate_counterpart_draft(CounterpartDraft(
            counterpart_type=CounterpartType.FOREIGN,
            first_name="John",
            last_name="Smith",
            country="US",
        ))

        assert draft.identifier_type is None
        assert draft.identifier_value is None
        assert draft.country == "États-Unis"
