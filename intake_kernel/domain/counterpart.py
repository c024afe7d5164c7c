"""
Counterpart domain types (``intake_kernel.domain.counterpart``).

Responsibility
--------------
Value objects for the other party of a document: a supplier on purchases,
a client on invoices.  Includes the counterpart classification, the
identifier vocabulary, the governorate list for local counterparts, the
draft shape used before creation, the read-only catalog snapshot handed to
the matcher, and the three resolution variants a workflow can hold.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* A resolution always carries a counterpart id once confirmed; for
  ``NewCounterpart`` the id is reserved client-side and the row is only
  inserted at commit.
* Locality (``is_foreign``) is derived from ``CounterpartType`` alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID


class CounterpartRole(str, Enum):
    """Which side of the trade the counterpart sits on."""

    SUPPLIER = "supplier"
    CLIENT = "client"


class CounterpartType(str, Enum):
    """Counterpart classification.

    Local types require a government identifier and a governorate; the
    foreign type requires a country and makes the identifier optional.
    """

    INDIVIDUAL_LOCAL = "individual_local"
    BUSINESS_LOCAL = "business_local"
    FOREIGN = "foreign"

    @property
    def is_foreign(self) -> bool:
        return self is CounterpartType.FOREIGN


class IdentifierType(str, Enum):
    CIN = "cin"
    PASSPORT = "passport"
    TAX_ID = "tax_id"
    SSN = "ssn"
    VAT_EU = "vat_eu"
    BUSINESS_NUMBER_CA = "business_number_ca"
    TRADE_REGISTER = "trade_register"
    NATIONAL_ID = "national_id"
    DIPLOMATIC_PASSPORT = "diplomatic_passport"
    INTERNAL_ID = "internal_id"


ALLOWED_IDENTIFIER_TYPES: dict[CounterpartType, tuple[IdentifierType, ...]] = {
    CounterpartType.INDIVIDUAL_LOCAL: (
        IdentifierType.CIN,
        IdentifierType.PASSPORT,
        IdentifierType.TAX_ID,
    ),
    CounterpartType.BUSINESS_LOCAL: (IdentifierType.TAX_ID,),
    CounterpartType.FOREIGN: (
        IdentifierType.PASSPORT,
        IdentifierType.TAX_ID,
        IdentifierType.SSN,
        IdentifierType.VAT_EU,
        IdentifierType.BUSINESS_NUMBER_CA,
        IdentifierType.TRADE_REGISTER,
        IdentifierType.NATIONAL_ID,
        IdentifierType.DIPLOMATIC_PASSPORT,
        IdentifierType.INTERNAL_ID,
    ),
}

LOCAL_COUNTRY = "Tunisie"

GOVERNORATES: tuple[str, ...] = (
    "Ariana",
    "Béja",
    "Ben Arous",
    "Bizerte",
    "Gabès",
    "Gafsa",
    "Jendouba",
    "Kairouan",
    "Kasserine",
    "Kébili",
    "Le Kef",
    "Mahdia",
    "La Manouba",
    "Médenine",
    "Monastir",
    "Nabeul",
    "Sfax",
    "Sidi Bouzid",
    "Siliana",
    "Sousse",
    "Tataouine",
    "Tozeur",
    "Tunis",
    "Zaghouan",
)


@dataclass(frozen=True)
class CounterpartDraft:
    """Counterpart data as confirmed by the user, before it exists in the catalog."""

    counterpart_type: CounterpartType
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

    @property
    def display_name(self) -> str:
        if self.company_name and self.company_name.strip():
            return self.company_name.strip()
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


@dataclass(frozen=True)
class CounterpartRecord:
    """Read-only snapshot of a catalog counterpart, as seen by the matcher."""

    id: UUID
    role: CounterpartRole
    counterpart_type: CounterpartType
    first_name: str | None = None
    last_name: str | None = None
    company_name: str | None = None
    identifier_type: str | None = None
    identifier_value: str | None = None
    country: str | None = None
    governorate: str | None = None

    @property
    def comparison_name(self) -> str:
        """company_name, else "first last", lowercased and trimmed."""
        if self.company_name and self.company_name.strip():
            return self.company_name.strip().lower()
        return f"{self.first_name or ''} {self.last_name or ''}".strip().lower()

    @property
    def is_foreign(self) -> bool:
        return CounterpartType(self.counterpart_type).is_foreign


# -----------------------------------------------------------------------------
# Resolution variants
# -----------------------------------------------------------------------------


class CounterpartDecision(str, Enum):
    MATCHED = "matched"
    SELECT_EXISTING = "select_existing"
    CREATE_NEW = "create_new"


@dataclass(frozen=True)
class MatchedCounterpart:
    """Auto-selected highest-ranked catalog match; the user confirms or overrides."""

    counterpart: CounterpartRecord
    reason: str
    confidence: str
    decision: CounterpartDecision = field(default=CounterpartDecision.MATCHED, init=False)

    @property
    def counterpart_id(self) -> UUID:
        return self.counterpart.id

    @property
    def counterpart_type(self) -> CounterpartType:
        return CounterpartType(self.counterpart.counterpart_type)


@dataclass(frozen=True)
class SelectedCounterpart:
    """User searched the catalog; ``counterpart`` stays None until one is picked."""

    counterpart: CounterpartRecord | None = None
    decision: CounterpartDecision = field(
        default=CounterpartDecision.SELECT_EXISTING, init=False
    )

    @property
    def counterpart_id(self) -> UUID | None:
        return self.counterpart.id if self.counterpart else None

    @property
    def counterpart_type(self) -> CounterpartType | None:
        if self.counterpart is None:
            return None
        return CounterpartType(self.counterpart.counterpart_type)


@dataclass(frozen=True)
class NewCounterpart:
    """Counterpart to be created at commit under the reserved ``counterpart_id``."""

    draft: CounterpartDraft
    counterpart_id: UUID
    decision: CounterpartDecision = field(default=CounterpartDecision.CREATE_NEW, init=False)

    @property
    def counterpart_type(self) -> CounterpartType:
        return self.draft.counterpart_type


CounterpartResolution = MatchedCounterpart | SelectedCounterpart | NewCounterpart


class CounterpartMatchType(str, Enum):
    HINT = "hint"
    IDENTIFIER = "identifier"
    NAME = "name"


@dataclass(frozen=True)
class RankedCounterpart:
    """One matcher candidate for the document counterpart."""

    counterpart: CounterpartRecord
    score: int
    match_type: CounterpartMatchType
    reason: str
