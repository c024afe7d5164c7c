"""Currency -- ISO 4217 registry for the currencies the intake pipeline accepts."""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def quantum(self) -> Decimal:
        """Smallest presentable unit, for Decimal.quantize()."""
        if self.decimal_places == 0:
            return Decimal("1")
        return Decimal("0." + "0" * (self.decimal_places - 1) + "1")


class CurrencyRegistry:
    """
    Currencies a document may be issued in.

    The settlement currency (TND) carries 3 decimal places; foreign document
    amounts are converted into it at a per-document rate.
    """

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        "TND": CurrencyInfo("TND", 3, "Tunisian Dinar"),
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "CNY": CurrencyInfo("CNY", 2, "Chinese Yuan"),
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "AED": CurrencyInfo("AED", 2, "UAE Dirham"),
        "SAR": CurrencyInfo("SAR", 2, "Saudi Riyal"),
        "MAD": CurrencyInfo("MAD", 2, "Moroccan Dirham"),
        "DZD": CurrencyInfo("DZD", 2, "Algerian Dinar"),
        "LYD": CurrencyInfo("LYD", 3, "Libyan Dinar"),
        "TRY": CurrencyInfo("TRY", 2, "Turkish Lira"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "QAR": CurrencyInfo("QAR", 2, "Qatari Riyal"),
        "KWD": CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
        "EGP": CurrencyInfo("EGP", 2, "Egyptian Pound"),
        "SEK": CurrencyInfo("SEK", 2, "Swedish Krona"),
        "NOK": CurrencyInfo("NOK", 2, "Norwegian Krone"),
        "DKK": CurrencyInfo("DKK", 2, "Danish Krone"),
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return bool(code) and code.upper() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        return cls._CURRENCIES.get(code.upper()) if code else None

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        """Decimal places of the currency; unknown codes raise ValueError."""
        info = cls.get_info(code)
        if info is None:
            raise ValueError(f"Unknown currency: {code}")
        return info.decimal_places

    @classmethod
    def validate(cls, code: str) -> str:
        """Return the normalized code or raise ValueError."""
        normalized = (code or "").upper().strip()
        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Invalid ISO 4217 currency code: {code}")
        return normalized

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES)
