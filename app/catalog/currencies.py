from __future__ import annotations

from decimal import Decimal

# ISO 4217 codes the engine accepts, with their minor-unit exponent.
ISO_CURRENCIES: dict[str, int] = {
    # Americas
    "USD": 2, "CAD": 2, "MXN": 2, "BRL": 2, "ARS": 2, "CLP": 0, "COP": 2,
    "CRC": 2, "PEN": 2, "UYU": 2,
    # Europe
    "EUR": 2, "GBP": 2, "CHF": 2, "DKK": 2, "NOK": 2, "SEK": 2, "PLN": 2,
    "CZK": 2, "HUF": 2, "RON": 2, "BGN": 2, "TRY": 2, "UAH": 2, "GEL": 2,
    # Middle East
    "AED": 2, "SAR": 2, "ILS": 2, "QAR": 2,
    # Asia-Pacific
    "JPY": 0, "KRW": 0, "CNY": 2, "HKD": 2, "SGD": 2, "INR": 2, "IDR": 2,
    "MYR": 2, "PHP": 2, "THB": 2, "VND": 0, "BDT": 2, "PKR": 2, "LKR": 2,
    "NPR": 2, "AUD": 2, "NZD": 2,
    # Africa
    "NGN": 2, "GHS": 2, "KES": 2, "ZAR": 2, "TZS": 2, "UGX": 0, "EGP": 2,
    "MAD": 2, "XOF": 0, "XAF": 0, "RWF": 0, "ZMW": 2,
}

ZERO_DECIMAL_CURRENCIES = {code for code, exp in ISO_CURRENCIES.items() if exp == 0}


def normalize_currency(code: str | None) -> str:
    return (code or "").strip().upper()


def is_known_currency(code: str | None) -> bool:
    return normalize_currency(code) in ISO_CURRENCIES


def minor_units(code: str) -> int:
    return ISO_CURRENCIES[normalize_currency(code)]


def has_valid_precision(amount: Decimal, code: str) -> bool:
    if not amount.is_finite():
        return False
    exponent = amount.normalize().as_tuple().exponent
    return -exponent <= minor_units(code)


def to_minor_units(amount: Decimal, code: str) -> int:
    """Provider APIs that take integer amounts (cents, yen, ...)."""
    exp = minor_units(code)
    return int((amount * (Decimal(10) ** exp)).quantize(Decimal("1")))
