from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from app.catalog.currencies import normalize_currency
from app.payouts.errors import UnsupportedCorridor
from settings import settings


class Rail(str, Enum):
    CONNECT = "connect"  # Rail A: hosted connected accounts
    BANK_TRANSFER = "bank_transfer"  # Rail B: direct bank transfer


# Currencies paid out through the bank-transfer rail regardless of country.
DEFAULT_BANK_TRANSFER_CURRENCIES = frozenset(
    {
        # Africa
        "NGN", "GHS", "KES", "ZAR", "TZS", "UGX", "EGP",
        # Asia
        "INR", "IDR", "MYR", "PHP", "THB", "VND", "BDT", "PKR", "LKR", "NPR", "CNY", "KRW",
        # Latin America
        "BRL", "MXN", "ARS", "CLP", "COP", "CRC", "UYU",
        # Middle East & Europe
        "TRY", "ILS", "MAD", "UAH", "GEL",
    }
)

# Countries where creators can hold a connected account.
DEFAULT_CONNECT_COUNTRIES = frozenset(
    {
        "US", "CA", "GB", "IE", "AU", "NZ",
        # SEPA
        "AT", "BE", "DE", "DK", "ES", "FI", "FR", "IT", "LU", "NL", "NO", "PT", "SE", "CH",
        "CZ", "PL",
        "JP", "SG", "HK", "AE",
    }
)


@dataclass(frozen=True)
class RailTable:
    version: str
    bank_transfer_currencies: frozenset[str] = field(default_factory=frozenset)
    connect_countries: frozenset[str] = field(default_factory=frozenset)

    def as_dict(self) -> dict:
        return {
            "version": self.version,
            Rail.BANK_TRANSFER.value: {"currencies": sorted(self.bank_transfer_currencies)},
            Rail.CONNECT.value: {"countries": sorted(self.connect_countries)},
        }


DEFAULT_RAIL_TABLE = RailTable(
    version="builtin-1",
    bank_transfer_currencies=DEFAULT_BANK_TRANSFER_CURRENCIES,
    connect_countries=DEFAULT_CONNECT_COUNTRIES,
)


def _parse_codes(raw: str | None) -> frozenset[str]:
    return frozenset(i.strip().upper() for i in (raw or "").split(",") if i.strip())


def load_rail_table() -> RailTable:
    """
    Built-in table, with either side replaceable from settings
    (RAIL_B_CURRENCIES / RAIL_A_COUNTRIES as comma lists).
    """
    currencies = _parse_codes(settings.RAIL_B_CURRENCIES)
    countries = _parse_codes(settings.RAIL_A_COUNTRIES)
    if not currencies and not countries:
        return DEFAULT_RAIL_TABLE

    return RailTable(
        version="settings",
        bank_transfer_currencies=currencies or DEFAULT_BANK_TRANSFER_CURRENCIES,
        connect_countries=countries or DEFAULT_CONNECT_COUNTRIES,
    )


def select_rail(currency: str, country: str, table: RailTable | None = None) -> Rail:
    table = table or load_rail_table()
    cur = normalize_currency(currency)
    ctry = (country or "").strip().upper()

    if cur in table.bank_transfer_currencies:
        return Rail.BANK_TRANSFER
    if ctry in table.connect_countries:
        return Rail.CONNECT

    raise UnsupportedCorridor(f"No payout rail for currency={cur} country={ctry or '-'}")
