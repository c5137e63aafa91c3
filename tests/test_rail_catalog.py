from decimal import Decimal

import pytest

from app.catalog.currencies import has_valid_precision, is_known_currency, to_minor_units
from app.catalog.rails import DEFAULT_RAIL_TABLE, Rail, RailTable, load_rail_table, select_rail
from app.payouts.errors import UnsupportedCorridor
from settings import settings


def test_bank_transfer_currency_wins_over_country():
    # NGN is a bank-transfer currency even for a creator banking in the US
    assert select_rail("NGN", "US") == Rail.BANK_TRANSFER
    assert select_rail("inr", "IN") == Rail.BANK_TRANSFER


def test_connect_country_when_currency_not_on_bank_rail():
    assert select_rail("USD", "US") == Rail.CONNECT
    assert select_rail("EUR", "de") == Rail.CONNECT
    assert select_rail("GBP", "GB") == Rail.CONNECT


def test_unsupported_corridor():
    with pytest.raises(UnsupportedCorridor) as exc:
        select_rail("USD", "ZZ")
    assert exc.value.code == "UNSUPPORTED_CORRIDOR"
    assert exc.value.retryable is False


def test_select_rail_uses_explicit_table():
    table = RailTable(version="t1", bank_transfer_currencies=frozenset({"USD"}), connect_countries=frozenset())
    assert select_rail("USD", "US", table) == Rail.BANK_TRANSFER
    with pytest.raises(UnsupportedCorridor):
        select_rail("EUR", "DE", table)


def test_load_rail_table_defaults_and_overrides(monkeypatch):
    assert load_rail_table() is DEFAULT_RAIL_TABLE

    monkeypatch.setattr(settings, "RAIL_A_COUNTRIES", "us, ca")
    table = load_rail_table()
    assert table.version == "settings"
    assert table.connect_countries == frozenset({"US", "CA"})
    assert table.bank_transfer_currencies == DEFAULT_RAIL_TABLE.bank_transfer_currencies
    with pytest.raises(UnsupportedCorridor):
        select_rail("EUR", "DE", table)


def test_rail_table_as_dict_is_sorted():
    d = DEFAULT_RAIL_TABLE.as_dict()
    assert d["version"] == "builtin-1"
    assert d["bank_transfer"]["currencies"] == sorted(d["bank_transfer"]["currencies"])
    assert "US" in d["connect"]["countries"]


def test_currency_precision():
    assert is_known_currency("ngn")
    assert not is_known_currency("XYZ")
    assert has_valid_precision(Decimal("10.25"), "USD")
    assert not has_valid_precision(Decimal("10.255"), "USD")
    assert has_valid_precision(Decimal("1500"), "JPY")
    assert not has_valid_precision(Decimal("1500.5"), "JPY")
    assert has_valid_precision(Decimal("100.00"), "UGX")


def test_to_minor_units():
    assert to_minor_units(Decimal("12.34"), "USD") == 1234
    assert to_minor_units(Decimal("500"), "JPY") == 500
