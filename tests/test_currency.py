"""Currency conversion and formatting."""

import pytest

from souq.currency import (
    EGYPTIAN_PAYMENT_METHODS, convert_currency, format_money, is_supported,
    to_minor_units,
)
from souq.errors import CurrencyError


def test_usd_to_egp():
    assert convert_currency(100, "USD", "EGP") == 3100.0


def test_usd_to_eur_rounds_to_cents():
    assert convert_currency(19.99, "USD", "EUR") == 16.99


def test_same_currency_is_identity():
    assert convert_currency(42.42, "EGP", "EGP") == 42.42


def test_codes_are_case_insensitive():
    assert convert_currency(10, "usd", "egp") == 310.0
    assert is_supported("eur")


def test_unknown_pair_raises():
    with pytest.raises(CurrencyError) as exc:
        convert_currency(10, "USD", "GBP")
    assert exc.value.message == "Conversion rate not available for USD to GBP"
    assert exc.value.http_status == 400


def test_is_supported():
    assert is_supported("EGP")
    assert is_supported("USD")
    assert not is_supported("GBP")


def test_to_minor_units():
    assert to_minor_units(3100.0) == 310000
    assert to_minor_units(19.99) == 1999
    assert to_minor_units(0.1 + 0.2) == 30


def test_format_money():
    assert format_money(3100, "EGP") == "3,100.00 ج.م"
    assert format_money(100, "USD") == "$100.00"
    assert format_money(1234.5, "EUR") == "€1,234.50"
    assert format_money(5, "GBP") == "5 GBP"


def test_only_cards_are_available():
    available = [m["id"] for m in EGYPTIAN_PAYMENT_METHODS if m["available"]]
    assert available == ["card"]
