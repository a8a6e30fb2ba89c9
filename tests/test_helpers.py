"""Small helpers shared by the stores and routes."""

from souq.helpers import ct_equal, is_valid_email, new_id, parse_float, to_iso


def test_to_iso_is_utc():
    assert to_iso(0) == "1970-01-01T00:00:00+00:00"


def test_to_iso_passes_none_through():
    assert to_iso(None) is None


def test_new_id_is_unique_hex():
    a, b = new_id(), new_id()
    assert a != b
    assert len(a) == 32
    int(a, 16)


def test_is_valid_email():
    assert is_valid_email("alice@example.com")
    assert is_valid_email("  bob@shop.eg ")
    assert not is_valid_email("alice@example")
    assert not is_valid_email("not an email")
    assert not is_valid_email("")
    assert not is_valid_email(None)


def test_parse_float_treats_blank_as_missing():
    assert parse_float("12.5") == 12.5
    assert parse_float("0") == 0.0
    assert parse_float("") is None
    assert parse_float("   ") is None
    assert parse_float(None) is None
    assert parse_float("abc") is None


def test_ct_equal():
    assert ct_equal("abc", "abc")
    assert not ct_equal("abc", "abd")
