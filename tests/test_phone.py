"""Phone normalization and name parsing."""

import pytest

from bobcontacts.domain.phone import (
    clean_phone,
    country_calling_code,
    normalize_phone,
    parse_full_name,
    phone_variants,
    region_for_phone,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("0612345678", "+33612345678"),
        ("06 12 34 56 78", "+33612345678"),
        ("06.12.34.56.78", "+33612345678"),
        ("+1 (415) 555-2671", "+14155552671"),
        ("+33 6 12 34 56 78", "+33612345678"),
        ("++33612345678", "+33612345678"),
        ("4155552671", "4155552671"),
        ("0012345678", "0012345678"),
        ("12345", None),
        ("", None),
        (None, None),
        ("abc", None),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_normalize_is_idempotent():
    once = normalize_phone("06 12 34 56 78")
    assert normalize_phone(once) == once


def test_clean_phone_keeps_digits_and_plus():
    assert clean_phone(" +33 (0)6-12 ") == "+330612"
    assert clean_phone(None) == ""


def test_phone_variants_include_national_form():
    variants = phone_variants("+33612345678")
    assert variants[0] == "+33612345678"
    assert "0612345678" in variants
    assert "33612345678" in variants
    assert "0033612345678" in variants
    assert len(variants) == len(set(variants))


def test_country_calling_code_and_region():
    assert country_calling_code("+33612345678") == "+33"
    assert country_calling_code("+14155552671") == "+1"
    assert country_calling_code("0612345678") is None
    assert region_for_phone("+33612345678") == "FR"
    assert region_for_phone("+14155552671") == "US"
    assert region_for_phone("4155552671") == "unknown"


@pytest.mark.parametrize(
    "full_name,expected",
    [
        ("Martin - Alice", ("Alice", "Martin")),
        ("Alice Marie Martin", ("Alice Marie", "Martin")),
        ("Cher", ("", "Cher")),
        ("   ", ("", "")),
        (None, ("", "")),
    ],
)
def test_parse_full_name(full_name, expected):
    assert parse_full_name(full_name) == expected
