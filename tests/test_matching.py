"""Tests for name and phone matching."""

import pytest

from handshake.verification.matching import (
    names_match,
    normalize_name,
    normalize_phone,
    phones_match,
)

PHONE_INPUTS = [
    "9876543210",
    "+91 98765 43210",
    "+91-98765-43210",
    "098765 43210",
    "(987) 654-3210",
    "12345",
    "",
    "abc",
]


class TestNormalizePhone:
    """Tests for phone normalization."""

    @pytest.mark.parametrize("raw", [
        "9876543210",
        "+91 98765 43210",
        "+91-98765-43210",
        "0091 9876543210",
        "098765 43210",
        " 98765.43210 ",
    ])
    def test_formats_reduce_to_same_number(self, raw):
        assert normalize_phone(raw) == "9876543210"

    def test_short_numbers_are_kept(self):
        assert normalize_phone("12-345") == "12345"

    def test_empty_and_none(self):
        assert normalize_phone(None) == ""
        assert normalize_phone("") == ""
        assert normalize_phone("no digits") == ""

    @pytest.mark.parametrize("raw", PHONE_INPUTS)
    def test_idempotent(self, raw):
        once = normalize_phone(raw)
        assert normalize_phone(once) == once

    def test_custom_digit_count(self):
        assert normalize_phone("+44 20 7946 0958", digits=8) == "79460958"


class TestPhonesMatch:

    def test_country_code_is_ignored(self):
        assert phones_match("+91 98765 43210", "9876543210")

    def test_different_numbers_do_not_match(self):
        assert not phones_match("9876543211", "9876543210")

    def test_missing_asserted_phone_fails_when_recorded(self):
        assert not phones_match("", "9876543210")
        assert not phones_match(None, "9876543210")

    def test_no_recorded_phone_skips_check(self):
        assert phones_match("", None)
        assert phones_match("1234567890", None)
        assert phones_match("1234567890", "")

    @pytest.mark.parametrize("a", PHONE_INPUTS[:5])
    @pytest.mark.parametrize("b", PHONE_INPUTS[:5])
    def test_match_iff_normalized_equal(self, a, b):
        assert phones_match(a, b) == (normalize_phone(a) == normalize_phone(b))


class TestNames:
    """Tests for name normalization and matching."""

    def test_trims_and_folds_case(self):
        assert normalize_name("  Ravi Kumar ") == "ravi kumar"

    def test_inner_spaces_are_kept(self):
        assert normalize_name("Ravi  Kumar") == "ravi  kumar"

    def test_casefold_handles_special_letters(self):
        assert names_match("STRASSE", "straße")

    def test_same_name_different_case(self):
        assert names_match(" ravi kumar ", "Ravi Kumar")

    def test_misspelling_is_rejected(self):
        assert not names_match("Ravi Kummar", "Ravi Kumar")
        assert not names_match("Ravi  Kumar", "Ravi Kumar")

    def test_empty_name_never_matches(self):
        assert not names_match("", "")
        assert not names_match("   ", "Ravi Kumar")
        assert not names_match(None, "Ravi Kumar")

    @pytest.mark.parametrize("raw", ["Ravi", "  RAVI  ", "ravi kumar", "Ávila "])
    def test_normalize_idempotent(self, raw):
        once = normalize_name(raw)
        assert normalize_name(once) == once
