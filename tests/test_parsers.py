"""Tests for spreadsheet and API value parsers."""

from datetime import datetime

import pytest

from woo_ledger.utils.parsers import (
    normalize_order_number,
    normalize_order_status,
    parse_boolean,
    parse_date,
    parse_int,
    parse_money,
    parse_percent,
)


class TestParseMoney:

    @pytest.mark.parametrize("raw, expected", [
        ("$1,234.56", 1234.56),
        ("  $5 ", 5.0),
        ("-$3.50", -3.5),
        ("12.5abc", 12.5),
        ("", 0.0),
        (None, 0.0),
        ("n/a", 0.0),
        (7, 7.0),
    ])
    def test_values(self, raw, expected):
        assert parse_money(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", ["1e400", "$1e400", float("inf"), float("nan"), 10 ** 400])
    def test_non_finite_is_zero(self, raw):
        assert parse_money(raw) == 0.0


class TestParsePercent:

    def test_strips_sign_and_keeps_percentage(self):
        assert parse_percent("15%") == 15.0
        assert parse_percent(" 7.5 % ") == 7.5

    def test_empty_is_zero(self):
        assert parse_percent("") == 0.0
        assert parse_percent(None) == 0.0

    def test_overflow_is_zero(self):
        assert parse_percent("1e400%") == 0.0
        assert parse_percent(float("-inf")) == 0.0


class TestParseBoolean:

    @pytest.mark.parametrize("raw", ["yes", "YES", " Yes "])
    def test_yes_is_true(self, raw):
        assert parse_boolean(raw) is True

    @pytest.mark.parametrize("raw", ["no", "true", "1", "", None])
    def test_anything_else_is_false(self, raw):
        assert parse_boolean(raw) is False


class TestParseDate:

    def test_date_only(self):
        assert parse_date("2024-03-15") == datetime(2024, 3, 15)

    def test_twelve_hour_clock(self):
        assert parse_date("2024-03-15 2:05 PM") == datetime(2024, 3, 15, 14, 5)
        assert parse_date("2024-03-15 12:30 AM") == datetime(2024, 3, 15, 0, 30)
        assert parse_date("2024-03-15 12:30 pm") == datetime(2024, 3, 15, 12, 30)

    def test_iso_with_offset_becomes_naive_utc(self):
        assert parse_date("2024-03-15T10:00:00+02:00") == datetime(2024, 3, 15, 8, 0)
        assert parse_date("2024-03-15T10:00:00Z") == datetime(2024, 3, 15, 10, 0)

    @pytest.mark.parametrize("raw", ["", None, "not a date", "2024-02-30"])
    def test_invalid_is_none(self, raw):
        assert parse_date(raw) is None


class TestParseInt:

    def test_leading_integer(self):
        assert parse_int("123.45") == 123
        assert parse_int(" 42 units") == 42

    def test_invalid_is_zero(self):
        assert parse_int("abc") == 0
        assert parse_int(None) == 0
        assert parse_int("") == 0


class TestOrderNormalization:

    def test_status_lowercased_and_defaulted(self):
        assert normalize_order_status(" Completed ") == "completed"
        assert normalize_order_status("") == "pending"
        assert normalize_order_status(None) == "pending"

    @pytest.mark.parametrize("raw", ["Order #1791", "order #1791", "Order 1791", "1791", "#1791"])
    def test_order_number_canonical_form(self, raw):
        assert normalize_order_number(raw) == "Order #1791"

    def test_empty_order_number(self):
        assert normalize_order_number("  ") is None
        assert normalize_order_number(None) is None
