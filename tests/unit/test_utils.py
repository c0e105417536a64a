"""
Unit tests for currency and date utilities
"""

from datetime import date
from decimal import Decimal

import pytest

from cashgrid.config.settings import BucketWidth
from cashgrid.utils import CurrencyUtils, DateUtils


class TestCurrencyUtils:
    """Parsing, rounding and formatting of amounts"""

    @pytest.mark.parametrize("raw,expected", [
        ("1,234.56", Decimal("1234.56")),
        ("$1,000", Decimal("1000")),
        ("(250.75)", Decimal("-250.75")),
        ("-12.5", Decimal("-12.5")),
        ("  42 ", Decimal("42")),
    ])
    def test_parse_amount(self, raw, expected):
        assert CurrencyUtils.parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", ["", "abc", "1.2.3", None, "NaN", "Infinity"])
    def test_parse_amount_invalid(self, raw):
        assert CurrencyUtils.parse_amount(raw) is None

    def test_cell_input_rounds_and_defaults_to_zero(self):
        assert CurrencyUtils.parse_cell_input("10.005") == Decimal("10.01")
        assert CurrencyUtils.parse_cell_input("garbage") == Decimal("0.00")
        assert CurrencyUtils.parse_cell_input("1e30") == Decimal("0.00")

    def test_round2_out_of_range(self):
        with pytest.raises(ValueError):
            CurrencyUtils.round2(Decimal("1e30"))

    def test_round2_half_up(self):
        assert CurrencyUtils.round2(2.675) == Decimal("2.68")
        assert CurrencyUtils.round2("-0.005") == Decimal("-0.01")
        with pytest.raises(ValueError):
            CurrencyUtils.round2(float("nan"))

    def test_format_amount(self):
        assert CurrencyUtils.format_amount(Decimal("1234.5")) == "1,234.50"
        assert CurrencyUtils.format_amount(Decimal("-20")) == "(20.00)"
        assert CurrencyUtils.format_amount(Decimal("5"), show_symbol=True) == "$5.00"
        assert CurrencyUtils.format_amount(None) == "N/A"

    def test_sum_amounts(self):
        assert CurrencyUtils.sum_amounts([Decimal("1.10"), Decimal("2.20")]) == Decimal("3.30")
        assert CurrencyUtils.sum_amounts([]) == Decimal("0.00")


class TestDateUtils:
    """Bucket dates and labels"""

    def test_weekly_and_monthly_starts(self):
        assert DateUtils.bucket_start_dates(date(2026, 1, 5), 3, BucketWidth.WEEKLY) == [
            date(2026, 1, 5), date(2026, 1, 12), date(2026, 1, 19),
        ]
        assert DateUtils.bucket_start_dates(date(2026, 1, 31), 2, BucketWidth.MONTHLY) == [
            date(2026, 1, 31), date(2026, 2, 28),
        ]

    def test_generic_labels_with_forecast(self):
        assert DateUtils.bucket_labels(2, 2) == ["Wk 1", "Wk 2", "F1", "F2"]
        assert DateUtils.bucket_labels(1, width=BucketWidth.BIWEEKLY) == ["Period 1"]
        assert DateUtils.bucket_labels(1, width=BucketWidth.MONTHLY) == ["Month 1"]

    def test_provided_labels_win(self):
        assert DateUtils.bucket_labels(3, provided=["a", "b"]) == ["a", "b", "Wk 3"]

    def test_labels_from_start_date(self):
        labels = DateUtils.bucket_labels(2, width=BucketWidth.MONTHLY, start_date=date(2026, 3, 1))
        assert labels == ["Mar 2026", "Apr 2026"]

    def test_parse_date(self):
        assert DateUtils.parse_date("2026-02-01T10:00:00") == date(2026, 2, 1)
        assert DateUtils.parse_date("not a date") is None
        assert DateUtils.parse_date(None) is None
