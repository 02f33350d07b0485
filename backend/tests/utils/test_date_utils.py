# tests/utils/test_date_utils.py
"""
Tests for date arithmetic helpers.
"""

from datetime import date

from tracker.utils.date_utils import add_months, date_range, month_start, months_between


class TestDateRange:
    def test_inclusive_range(self):
        """Should include both ends."""
        assert date_range(date(2024, 1, 30), date(2024, 2, 1)) == [
            date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1),
        ]

    def test_single_day(self):
        assert date_range(date(2024, 5, 5), date(2024, 5, 5)) == [date(2024, 5, 5)]

    def test_reversed_range_is_empty(self):
        """Should return nothing when start is after end."""
        assert date_range(date(2024, 5, 6), date(2024, 5, 5)) == []


class TestMonthArithmetic:
    def test_month_start(self):
        assert month_start(date(2024, 7, 19)) == date(2024, 7, 1)

    def test_add_months_clamps_day(self):
        """Should clamp the day to the end of a shorter month."""
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)

    def test_add_months_crosses_year(self):
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)
        assert add_months(date(2024, 12, 31), 1) == date(2025, 1, 31)

    def test_add_negative_months(self):
        assert add_months(date(2024, 3, 31), -12) == date(2023, 3, 31)
        assert add_months(date(2024, 1, 15), -1) == date(2023, 12, 15)

    def test_months_between_ignores_day(self):
        assert months_between(date(2024, 1, 31), date(2024, 2, 1)) == 1
        assert months_between(date(2023, 11, 1), date(2024, 2, 28)) == 3
