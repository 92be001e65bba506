import pytest

from order_tracker.services.formatting import (
    calculate_stats,
    format_count,
    format_currency,
    format_days,
    format_duration,
    format_percent,
    percent_of,
    round_half_up,
)


class TestFormatting:
    @pytest.mark.parametrize(
        "amount, expected",
        [(1234.4, "$1,234"), (1234.5, "$1,235"), (0, "$0"), (None, "$0"), (-50, "-$50"), (1000000, "$1,000,000")],
    )
    def test_currency(self, amount, expected):
        assert format_currency(amount) == expected

    def test_percent(self):
        assert format_percent(50) == "50.0%"
        assert format_percent(33.333) == "33.3%"
        assert format_percent(None) == "N/A"

    def test_count_and_days(self):
        assert format_count(1234) == "1,234"
        assert format_count(None) == "0"
        assert format_days(1) == "1 day"
        assert format_days(12) == "12 days"
        assert format_days(None) == "N/A"

    @pytest.mark.parametrize(
        "seconds, expected",
        [(3 * 86400 + 4 * 3600 + 120, "3d 4h"), (5 * 3600 + 12 * 60, "5h 12m"), (7 * 60 + 30, "7m"), (None, "N/A")],
    )
    def test_duration(self, seconds, expected):
        assert format_duration(seconds) == expected

    def test_round_half_up_and_percent_of(self):
        assert round_half_up(2.5) == 3.0
        assert round_half_up(0.125, 2) == 0.13
        assert percent_of(1, 3) == 33.3
        assert percent_of(5, 0) == 0.0


class TestCalculateStats:
    def test_empty_sample(self):
        assert calculate_stats([]) == {"count": 0, "min": None, "max": None, "mean": None, "median": None, "p90": None}

    def test_ten_values(self):
        stats = calculate_stats([10, 1, 9, 2, 8, 3, 7, 4, 6, 5])
        assert stats["count"] == 10
        assert stats["min"] == 1
        assert stats["max"] == 10
        assert stats["mean"] == 5.5
        assert stats["median"] == 5.5
        assert stats["p90"] == 10

    def test_odd_sample_median(self):
        stats = calculate_stats([3, 1, 2])
        assert stats["median"] == 2
        assert stats["p90"] == 3
