"""
Display formatting and small statistics helpers shared by the reports.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Sequence


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a spreadsheet does (2.5 -> 3), not banker's rounding."""
    exponent = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))


# PUBLIC_INTERFACE
def format_currency(amount: Optional[float]) -> str:
    """Whole dollars with thousands separators: 1234.4 -> '$1,234', -50 -> '-$50'."""
    if amount is None:
        return "$0"
    whole = int(round_half_up(amount))
    sign = "-" if whole < 0 else ""
    return f"{sign}${abs(whole):,}"


# PUBLIC_INTERFACE
def format_percent(value: Optional[float]) -> str:
    """A value already expressed in percent, one decimal: 50 -> '50.0%'."""
    if value is None:
        return "N/A"
    return f"{round_half_up(value, 1):.1f}%"


def format_count(value: Optional[int]) -> str:
    return f"{int(value or 0):,}"


def format_days(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    days = int(value) if float(value).is_integer() else value
    return f"{days:,} day" if days == 1 else f"{days:,} days"


# PUBLIC_INTERFACE
def format_duration(seconds: Optional[float]) -> str:
    """Compact duration: '3d 4h', '5h 12m' or '7m'."""
    if seconds is None or seconds < 0:
        return "N/A"
    total = int(seconds)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def percent_of(part: float, whole: float) -> float:
    """part / whole in percent with one decimal; 0.0 when whole is 0."""
    if not whole:
        return 0.0
    return round_half_up(part / whole * 100.0, 1)


# PUBLIC_INTERFACE
def calculate_stats(values: Sequence[float]) -> Dict[str, Optional[float]]:
    """
    count, min, max, mean, median and p90 of a sample.

    p90 is the value at index floor(0.9 * count) of the sorted sample. Empty
    input gives count 0 and None for the rest.
    """
    if not values:
        return {"count": 0, "min": None, "max": None, "mean": None, "median": None, "p90": None}
    ordered = sorted(values)
    count = len(ordered)
    middle = count // 2
    median = ordered[middle] if count % 2 else (ordered[middle - 1] + ordered[middle]) / 2
    p90 = ordered[min(math.floor(count * 0.9), count - 1)]
    return {
        "count": count,
        "min": ordered[0],
        "max": ordered[-1],
        "mean": sum(ordered) / count,
        "median": median,
        "p90": p90,
    }
