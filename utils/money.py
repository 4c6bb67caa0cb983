"""
Price arithmetic helpers.
"""

import math


def round_half_up(value: float) -> int:
    """Round to the nearest whole currency unit, halves away from zero (12.5 -> 13)."""
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def round_price(value: float) -> float:
    """Round to cents."""
    return round(value, 2)
