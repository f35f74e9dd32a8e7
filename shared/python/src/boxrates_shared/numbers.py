"""
numbers.py — Tariff number parsing and rounding helpers.

The tariff API is loose about numbers: the same rate can arrive as 12.5,
"12.5", "12,5" or "1 012,5", and a missing rate arrives as "-" or "".
Everything here converges on decimal.Decimal or None.

Usage:
    from boxrates_shared.numbers import parse_decimal, quantize_rate

    parse_decimal("12,5")      # Decimal("12.5")
    parse_decimal(12.5)        # Decimal("12.5")
    parse_decimal("-")         # None
    parse_decimal("n/a")       # None
    quantize_rate(Decimal("1.005"))  # Decimal("1.01")
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from boxrates_shared.constants import NULL_MARKERS

_TWO_PLACES = Decimal("0.01")
_SPACES = str.maketrans("", "", " \u00a0\u202f")


def parse_decimal(value: object) -> Decimal | None:
    """
    Normalize a raw tariff value to Decimal or None.

    Never raises: anything that does not parse as a finite number is None.
    Applying it to its own output returns the same value.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # repr() keeps 12.5 as "12.5" instead of the binary expansion
        result = Decimal(repr(value)) if value == value else None
    elif isinstance(value, str):
        s = value.strip()
        if s in NULL_MARKERS:
            return None
        s = s.translate(_SPACES).replace(",", ".")
        try:
            result = Decimal(s)
        except InvalidOperation:
            return None
    else:
        return None

    if result is None or not result.is_finite():
        return None
    return result


def quantize_rate(value: Decimal | None) -> Decimal | None:
    """Round to the store's two decimal places (half-up)."""
    if value is None:
        return None
    return value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def as_float(value: Decimal | float | int | None) -> float | None:
    if value is None:
        return None
    return float(value)
