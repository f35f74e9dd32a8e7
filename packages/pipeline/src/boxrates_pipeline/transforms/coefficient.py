"""
transforms/coefficient.py — Derived sorting coefficient for a tariff row.

    coefficient = 0.5 * delivery_base + 0.3 * marketplace_base + 0.2 * storage_base

Missing base rates count as zero in the sum; the coefficient is None only
when all three base rates are missing. The value orders rows in the
published sheet and is stored rounded to two decimal places.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal

from boxrates_shared.constants import COEFFICIENT_WEIGHTS
from boxrates_shared.numbers import quantize_rate


def sorting_coefficient(rates: Mapping[str, Decimal | None]) -> Decimal | None:
    bases = {name: rates.get(name) for name in COEFFICIENT_WEIGHTS}
    if all(value is None for value in bases.values()):
        return None
    total = sum(
        (COEFFICIENT_WEIGHTS[name] * (value or Decimal(0)) for name, value in bases.items()),
        Decimal(0),
    )
    return quantize_rate(total)
