"""
constants.py — shared constants used across the pipeline workers.

Column names of the nine tariff rate fields, the published sheet header and
the sorting coefficient weights are defined here so the store, the
transforms and the tests agree on them.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Final

# ---------------------------------------------------------------------------
# Tariff rate columns, grouped by category
# ---------------------------------------------------------------------------
DELIVERY_FIELDS: Final[tuple[str, ...]] = (
    "box_delivery_base",
    "box_delivery_liter",
    "box_delivery_coef_expr",
)
MARKETPLACE_FIELDS: Final[tuple[str, ...]] = (
    "box_delivery_marketplace_base",
    "box_delivery_marketplace_liter",
    "box_delivery_marketplace_coef_expr",
)
STORAGE_FIELDS: Final[tuple[str, ...]] = (
    "box_storage_base",
    "box_storage_liter",
    "box_storage_coef_expr",
)
RATE_FIELDS: Final[tuple[str, ...]] = DELIVERY_FIELDS + MARKETPLACE_FIELDS + STORAGE_FIELDS

# ---------------------------------------------------------------------------
# Sorting coefficient: weighted sum of the three base rates
# ---------------------------------------------------------------------------
COEFFICIENT_WEIGHTS: Final[dict[str, Decimal]] = {
    "box_delivery_base": Decimal("0.5"),
    "box_delivery_marketplace_base": Decimal("0.3"),
    "box_storage_base": Decimal("0.2"),
}

# Values the API uses for "no rate"
NULL_MARKERS: Final[frozenset[str]] = frozenset({"", "-", "—"})

# ---------------------------------------------------------------------------
# Published sheet layout
# ---------------------------------------------------------------------------
SHEET_HEADER: Final[tuple[str, ...]] = (
    "Склад",
    "Дата тарифа",
    "Доставка FBO (₽)",
    "Доставка FBS (₽)",
    "Хранение (₽)",
    "Коэффициент",
    "След. бокс",
    "Макс. дата",
)
UNKNOWN_LOCATION: Final[str] = "Неизвестный склад"

# Column span cleared before each publish
SHEET_CLEAR_COLUMNS: Final[str] = "A:Z"

# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------
DEFAULT_CRON: Final[str] = "0 * * * *"
DEFAULT_TIMEZONE: Final[str] = "Europe/Moscow"
