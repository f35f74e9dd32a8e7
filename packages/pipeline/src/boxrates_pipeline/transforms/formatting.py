"""
transforms/formatting.py — Shape reconciled tariffs into a sheet value matrix.

Joins one date's tariff rows with the location names, sorts them by the
sorting coefficient (ascending, missing coefficients last, then by name)
and renders each row in SHEET_HEADER column order. Numbers are rounded to
two places; missing values render as empty cells.

Usage:
    payload = format_tariff_sheet(tariff_rows, location_rows)
    payload.header      # list[str]
    payload.rows        # list[list[str | float]]
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import polars as pl

from boxrates_shared.constants import SHEET_HEADER, UNKNOWN_LOCATION
from boxrates_shared.numbers import as_float

_TARIFF_SCHEMA: dict[str, Any] = {
    "warehouse_id": pl.Int64,
    "tariff_date": pl.String,
    "delivery_fbo": pl.Float64,
    "delivery_fbs": pl.Float64,
    "storage": pl.Float64,
    "sorting_coefficient": pl.Float64,
    "dt_next_box": pl.String,
    "dt_till_max": pl.String,
}

_NUMERIC_COLUMNS = ["delivery_fbo", "delivery_fbs", "storage", "sorting_coefficient"]

_OUTPUT_COLUMNS = [
    "warehouse_name",
    "tariff_date",
    "delivery_fbo",
    "delivery_fbs",
    "storage",
    "sorting_coefficient",
    "dt_next_box",
    "dt_till_max",
]


@dataclass
class SheetPayload:
    """Header row plus value rows for one publish."""

    header: list[str] = field(default_factory=lambda: list(SHEET_HEADER))
    rows: list[list[Any]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def is_empty(self) -> bool:
        return not self.rows


def _iso(value: date | str | None) -> str | None:
    if value is None:
        return None
    return value.isoformat() if isinstance(value, date) else str(value)


def tariffs_frame(tariffs: Sequence[dict[str, Any]]) -> pl.DataFrame:
    """Project box_tariffs rows onto the columns the sheet shows."""
    return pl.DataFrame(
        {
            "warehouse_id": [t["warehouse_id"] for t in tariffs],
            "tariff_date": [_iso(t["tariff_date"]) for t in tariffs],
            "delivery_fbo": [as_float(t.get("box_delivery_base")) for t in tariffs],
            "delivery_fbs": [as_float(t.get("box_delivery_marketplace_base")) for t in tariffs],
            "storage": [as_float(t.get("box_storage_base")) for t in tariffs],
            "sorting_coefficient": [as_float(t.get("sorting_coefficient")) for t in tariffs],
            "dt_next_box": [t.get("dt_next_box") for t in tariffs],
            "dt_till_max": [_iso(t.get("dt_till_max")) for t in tariffs],
        },
        schema=_TARIFF_SCHEMA,
    )


def locations_frame(locations: Sequence[dict[str, Any]]) -> pl.DataFrame:
    return pl.DataFrame(
        {
            "warehouse_id": [loc["id"] for loc in locations],
            "warehouse_name": [loc["warehouse_name"] for loc in locations],
        },
        schema={"warehouse_id": pl.Int64, "warehouse_name": pl.String},
    )


def sorted_tariff_frame(
    tariffs: Sequence[dict[str, Any]],
    locations: Sequence[dict[str, Any]],
) -> pl.DataFrame:
    """Joined, rounded and ordered frame in output column order."""
    df = tariffs_frame(tariffs).join(locations_frame(locations), on="warehouse_id", how="left")
    df = df.with_columns(
        pl.col("warehouse_name").fill_null(UNKNOWN_LOCATION),
        *[pl.col(c).round(2) for c in _NUMERIC_COLUMNS],
    )
    return df.sort(["sorting_coefficient", "warehouse_name"], nulls_last=True).select(
        _OUTPUT_COLUMNS
    )


def format_tariff_sheet(
    tariffs: Sequence[dict[str, Any]],
    locations: Sequence[dict[str, Any]],
) -> SheetPayload:
    """
    Build the publishable matrix for one date.

    Args:
        tariffs:   box_tariffs rows as dicts (store.tariffs_for_date()).
        locations: warehouses rows as dicts (store.all_locations()).

    Returns:
        SheetPayload; empty rows when there are no tariffs.
    """
    if not tariffs:
        return SheetPayload()

    df = sorted_tariff_frame(tariffs, locations)
    rows = [
        ["" if value is None else value for value in row]
        for row in df.iter_rows()
    ]
    return SheetPayload(rows=rows)
