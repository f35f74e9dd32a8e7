"""
tests/test_transforms/test_formatting.py — Sheet payload shaping with polars.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from boxrates_shared.constants import SHEET_HEADER, UNKNOWN_LOCATION

from boxrates_pipeline.transforms.formatting import format_tariff_sheet, sorted_tariff_frame

LOCATIONS = [
    {"id": 1, "warehouse_name": "Коледино"},
    {"id": 2, "warehouse_name": "Электросталь"},
    {"id": 3, "warehouse_name": "Казань"},
]


def tariff(warehouse_id: int, coefficient: str | None, **overrides) -> dict:
    row = {
        "warehouse_id": warehouse_id,
        "tariff_date": date(2025, 11, 12),
        "box_delivery_base": Decimal("48.00"),
        "box_delivery_marketplace_base": Decimal("40.00"),
        "box_storage_base": Decimal("0.10"),
        "sorting_coefficient": Decimal(coefficient) if coefficient is not None else None,
        "dt_next_box": None,
        "dt_till_max": date(2025, 11, 30),
    }
    row.update(overrides)
    return row


class TestFormatTariffSheet:
    def test_header_matches_sheet_layout(self):
        payload = format_tariff_sheet([tariff(1, "36.02")], LOCATIONS)
        assert payload.header == list(SHEET_HEADER)
        assert len(payload.header) == 8

    def test_rows_sorted_by_coefficient_ascending(self):
        payload = format_tariff_sheet(
            [tariff(2, "59.88"), tariff(1, "36.02"), tariff(3, "40.50")],
            LOCATIONS,
        )
        names = [row[0] for row in payload.rows]
        assert names == ["Коледино", "Казань", "Электросталь"]

    def test_null_coefficient_sorts_last(self):
        payload = format_tariff_sheet(
            [tariff(1, None), tariff(2, "59.88"), tariff(3, "1.00")],
            LOCATIONS,
        )
        assert [row[0] for row in payload.rows] == ["Казань", "Электросталь", "Коледино"]
        assert payload.rows[-1][5] == ""

    def test_ties_broken_by_name(self):
        payload = format_tariff_sheet(
            [tariff(2, "10.00"), tariff(3, "10.00"), tariff(1, "10.00")],
            LOCATIONS,
        )
        assert [row[0] for row in payload.rows] == sorted(["Коледино", "Электросталь", "Казань"])

    def test_row_values_rounded_and_rendered(self):
        payload = format_tariff_sheet(
            [tariff(1, "36.02", box_storage_base=Decimal("0.14"), dt_next_box="2025-11-20")],
            LOCATIONS,
        )
        assert payload.rows == [
            ["Коледино", "2025-11-12", 48.0, 40.0, 0.14, 36.02, "2025-11-20", "2025-11-30"]
        ]

    def test_missing_values_render_as_empty_cells(self):
        payload = format_tariff_sheet(
            [tariff(1, None, box_delivery_base=None, dt_till_max=None)],
            LOCATIONS,
        )
        row = payload.rows[0]
        assert row[2] == ""
        assert row[5] == ""
        assert row[6] == ""
        assert row[7] == ""

    def test_unknown_location_label(self):
        payload = format_tariff_sheet([tariff(99, "1.00")], LOCATIONS)
        assert payload.rows[0][0] == UNKNOWN_LOCATION

    def test_empty_tariffs_give_empty_payload(self):
        payload = format_tariff_sheet([], LOCATIONS)
        assert payload.is_empty()
        assert payload.total_rows == 0
        assert payload.header == list(SHEET_HEADER)


class TestSortedTariffFrame:
    def test_frame_has_output_columns(self):
        df = sorted_tariff_frame([tariff(1, "36.02")], LOCATIONS)
        assert df.columns == [
            "warehouse_name",
            "tariff_date",
            "delivery_fbo",
            "delivery_fbs",
            "storage",
            "sorting_coefficient",
            "dt_next_box",
            "dt_till_max",
        ]
        assert len(df) == 1
