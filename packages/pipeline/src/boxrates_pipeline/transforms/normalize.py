"""
transforms/normalize.py — Turn validated API entries into store rows.

The API model (boxrates_shared.models.TariffEntry) already normalizes every
numeric field to Decimal | None. This module applies the row-level rules:
location names must be present, rates are rounded to the store's two
decimal places, and the batch metadata is copied onto every row.

Usage:
    from boxrates_pipeline.transforms.normalize import tariff_fields_for

    name = require_location_name(entry)
    fields = tariff_fields_for(entry, batch)
    # {"box_delivery_base": Decimal("48.00"), ..., "sorting_coefficient": Decimal("41.90")}
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from boxrates_shared.constants import RATE_FIELDS
from boxrates_shared.models.tariffs import TariffBatch, TariffEntry
from boxrates_shared.numbers import quantize_rate

from boxrates_pipeline.errors import ValidationError
from boxrates_pipeline.transforms.coefficient import sorting_coefficient

MAX_NAME_LENGTH = 255


def normalize_location_name(raw: str | None) -> str | None:
    """Collapse internal whitespace; empty names become None."""
    if raw is None:
        return None
    name = " ".join(raw.split())
    return name or None


def require_location_name(entry: TariffEntry) -> str:
    """
    Return the entry's natural key or raise ValidationError.

    Raised per entry so the reconciler can record it and move on.
    """
    name = normalize_location_name(entry.warehouse_name)
    if name is None:
        raise ValidationError("Entry has no warehouseName")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"warehouseName longer than {MAX_NAME_LENGTH} characters")
    return name


def tariff_fields_for(entry: TariffEntry, batch: TariffBatch) -> dict[str, Any]:
    """
    Build the non-key column values of one box_tariffs row.

    Returns:
        dict with the nine rounded rate columns, dt_next_box, dt_till_max
        and sorting_coefficient.
    """
    rates: dict[str, Decimal | None] = {
        name: quantize_rate(value) for name, value in entry.rates().items()
    }
    fields: dict[str, Any] = {name: rates[name] for name in RATE_FIELDS}
    fields["dt_next_box"] = batch.dt_next_box
    fields["dt_till_max"] = batch.dt_till_max
    fields["sorting_coefficient"] = sorting_coefficient(rates)
    return fields
