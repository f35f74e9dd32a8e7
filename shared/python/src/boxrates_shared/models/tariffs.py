"""
models/tariffs.py — Pydantic models for the tariff API payload.

Success envelope:
  { "response": { "data": { "warehouseList": [...], "dtNextBox": ..., "dtTillMax": ... } } }

Numeric fields go through parse_decimal, so numbers, decimal-comma strings
and the "-" / "" markers all land as Decimal or None and a single bad value
never rejects the batch. Only the envelope shape itself is strict.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from boxrates_shared.constants import RATE_FIELDS
from boxrates_shared.numbers import parse_decimal
from boxrates_shared.time_utils import parse_loose_date


def _clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


Rate = Annotated[Decimal | None, BeforeValidator(parse_decimal)]
CleanText = Annotated[str | None, BeforeValidator(_clean_text)]
LooseDate = Annotated[date | None, BeforeValidator(parse_loose_date)]


class TariffEntry(BaseModel):
    """One location with its nine rate fields, as delivered by the API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    warehouse_name: CleanText = Field(default=None, alias="warehouseName")
    geo_name: CleanText = Field(default=None, alias="geoName")

    box_delivery_base: Rate = Field(default=None, alias="boxDeliveryBase")
    box_delivery_liter: Rate = Field(default=None, alias="boxDeliveryLiter")
    box_delivery_coef_expr: Rate = Field(default=None, alias="boxDeliveryCoefExpr")
    box_delivery_marketplace_base: Rate = Field(default=None, alias="boxDeliveryMarketplaceBase")
    box_delivery_marketplace_liter: Rate = Field(default=None, alias="boxDeliveryMarketplaceLiter")
    box_delivery_marketplace_coef_expr: Rate = Field(
        default=None, alias="boxDeliveryMarketplaceCoefExpr"
    )
    box_storage_base: Rate = Field(default=None, alias="boxStorageBase")
    box_storage_liter: Rate = Field(default=None, alias="boxStorageLiter")
    box_storage_coef_expr: Rate = Field(default=None, alias="boxStorageCoefExpr")

    def rates(self) -> dict[str, Decimal | None]:
        return {name: getattr(self, name) for name in RATE_FIELDS}


class TariffData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    warehouse_list: list[TariffEntry] = Field(alias="warehouseList")
    dt_next_box: CleanText = Field(default=None, alias="dtNextBox")
    dt_till_max: LooseDate = Field(default=None, alias="dtTillMax")


class TariffResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: TariffData


class TariffEnvelope(BaseModel):
    """Top-level success envelope."""

    model_config = ConfigDict(extra="ignore")

    response: TariffResponse


class ApiErrorEnvelope(BaseModel):
    """Error envelope: { error: true, errorText, additionalErrors?, statusCode? }."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    error: bool
    error_text: str = Field(default="", alias="errorText")
    additional_errors: list[str] | None = Field(default=None, alias="additionalErrors")
    status_code: int | None = Field(default=None, alias="statusCode")


class TariffBatch(BaseModel):
    """Normalized result of one API call for one calendar date."""

    tariff_date: date
    dt_next_box: str | None = None
    dt_till_max: date | None = None
    entries: list[TariffEntry] = Field(default_factory=list)

    @classmethod
    def from_envelope(cls, tariff_date: date, envelope: TariffEnvelope) -> "TariffBatch":
        data = envelope.response.data
        return cls(
            tariff_date=tariff_date,
            dt_next_box=data.dt_next_box,
            dt_till_max=data.dt_till_max,
            entries=data.warehouse_list,
        )

    def __len__(self) -> int:
        return len(self.entries)
