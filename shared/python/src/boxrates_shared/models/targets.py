"""
models/targets.py — Pydantic model for the spreadsheets table.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class PublishTarget(BaseModel):
    """Matches the spreadsheets table row: one document + sheet to keep in sync."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    spreadsheet_id: str
    sheet_name: str
    description: str | None = None
    is_active: bool = True
    last_synced_at: datetime | None = None
    credentials_ref: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_db_row(cls, row: Any) -> "PublishTarget":
        return cls.model_validate(row)

    @property
    def key(self) -> str:
        return f"{self.spreadsheet_id}:{self.sheet_name}"
