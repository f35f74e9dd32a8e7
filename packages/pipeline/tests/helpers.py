"""
tests/helpers.py — Test doubles and payload builders shared by the suites.
"""

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any

API_BASE = "https://tariffs.test"
API_URL = f"{API_BASE}/api/v1/tariffs/box"
SHEETS_BASE = "https://sheets.test/v4"


class RecordingSleep:
    """Async sleep replacement that returns immediately and records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TickingClock:
    """Returns a strictly increasing UTC datetime on every call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start or datetime(2025, 11, 12, 9, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        self.now += self.step
        return self.now


def entry(name: str | None, delivery: Any = "10", marketplace: Any = "10", storage: Any = "1", **extra: Any) -> dict[str, Any]:
    """One warehouseList item with the three base rates set."""
    item: dict[str, Any] = {
        "geoName": "Центральный федеральный округ",
        "boxDeliveryBase": delivery,
        "boxDeliveryMarketplaceBase": marketplace,
        "boxStorageBase": storage,
        **extra,
    }
    if name is not None:
        item["warehouseName"] = name
    return item


def payload_with(entries: list[Any], **data: Any) -> dict[str, Any]:
    """Build a success envelope around an arbitrary warehouseList."""
    return {"response": {"data": {"warehouseList": copy.deepcopy(entries), **data}}}


def sheets_titles(*titles: str) -> dict[str, Any]:
    """Body of GET spreadsheets/{id}?fields=sheets.properties.title."""
    return {"sheets": [{"properties": {"title": t}} for t in titles]}


def google_error(code: int, message: str, reason: str | None = None, status: str | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if reason:
        error["errors"] = [{"reason": reason, "message": message}]
    if status:
        error["status"] = status
    return {"error": error}
