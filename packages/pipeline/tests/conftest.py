"""
tests/conftest.py — Shared pytest fixtures for the pipeline test suite.

Provides:
  fixture_path / tariffs_payload — paths and parsed JSON from tests/fixtures/
  sleeps         — RecordingSleep: drop-in for asyncio.sleep that records delays
  clock          — TickingClock: deterministic UTC timestamps for the store
  api_tokens / sheets_tokens — TokenCaches over static test tokens
  engine / store — in-memory SQLite (aiosqlite) with all tables created
  seed_tariffs   — helper writing a payload for one date through the store
  mock_http      — configured respx router for faking HTTP responses
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any

import pytest
import respx
from sqlalchemy.pool import StaticPool

from boxrates_shared.db import create_all, create_engine, create_sessionmaker
from boxrates_shared.models.tariffs import TariffBatch, TariffEnvelope

from boxrates_pipeline.loaders.store import ReconciliationStore
from boxrates_pipeline.transforms.normalize import require_location_name, tariff_fields_for
from boxrates_pipeline.utils.credentials import StaticTokenSource, TokenCache

from helpers import RecordingSleep, TickingClock

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# Path / payload helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def fixture_path() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def tariffs_payload() -> dict[str, Any]:
    """Parsed tariff API success envelope with three locations."""
    return json.loads((FIXTURES_DIR / "tariffs_box_sample.json").read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Clocks, sleeps and tokens
# ---------------------------------------------------------------------------

@pytest.fixture
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def api_tokens() -> TokenCache:
    return TokenCache(StaticTokenSource("test-api-key").fetch, name="tariffs_api")


@pytest.fixture
def sheets_tokens() -> TokenCache:
    return TokenCache(StaticTokenSource("test-sheets-token").fetch, name="google_sheets")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine():
    engine = create_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine, clock: TickingClock) -> ReconciliationStore:
    return ReconciliationStore(create_sessionmaker(engine), clock=clock)


@pytest.fixture
def seed_tariffs(store: ReconciliationStore):
    """
    Write a tariff payload for one date directly through the store.

    Usage:
        await seed_tariffs(date(2025, 11, 12), tariffs_payload)
    """

    async def _seed(tariff_date: date, payload: dict[str, Any]) -> TariffBatch:
        batch = TariffBatch.from_envelope(tariff_date, TariffEnvelope.model_validate(payload))
        async with store.transaction() as scope:
            for item in batch.entries:
                async with scope.entry():
                    location_id = await scope.upsert_location(
                        require_location_name(item), item.geo_name
                    )
                    await scope.upsert_tariff(
                        location_id, tariff_date, tariff_fields_for(item, batch)
                    )
            await scope.commit()
        return batch

    return _seed


# ---------------------------------------------------------------------------
# respx HTTP mock router
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_http():
    """
    Activate the respx mock router for all httpx requests.

    Usage in tests:
        def test_something(mock_http):
            mock_http.get(API_URL).mock(return_value=httpx.Response(200, json={...}))
    """
    with respx.mock(assert_all_called=False) as router:
        yield router
