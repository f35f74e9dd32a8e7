"""
tests/test_loaders/test_store.py — ReconciliationStore against in-memory SQLite.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from helpers import entry, payload_with

D = date(2025, 11, 12)


class TestUpsertIdempotency:
    @pytest.mark.asyncio
    async def test_second_write_updates_in_place(self, store, seed_tariffs, tariffs_payload):
        await seed_tariffs(D, tariffs_payload)
        first = await store.get_tariff("Коледино", D)

        await seed_tariffs(D, tariffs_payload)
        second = await store.get_tariff("Коледино", D)

        assert await store.tariff_count(D) == 3
        assert await store.location_count() == 3
        assert second["id"] == first["id"]
        assert second["created_at"] == first["created_at"]
        assert second["updated_at"] > first["updated_at"]

    @pytest.mark.asyncio
    async def test_changed_upstream_values_overwrite(self, store, seed_tariffs):
        await seed_tariffs(D, payload_with([entry("Казань", delivery="10")]))
        await seed_tariffs(D, payload_with([entry("Казань", delivery="12,5")]))

        row = await store.get_tariff("Казань", D)
        assert row["box_delivery_base"] == Decimal("12.50")
        assert await store.tariff_count() == 1

    @pytest.mark.asyncio
    async def test_location_keeps_created_at_and_geo_label(self, store, seed_tariffs):
        await seed_tariffs(D, payload_with([entry("Казань", geoName="Приволжский")]))
        first = await store.get_location("Казань")

        await seed_tariffs(date(2025, 11, 13), payload_with([entry("Казань", geoName="")]))
        second = await store.get_location("Казань")

        assert second["id"] == first["id"]
        assert second["created_at"] == first["created_at"]
        assert second["geo_name"] == "Приволжский"

    @pytest.mark.asyncio
    async def test_one_row_per_location_and_date(self, store, seed_tariffs):
        await seed_tariffs(D, payload_with([entry("Казань")]))
        await seed_tariffs(date(2025, 11, 13), payload_with([entry("Казань")]))

        assert await store.location_count() == 1
        assert await store.tariff_count() == 2
        assert await store.tariff_count(D) == 1
        assert await store.latest_tariff_date() == date(2025, 11, 13)

    @pytest.mark.asyncio
    async def test_unknown_tariff_column_rejected(self, store):
        async with store.transaction() as scope:
            location_id = await scope.upsert_location("Казань", None)
            with pytest.raises(ValueError):
                await scope.upsert_tariff(location_id, D, {"warehouse_name": "x"})
            await scope.rollback()


class TestTransactionScope:
    @pytest.mark.asyncio
    async def test_failed_entry_rolls_back_only_its_savepoint(self, store):
        async with store.transaction() as scope:
            async with scope.entry():
                location_id = await scope.upsert_location("Казань", None)
                await scope.upsert_tariff(location_id, D, {"box_delivery_base": Decimal("10")})

            with pytest.raises(IntegrityError):
                async with scope.entry():
                    await scope.upsert_location("Коледино", None)
                    # No such location: foreign key violation
                    await scope.upsert_tariff(999_999, D, {})

            await scope.commit()

        assert await store.tariff_count(D) == 1
        assert await store.get_location("Коледино") is None
        assert await store.get_location("Казань") is not None

    @pytest.mark.asyncio
    async def test_rollback_discards_everything(self, store):
        async with store.transaction() as scope:
            await scope.upsert_location("Казань", None)
            await scope.rollback()

        assert await store.location_count() == 0

    @pytest.mark.asyncio
    async def test_undecided_block_rolls_back(self, store):
        async with store.transaction() as scope:
            await scope.upsert_location("Казань", None)

        assert await store.location_count() == 0

    @pytest.mark.asyncio
    async def test_exception_in_block_rolls_back_and_propagates(self, store):
        with pytest.raises(RuntimeError):
            async with store.transaction() as scope:
                await scope.upsert_location("Казань", None)
                raise RuntimeError("boom")

        assert await store.location_count() == 0


class TestReads:
    @pytest.mark.asyncio
    async def test_tariffs_for_date_and_locations(self, store, seed_tariffs, tariffs_payload):
        await seed_tariffs(D, tariffs_payload)

        tariffs = await store.tariffs_for_date(D)
        locations = await store.all_locations()

        assert len(tariffs) == 3
        assert {loc["warehouse_name"] for loc in locations} == {
            "Коледино",
            "Электросталь",
            "Маркетплейс",
        }
        by_id = {loc["id"]: loc["warehouse_name"] for loc in locations}
        coefficients = {by_id[t["warehouse_id"]]: t["sorting_coefficient"] for t in tariffs}
        assert coefficients["Коледино"] == Decimal("36.02")
        assert coefficients["Электросталь"] == Decimal("59.88")
        assert coefficients["Маркетплейс"] is None

    @pytest.mark.asyncio
    async def test_empty_store(self, store):
        assert await store.tariffs_for_date(D) == []
        assert await store.latest_tariff_date() is None
        assert await store.tariff_count() == 0


class TestPublishTargets:
    @pytest.mark.asyncio
    async def test_ensure_targets_creates_missing_only(self, store):
        created = await store.ensure_targets(["doc-a", "doc-b", "doc-a", " "], "stocks_coefs")
        again = await store.ensure_targets(["doc-a", "doc-c"], "stocks_coefs")

        assert created == 2
        assert again == 1
        keys = [t.key for t in await store.all_targets()]
        assert keys == ["doc-a:stocks_coefs", "doc-b:stocks_coefs", "doc-c:stocks_coefs"]

    @pytest.mark.asyncio
    async def test_ensure_targets_does_not_reactivate(self, store):
        await store.ensure_targets(["doc-a"], "stocks_coefs")
        await store.set_target_active("doc-a", "stocks_coefs", False)

        await store.ensure_targets(["doc-a"], "stocks_coefs")

        assert await store.active_targets() == []

    @pytest.mark.asyncio
    async def test_set_target_active_reports_missing(self, store):
        assert await store.set_target_active("nope", "stocks_coefs", True) is False

    @pytest.mark.asyncio
    async def test_active_targets_and_mark_synced(self, store):
        first = await store.add_target("doc-a", "stocks_coefs", description="ops")
        await store.add_target("doc-b", "stocks_coefs", active=False)

        active = await store.active_targets()
        assert [t.spreadsheet_id for t in active] == ["doc-a"]
        assert active[0].last_synced_at is None

        synced_at = datetime(2025, 11, 12, 10, 0, tzinfo=timezone.utc)
        await store.mark_target_synced(first.id, synced_at)

        refreshed = (await store.active_targets())[0]
        assert refreshed.last_synced_at.replace(tzinfo=timezone.utc) == synced_at
        assert refreshed.description == "ops"

    @pytest.mark.asyncio
    async def test_duplicate_target_rejected(self, store):
        await store.add_target("doc-a", "stocks_coefs")
        with pytest.raises(IntegrityError):
            await store.add_target("doc-a", "stocks_coefs")
