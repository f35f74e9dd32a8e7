"""
tests/test_pipelines/test_cycle.py — TariffSyncCycle ordering and date handling.
"""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock

import pytest

from boxrates_pipeline.errors import TransientError
from boxrates_pipeline.pipelines.cycle import TariffSyncCycle
from boxrates_pipeline.pipelines.publish import PublishCoordinator, SyncResult
from boxrates_pipeline.pipelines.reconcile import ReconciliationResult, TariffReconciler

D = date(2025, 11, 12)


def make_cycle(reconciliation=None, sync=None):
    reconciler = AsyncMock(spec=TariffReconciler)
    reconciler.reconcile_for_date.return_value = reconciliation or ReconciliationResult(
        tariff_date=D, tariffs_processed=3, locations_processed=3, entries_total=3, committed=True
    )
    coordinator = AsyncMock(spec=PublishCoordinator)
    coordinator.sync_all.return_value = sync or SyncResult(
        tariff_date=D, total_targets=1, successful_syncs=1, total_rows_written=3
    )
    return TariffSyncCycle(reconciler, coordinator), reconciler, coordinator


class TestTariffSyncCycle:
    @pytest.mark.asyncio
    async def test_publishes_the_reconciled_date(self):
        cycle, reconciler, coordinator = make_cycle()

        result = await cycle.run("2025-11-12")

        reconciler.reconcile_for_date.assert_awaited_once_with("2025-11-12")
        coordinator.sync_all.assert_awaited_once_with(D)
        assert result.success
        assert result.tariff_date == D

    @pytest.mark.asyncio
    async def test_no_publish_skips_coordinator(self):
        cycle, _, coordinator = make_cycle()

        result = await cycle.run(D, publish=False)

        assert result.sync is None
        assert result.success
        assert not coordinator.sync_all.called

    @pytest.mark.asyncio
    async def test_default_date_resolved_once(self):
        cycle, reconciler, _ = make_cycle()

        await cycle.run()

        (requested,), _ = reconciler.reconcile_for_date.await_args
        assert isinstance(requested, date)

    @pytest.mark.asyncio
    async def test_reconcile_failure_propagates_without_publishing(self):
        cycle, reconciler, coordinator = make_cycle()
        reconciler.reconcile_for_date.side_effect = TransientError("upstream down", status_code=503)

        with pytest.raises(TransientError):
            await cycle.run(D)
        assert not coordinator.sync_all.called

    @pytest.mark.asyncio
    async def test_failed_target_makes_cycle_unsuccessful(self):
        sync = SyncResult(tariff_date=D, total_targets=2, successful_syncs=1, failed_syncs=1)
        cycle, _, _ = make_cycle(sync=sync)

        result = await cycle.run(D)

        assert result.reconciliation.success
        assert not result.success

    @pytest.mark.asyncio
    async def test_partial_reconcile_still_publishes(self):
        reconciliation = ReconciliationResult(
            tariff_date=D, tariffs_processed=2, entries_total=3, committed=True, errors=["x: bad"]
        )
        cycle, _, coordinator = make_cycle(reconciliation=reconciliation)

        result = await cycle.run(D)

        coordinator.sync_all.assert_awaited_once()
        assert not result.success
