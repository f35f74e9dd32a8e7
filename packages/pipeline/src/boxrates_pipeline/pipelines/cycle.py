"""
pipelines/cycle.py — One reconcile-then-publish pass for a single date.

The date is resolved once, so the publish step always sees the same day
the reconciliation wrote. Reconciliation exceptions propagate; publish
target failures stay inside the SyncResult.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, tzinfo

from boxrates_shared.time_utils import business_today, resolve_timezone

from boxrates_pipeline.pipelines.publish import PublishCoordinator, SyncResult
from boxrates_pipeline.pipelines.reconcile import ReconciliationResult, TariffReconciler
from boxrates_pipeline.utils.logging import get_logger

log = get_logger(__name__, pipeline="cycle")


@dataclass
class CycleResult:
    tariff_date: date
    reconciliation: ReconciliationResult
    sync: SyncResult | None = None

    @property
    def success(self) -> bool:
        return self.reconciliation.success and (self.sync is None or self.sync.success)


class TariffSyncCycle:
    def __init__(
        self,
        reconciler: TariffReconciler,
        coordinator: PublishCoordinator,
        *,
        timezone: tzinfo | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._coordinator = coordinator
        self._tz = timezone or resolve_timezone()

    async def run(self, tariff_date: date | str | None = None, *, publish: bool = True) -> CycleResult:
        if tariff_date is None:
            tariff_date = business_today(self._tz)

        reconciliation = await self._reconciler.reconcile_for_date(tariff_date)
        result = CycleResult(tariff_date=reconciliation.tariff_date, reconciliation=reconciliation)
        if publish:
            result.sync = await self._coordinator.sync_all(reconciliation.tariff_date)

        log.info(
            "cycle_complete",
            tariff_date=result.tariff_date.isoformat(),
            success=result.success,
            tariffs_processed=reconciliation.tariffs_processed,
            reconcile_errors=len(reconciliation.errors),
            published=publish,
            targets_failed=result.sync.failed_syncs if result.sync else None,
        )
        return result
