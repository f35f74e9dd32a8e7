"""
pipelines/reconcile.py — Fetch one day of tariffs and upsert it into the store.

Steps:
  1. Fetch the batch through the tariff API client (errors propagate).
  2. Open one store transaction.
  3. Per entry, inside its own SAVEPOINT: upsert the location by name, then
     the tariff by (location, date) with the derived sorting coefficient.
     A failing entry is recorded and the loop moves on.
  4. Commit when at least one entry was written; roll back when all failed.

A batch of N entries with K failing entries commits N−K tariff rows and
reports exactly K errors.

Usage:
    from boxrates_pipeline.pipelines.reconcile import TariffReconciler

    reconciler = TariffReconciler(client, store)
    result = await reconciler.reconcile_for_date("2025-11-12")
    result = await reconciler.reconcile_for_date()     # business today
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, tzinfo

from boxrates_shared.time_utils import business_today, resolve_timezone

from boxrates_pipeline.errors import classify
from boxrates_pipeline.loaders.store import ReconciliationStore
from boxrates_pipeline.sources.tariffs_api import TariffApiClient
from boxrates_pipeline.transforms.normalize import require_location_name, tariff_fields_for
from boxrates_pipeline.utils.logging import get_logger

log = get_logger(__name__, pipeline="reconcile")


@dataclass
class ReconciliationResult:
    """Summary of one reconciliation cycle."""

    tariff_date: date
    locations_processed: int = 0
    tariffs_processed: int = 0
    entries_total: int = 0
    committed: bool = False
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def status(self) -> str:
        if not self.errors:
            return "success"
        if self.tariffs_processed > 0:
            return "partial_failure"
        return "failure"


class TariffReconciler:
    """Merges one day of upstream tariffs into the relational store."""

    def __init__(
        self,
        client: TariffApiClient,
        store: ReconciliationStore,
        *,
        timezone: tzinfo | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._tz = timezone or resolve_timezone()

    async def reconcile_for_date(self, tariff_date: date | str | None = None) -> ReconciliationResult:
        """
        Reconcile the tariffs for one calendar date.

        Args:
            tariff_date: date, "YYYY-MM-DD", or None for today in the
                         business timezone.

        Raises:
            ValidationError / AuthError / TransientError / PermanentError
            from the fetch; per-entry failures are reported, not raised.
        """
        if tariff_date is None:
            tariff_date = business_today(self._tz)
        date_str = tariff_date.isoformat() if isinstance(tariff_date, date) else tariff_date

        run_log = log.bind(tariff_date=date_str)
        run_log.info("reconcile_start")
        t0 = time.monotonic()

        batch = await self._client.fetch_tariffs(date_str)
        result = ReconciliationResult(tariff_date=batch.tariff_date, entries_total=len(batch))

        if not batch.entries:
            result.duration_ms = int((time.monotonic() - t0) * 1000)
            run_log.warning("reconcile_no_entries", duration_ms=result.duration_ms)
            return result

        written: set[tuple[int, date]] = set()
        async with self._store.transaction() as scope:
            for index, entry in enumerate(batch.entries):
                label = entry.warehouse_name or f"entry #{index}"
                try:
                    name = require_location_name(entry)
                    fields = tariff_fields_for(entry, batch)
                    async with scope.entry():
                        location_id = await scope.upsert_location(name, entry.geo_name)
                        await scope.upsert_tariff(location_id, batch.tariff_date, fields)
                except Exception as exc:
                    result.errors.append(f"{label}: {exc}")
                    run_log.warning(
                        "reconcile_entry_failed",
                        entry=label,
                        error=str(exc),
                        error_kind=classify(exc).value,
                    )
                    continue

                # A location repeated in one batch overwrites its own row
                written.add((location_id, batch.tariff_date))
                result.locations_processed = result.tariffs_processed = len(written)

            if result.tariffs_processed:
                await scope.commit()
                result.committed = True
            else:
                await scope.rollback()

        result.duration_ms = int((time.monotonic() - t0) * 1000)
        log_method = run_log.info if result.success else run_log.warning
        log_method(
            "reconcile_complete",
            status=result.status,
            entries=result.entries_total,
            locations_processed=result.locations_processed,
            tariffs_processed=result.tariffs_processed,
            errors=len(result.errors),
            committed=result.committed,
            duration_ms=result.duration_ms,
        )
        return result
