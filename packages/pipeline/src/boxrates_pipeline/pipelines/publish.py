"""
pipelines/publish.py — Publish one date's reconciled tariffs to every active target.

For each active target, in order and independently:
  clear section!A:Z → write header at A1 → append rows from A2 → mark synced.
A failure at any step is recorded against that target and the loop moves
on to the next one; sync_all never raises for a target failure.

"Nothing to publish" (no active targets, or no tariffs / locations for the
date) is a successful, empty result.

Usage:
    from boxrates_pipeline.pipelines.publish import PublishCoordinator

    coordinator = PublishCoordinator(store, writer)
    result = await coordinator.sync_all("2025-11-12")
    print(result.successful_syncs, result.failed_syncs, result.total_rows_written)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo

from boxrates_shared.constants import SHEET_CLEAR_COLUMNS
from boxrates_shared.models.targets import PublishTarget
from boxrates_shared.time_utils import business_today, parse_iso_date, resolve_timezone, utcnow

from boxrates_pipeline.errors import ErrorKind, ValidationError, classify
from boxrates_pipeline.loaders.sheets_writer import SheetsWriter
from boxrates_pipeline.loaders.store import ReconciliationStore
from boxrates_pipeline.transforms.formatting import SheetPayload, format_tariff_sheet
from boxrates_pipeline.utils.logging import get_logger

log = get_logger(__name__, pipeline="publish")

HEADER_RANGE = "A1"
ROWS_RANGE = "A2"


@dataclass
class TargetSyncResult:
    spreadsheet_id: str
    sheet_name: str
    success: bool
    rows_written: int = 0
    error: str | None = None
    error_kind: ErrorKind | None = None
    synced_at: datetime | None = None
    duration_ms: int = 0


@dataclass
class SyncResult:
    """Aggregate outcome of publishing one date to all active targets."""

    tariff_date: date
    total_targets: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    total_rows_written: int = 0
    errors: list[str] = field(default_factory=list)
    per_target_results: list[TargetSyncResult] = field(default_factory=list)
    skipped_reason: str | None = None
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.failed_syncs == 0


def _resolve_date(value: date | str | None, tz: tzinfo) -> date:
    if value is None:
        return business_today(tz)
    if isinstance(value, date):
        return value
    parsed = parse_iso_date(value)
    if parsed is None:
        raise ValidationError(f"Invalid date {value!r}: expected YYYY-MM-DD")
    return parsed


class PublishCoordinator:
    """Fans one formatted payload out to every active publish target."""

    def __init__(
        self,
        store: ReconciliationStore,
        writer: SheetsWriter,
        *,
        timezone: tzinfo | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._writer = writer
        self._tz = timezone or resolve_timezone()
        self._clock = clock

    async def sync_all(self, tariff_date: date | str | None = None) -> SyncResult:
        d = _resolve_date(tariff_date, self._tz)
        run_log = log.bind(tariff_date=d.isoformat())
        t0 = time.monotonic()
        result = SyncResult(tariff_date=d)

        targets = await self._store.active_targets()
        if not targets:
            result.skipped_reason = "no_active_targets"
        else:
            tariffs = await self._store.tariffs_for_date(d)
            locations = await self._store.all_locations()
            if not tariffs or not locations:
                result.skipped_reason = "no_tariffs_for_date"

        if result.skipped_reason:
            result.duration_ms = int((time.monotonic() - t0) * 1000)
            run_log.info("publish_skipped", reason=result.skipped_reason)
            return result

        payload = format_tariff_sheet(tariffs, locations)
        result.total_targets = len(targets)
        run_log.info("publish_start", targets=len(targets), rows=payload.total_rows)

        for target in targets:
            target_result = await self.sync_target(target, payload)
            result.per_target_results.append(target_result)
            if target_result.success:
                result.successful_syncs += 1
                result.total_rows_written += target_result.rows_written
            else:
                result.failed_syncs += 1
                result.errors.append(f"{target.key}: {target_result.error}")

        result.duration_ms = int((time.monotonic() - t0) * 1000)
        log_method = run_log.info if result.success else run_log.warning
        log_method(
            "publish_complete",
            total_targets=result.total_targets,
            successful_syncs=result.successful_syncs,
            failed_syncs=result.failed_syncs,
            total_rows_written=result.total_rows_written,
            duration_ms=result.duration_ms,
        )
        return result

    async def sync_target(self, target: PublishTarget, payload: SheetPayload) -> TargetSyncResult:
        """
        Replace one target section's content with payload and stamp last_synced_at.

        Never raises; the failing step's classified error is returned.
        """
        doc, section = target.spreadsheet_id, target.sheet_name
        target_log = log.bind(spreadsheet_id=doc, sheet_name=section)
        t0 = time.monotonic()
        try:
            (await self._writer.clear(doc, section, SHEET_CLEAR_COLUMNS)).raise_for_error()
            (await self._writer.overwrite(doc, section, HEADER_RANGE, [payload.header])).raise_for_error()
            rows_written = 0
            if payload.rows:
                appended = (
                    await self._writer.append(doc, section, ROWS_RANGE, payload.rows)
                ).raise_for_error()
                rows_written = (
                    appended.rows_affected
                    if appended.rows_affected is not None
                    else payload.total_rows
                )
            synced_at = self._clock()
            await self._store.mark_target_synced(target.id, synced_at)
        except Exception as exc:
            kind = classify(exc)
            target_log.error("target_sync_failed", error=str(exc), error_kind=kind.value)
            return TargetSyncResult(
                spreadsheet_id=doc,
                sheet_name=section,
                success=False,
                error=str(exc),
                error_kind=kind,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )

        duration_ms = int((time.monotonic() - t0) * 1000)
        target_log.info("target_synced", rows_written=rows_written, duration_ms=duration_ms)
        return TargetSyncResult(
            spreadsheet_id=doc,
            sheet_name=section,
            success=True,
            rows_written=rows_written,
            synced_at=synced_at,
            duration_ms=duration_ms,
        )
