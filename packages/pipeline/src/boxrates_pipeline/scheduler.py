"""
scheduler.py — Recurring trigger for the reconcile-then-publish cycle.

States: stopped → running (start()) → stopped (stop()). Repeated start()
or stop() calls are no-ops with a warning.

While running, a background task sleeps until the next cron fire time in
the business timezone and calls tick(). tick() never raises: any exception
from the cycle is logged with its ErrorKind (auth failures at CRITICAL,
with the credential hint) and recorded in last_run, and the loop goes on
to the next fire time.

One cycle at a time: a scheduled tick that finds a cycle in progress is
skipped with a warning; run_now() waits its turn and re-raises failures
to the caller.

Usage:
    scheduler = TariffScheduler(cycle, cron_expression="0 * * * *")
    scheduler.start()
    ...
    await scheduler.run_now("2025-11-12")
    print(scheduler.get_status())
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Any

from boxrates_shared.constants import DEFAULT_CRON
from boxrates_shared.time_utils import resolve_timezone

from boxrates_pipeline.errors import ErrorKind, classify
from boxrates_pipeline.pipelines.cycle import CycleResult, TariffSyncCycle
from boxrates_pipeline.utils.cron import CronSchedule
from boxrates_pipeline.utils.logging import get_logger
from boxrates_pipeline.utils.retry import Sleep

log = get_logger(__name__, component="scheduler")


@dataclass
class LastRunSummary:
    trigger: str
    started_at: datetime
    finished_at: datetime
    success: bool
    tariff_date: date | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    tariffs_processed: int = 0
    reconcile_errors: int = 0
    targets_synced: int = 0
    targets_failed: int = 0
    rows_written: int = 0

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


@dataclass
class SchedulerStatus:
    running: bool
    cron_expression: str
    timezone: str
    next_run: datetime | None
    last_run: LastRunSummary | None

    def as_dict(self) -> dict[str, Any]:
        last = self.last_run
        return {
            "running": self.running,
            "cron_expression": self.cron_expression,
            "timezone": self.timezone,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": None
            if last is None
            else {
                "trigger": last.trigger,
                "started_at": last.started_at.isoformat(),
                "finished_at": last.finished_at.isoformat(),
                "success": last.success,
                "tariff_date": last.tariff_date.isoformat() if last.tariff_date else None,
                "error": last.error,
                "error_kind": last.error_kind.value if last.error_kind else None,
                "tariffs_processed": last.tariffs_processed,
                "targets_synced": last.targets_synced,
                "targets_failed": last.targets_failed,
                "rows_written": last.rows_written,
            },
        }


def _timezone_name(tz: tzinfo) -> str:
    return getattr(tz, "key", None) or str(tz)


class TariffScheduler:
    """Cron-driven, single-flight runner for TariffSyncCycle."""

    def __init__(
        self,
        cycle: TariffSyncCycle,
        *,
        cron_expression: str = DEFAULT_CRON,
        timezone: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._cycle = cycle
        self._tz = timezone or resolve_timezone()
        self._schedule = CronSchedule(cron_expression, self._tz)
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._tick_task: asyncio.Task[LastRunSummary | None] | None = None
        self._running = False
        self.last_run: LastRunSummary | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin firing on the cron schedule. Must be called inside a running event loop."""
        if self._running:
            log.warning("scheduler_already_running")
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name="tariff-scheduler"
        )
        log.info(
            "scheduler_started",
            cron=self._schedule.expression,
            timezone=_timezone_name(self._tz),
            next_run=self.next_run().isoformat(),
        )

    async def stop(self) -> None:
        """Stop future fires. A cycle already in progress runs to completion."""
        if not self._running:
            log.warning("scheduler_not_running")
            return
        self._running = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        tick, self._tick_task = self._tick_task, None
        if tick is not None and not tick.done():
            log.info("scheduler_waiting_for_cycle")
            await tick
        log.info("scheduler_stopped")

    async def _loop(self) -> None:
        while self._running:
            now = self._clock()
            delay = max((self._schedule.next_after(now) - now).total_seconds(), 0.0)
            await self._sleep(delay)
            if not self._running:
                break
            # Shielded: stop() waits for the cycle instead of cancelling it
            self._tick_task = asyncio.get_running_loop().create_task(self.tick(), name="tariff-tick")
            await asyncio.shield(self._tick_task)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def tick(self) -> LastRunSummary | None:
        """
        One scheduled cycle. Never raises.

        Returns:
            The run summary, or None when skipped because a cycle was in progress.
        """
        if self._lock.locked():
            log.warning("scheduled_run_skipped_busy")
            return None
        async with self._lock:
            # Failures are logged and recorded in last_run by _execute
            with contextlib.suppress(Exception):
                await self._execute("scheduled", None)
            return self.last_run

    async def run_now(self, tariff_date: date | str | None = None, *, publish: bool = True) -> CycleResult:
        """On-demand cycle; waits for any running cycle and re-raises failures."""
        async with self._lock:
            return await self._execute("manual", tariff_date, publish=publish)

    async def _execute(
        self,
        trigger: str,
        tariff_date: date | str | None,
        *,
        publish: bool = True,
    ) -> CycleResult:
        run_log = log.bind(trigger=trigger)
        started_at = self._clock()
        run_log.info("cycle_triggered", tariff_date=str(tariff_date) if tariff_date else None)
        try:
            result = await self._cycle.run(tariff_date, publish=publish)
        except Exception as exc:
            kind = classify(exc)
            self.last_run = LastRunSummary(
                trigger=trigger,
                started_at=started_at,
                finished_at=self._clock(),
                success=False,
                error=str(exc),
                error_kind=kind,
            )
            if kind is ErrorKind.AUTH:
                run_log.critical(
                    "auth_failure_action_required",
                    error=str(exc),
                    hint=getattr(exc, "hint", None),
                )
            else:
                run_log.error("cycle_failed", error=str(exc), error_kind=kind.value)
            raise

        sync = result.sync
        self.last_run = LastRunSummary(
            trigger=trigger,
            started_at=started_at,
            finished_at=self._clock(),
            success=result.success,
            tariff_date=result.tariff_date,
            tariffs_processed=result.reconciliation.tariffs_processed,
            reconcile_errors=len(result.reconciliation.errors),
            targets_synced=sync.successful_syncs if sync else 0,
            targets_failed=sync.failed_syncs if sync else 0,
            rows_written=sync.total_rows_written if sync else 0,
        )
        return result

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def next_run(self) -> datetime:
        return self._schedule.next_after(self._clock())

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self._running,
            cron_expression=self._schedule.expression,
            timezone=_timezone_name(self._tz),
            next_run=self.next_run() if self._running else None,
            last_run=self.last_run,
        )
