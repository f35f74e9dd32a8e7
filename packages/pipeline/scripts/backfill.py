#!/usr/bin/env python3
"""
scripts/backfill.py — Reconcile a historical range of tariff dates.

Runs one reconciliation per calendar day from --start-date to --end-date
inclusive, continuing past failed days, and optionally publishes each day
after it is reconciled. Prints a per-day summary at the end.

Usage:
    python scripts/backfill.py --start-date 2025-11-01 --end-date 2025-11-12
    python scripts/backfill.py --start-date 2025-11-01 --publish
    python scripts/backfill.py --start-date 2025-11-01 --dry-run

The backfill is idempotent: every write is an upsert keyed on
(location, date), so re-running a range updates rows in place.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from datetime import date


def parse_date(s: str) -> date:
    """Strict YYYY-MM-DD."""
    from boxrates_shared.time_utils import parse_iso_date

    parsed = parse_iso_date(s)
    if parsed is None:
        raise argparse.ArgumentTypeError(f"invalid date {s!r}: expected YYYY-MM-DD")
    return parsed


@dataclass
class DayOutcome:
    tariff_date: date
    ok: bool
    written: int = 0
    entry_errors: int = 0
    published: int | None = None
    error: str | None = None


async def backfill_range(runtime, start: date, end: date, *, publish: bool) -> list[DayOutcome]:
    """Reconcile (and optionally publish) each day; never stops on a failed day."""
    import structlog

    from boxrates_shared.time_utils import iter_dates

    log = structlog.get_logger("backfill")
    days = list(iter_dates(start, end))
    log.info("backfill_start", start=str(start), end=str(end), n_days=len(days), publish=publish)

    outcomes: list[DayOutcome] = []
    for i, day in enumerate(days):
        log.info("day_start", day=f"{i + 1}/{len(days)}", tariff_date=str(day))
        try:
            result = await runtime.reconciler.reconcile_for_date(day)
            outcome = DayOutcome(
                tariff_date=day,
                ok=result.success,
                written=result.tariffs_processed,
                entry_errors=len(result.errors),
            )
            if publish:
                sync = await runtime.coordinator.sync_all(day)
                outcome.published = sync.successful_syncs
                outcome.ok = outcome.ok and sync.success
        except Exception as exc:
            log.error("day_failed", tariff_date=str(day), error=str(exc), exc_info=True)
            # Continue with the next day to maximize coverage
            outcome = DayOutcome(tariff_date=day, ok=False, error=str(exc))
        outcomes.append(outcome)

    log.info(
        "backfill_complete",
        n_days=len(days),
        failed=sum(1 for o in outcomes if not o.ok),
    )
    return outcomes


def print_summary(outcomes: list[DayOutcome]) -> None:
    print()
    print(f"{'Date':<12} {'Status':<8} {'Written':>8} {'Errors':>7} {'Published':>10}  Detail")
    print("-" * 72)
    for o in outcomes:
        published = "-" if o.published is None else str(o.published)
        print(
            f"{o.tariff_date.isoformat():<12} {'ok' if o.ok else 'FAILED':<8} "
            f"{o.written:>8} {o.entry_errors:>7} {published:>10}  {o.error or ''}"
        )
    print()


async def main_async(args: argparse.Namespace) -> int:
    from boxrates_shared.config import settings
    from boxrates_shared.time_utils import iter_dates
    from boxrates_pipeline.runtime import build_runtime
    from boxrates_pipeline.utils.logging import configure_logging

    configure_logging(log_level=args.log_level, log_format=settings.log_format)

    if args.end < args.start:
        print("--end-date is before --start-date", file=sys.stderr)
        return 2

    if args.dry_run:
        for day in iter_dates(args.start, args.end):
            print(f"would reconcile {day.isoformat()}{' and publish' if args.publish else ''}")
        return 0

    runtime = build_runtime(settings)
    try:
        if args.publish and settings.sheet_ids_list:
            await runtime.store.ensure_targets(settings.sheet_ids_list, settings.default_sheet_name)
        outcomes = await backfill_range(runtime, args.start, args.end, publish=args.publish)
    finally:
        await runtime.close()

    print_summary(outcomes)
    return 0 if all(o.ok for o in outcomes) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="backfill",
        description="Reconcile a historical range of box tariff dates",
    )
    parser.add_argument(
        "--start-date",
        dest="start",
        type=parse_date,
        required=True,
        metavar="YYYY-MM-DD",
    )
    parser.add_argument(
        "--end-date",
        dest="end",
        type=parse_date,
        default=None,
        metavar="YYYY-MM-DD",
        help="Last date, inclusive (default: business today)",
    )
    parser.add_argument(
        "--publish",
        action="store_true",
        help="Publish each day to the active targets after reconciling it",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the dates that would be processed without calling the API",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
    )
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    if args.end is None:
        from boxrates_shared.config import settings
        from boxrates_shared.time_utils import business_today, resolve_timezone

        args.end = business_today(resolve_timezone(settings.business_timezone))
    exit_code = asyncio.run(main_async(args))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
