"""
cli.py — Click CLI entrypoint for the tariff sync worker.

Usage:
    boxrates run                         # reconcile + publish business today
    boxrates run --date 2025-11-12 --no-publish
    boxrates reconcile --date 2025-11-12
    boxrates publish --date 2025-11-12
    boxrates serve                       # hourly schedule until SIGINT/SIGTERM
    boxrates status
    boxrates targets list
    boxrates targets add <spreadsheet-id> [--sheet-name stocks_coefs]
    boxrates targets disable <spreadsheet-id>
    boxrates init-db
"""

from __future__ import annotations

import asyncio
import signal
import sys
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any, TypeVar

import click
import structlog

from boxrates_shared.config import Settings, settings
from boxrates_shared.db import create_all
from boxrates_shared.time_utils import parse_iso_date

from boxrates_pipeline.errors import AuthError, PipelineError
from boxrates_pipeline.runtime import Runtime, build_runtime
from boxrates_pipeline.utils.logging import configure_logging

log = structlog.get_logger(__name__)

T = TypeVar("T")


def _parse_date_option(ctx: click.Context, param: click.Parameter, value: str | None) -> date | None:
    if value is None or value.lower() == "today":
        return None
    parsed = parse_iso_date(value)
    if parsed is None:
        raise click.BadParameter("expected YYYY-MM-DD or 'today'")
    return parsed


date_option = click.option(
    "--date",
    "tariff_date",
    default="today",
    show_default=True,
    callback=_parse_date_option,
    help="Tariff date (YYYY-MM-DD or 'today' in the business timezone).",
)


def _with_runtime(ctx: click.Context, fn: Callable[[Runtime], Awaitable[T]]) -> T:
    """Build the runtime, run fn against it, and always dispose the engine."""
    factory: Callable[[Settings], Runtime] = ctx.obj["runtime_factory"]
    cfg: Settings = ctx.obj["settings"]

    async def _main() -> T:
        runtime = factory(cfg)
        try:
            return await fn(runtime)
        finally:
            await runtime.close()

    return asyncio.run(_main())


async def _ensure_configured_targets(runtime: Runtime) -> None:
    cfg = runtime.settings
    if cfg.sheet_ids_list:
        await runtime.store.ensure_targets(cfg.sheet_ids_list, cfg.default_sheet_name)


def _fail(exc: Exception) -> None:
    click.echo(f"Error: {exc}", err=True)
    if isinstance(exc, AuthError):
        click.echo(f"Hint: {exc.hint}", err=True)
    sys.exit(1)


def _echo_sync(sync: Any) -> None:
    if sync.skipped_reason:
        click.echo(f"  publish: nothing to publish ({sync.skipped_reason})")
        return
    click.echo(
        f"  publish: {sync.successful_syncs}/{sync.total_targets} targets, "
        f"{sync.total_rows_written} rows"
    )
    for target in sync.per_target_results:
        mark = "✓" if target.success else "✗"
        detail = f"{target.rows_written} rows" if target.success else target.error
        click.echo(f"    {mark} {target.spreadsheet_id}:{target.sheet_name}  {detail}")


def _echo_reconciliation(result: Any) -> None:
    click.echo(
        f"  reconcile {result.tariff_date.isoformat()}: "
        f"{result.tariffs_processed}/{result.entries_total} entries written "
        f"({result.status}, {result.duration_ms} ms)"
    )
    for error in result.errors:
        click.echo(f"    ✗ {error}")


@click.group()
@click.option(
    "--log-level",
    default=settings.log_level,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Log level",
)
@click.option(
    "--log-format",
    default=settings.log_format,
    type=click.Choice(["console", "json"]),
    help="Log output format",
)
@click.pass_context
def main(ctx: click.Context, log_level: str, log_format: str) -> None:
    """boxrates tariff sync worker."""
    configure_logging(log_level, log_format)
    ctx.ensure_object(dict)
    ctx.obj.setdefault("settings", settings)
    ctx.obj.setdefault("runtime_factory", build_runtime)


@main.command()
@date_option
@click.option("--no-publish", is_flag=True, help="Reconcile only; skip the publish step.")
@click.pass_context
def run(ctx: click.Context, tariff_date: date | None, no_publish: bool) -> None:
    """Run one reconcile-then-publish cycle now."""

    async def _run(runtime: Runtime):
        await _ensure_configured_targets(runtime)
        return await runtime.scheduler.run_now(tariff_date, publish=not no_publish)

    try:
        result = _with_runtime(ctx, _run)
    except PipelineError as exc:
        _fail(exc)
        return

    click.echo(f"Cycle for {result.tariff_date.isoformat()}:")
    _echo_reconciliation(result.reconciliation)
    if result.sync is not None:
        _echo_sync(result.sync)
    if not result.success:
        sys.exit(1)


@main.command()
@date_option
@click.pass_context
def reconcile(ctx: click.Context, tariff_date: date | None) -> None:
    """Fetch and upsert one day of tariffs (no publish)."""
    try:
        result = _with_runtime(ctx, lambda rt: rt.reconciler.reconcile_for_date(tariff_date))
    except PipelineError as exc:
        _fail(exc)
        return
    _echo_reconciliation(result)
    if not result.success:
        sys.exit(1)


@main.command()
@date_option
@click.pass_context
def publish(ctx: click.Context, tariff_date: date | None) -> None:
    """Publish already-reconciled tariffs to every active target."""

    async def _publish(runtime: Runtime):
        await _ensure_configured_targets(runtime)
        return await runtime.coordinator.sync_all(tariff_date)

    try:
        result = _with_runtime(ctx, _publish)
    except PipelineError as exc:
        _fail(exc)
        return
    _echo_sync(result)
    if not result.success:
        sys.exit(1)


@main.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the scheduler until SIGINT/SIGTERM."""

    async def _serve(runtime: Runtime) -> None:
        await _ensure_configured_targets(runtime)
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        runtime.scheduler.start()
        status = runtime.scheduler.get_status()
        click.echo(
            f"Scheduler running: '{status.cron_expression}' ({status.timezone}), "
            f"next run {status.next_run.isoformat() if status.next_run else '-'}"
        )
        await stop_event.wait()
        log.info("shutdown_requested")
        await runtime.scheduler.stop()

    _with_runtime(ctx, _serve)


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show schedule, store counts and publish target sync times."""

    async def _status(runtime: Runtime) -> dict[str, Any]:
        return {
            "locations": await runtime.store.location_count(),
            "tariffs": await runtime.store.tariff_count(),
            "latest_date": await runtime.store.latest_tariff_date(),
            "targets": await runtime.store.all_targets(),
            "schedule": runtime.scheduler.get_status(),
            "next_run": runtime.scheduler.next_run(),
        }

    try:
        info = _with_runtime(ctx, _status)
    except Exception as exc:
        click.echo(f"  Error fetching status: {exc}", err=True)
        sys.exit(1)

    schedule = info["schedule"]
    latest = info["latest_date"]
    click.echo("Schedule:")
    click.echo(f"  cron {schedule.cron_expression} ({schedule.timezone}), next fire {info['next_run'].isoformat()}")
    click.echo("Store:")
    click.echo(f"  {info['locations']} locations, {info['tariffs']} tariff rows")
    click.echo(f"  latest tariff date: {latest.isoformat() if latest else '-'}")
    click.echo("Targets:")
    if not info["targets"]:
        click.echo("  No publish targets configured.")
    for target in info["targets"]:
        mark = "✓" if target.is_active else "·"
        synced = target.last_synced_at.isoformat()[:19] if target.last_synced_at else "never"
        click.echo(f"  {mark} {target.key:60s} last sync {synced}")


@main.group()
def targets() -> None:
    """Manage publish targets."""


@targets.command("list")
@click.pass_context
def targets_list(ctx: click.Context) -> None:
    rows = _with_runtime(ctx, lambda rt: rt.store.all_targets())
    if not rows:
        click.echo("No publish targets configured.")
        return
    for target in rows:
        state = "active" if target.is_active else "inactive"
        description = f"  {target.description}" if target.description else ""
        click.echo(f"{target.id:4d}  {target.key:60s} {state}{description}")


@targets.command("add")
@click.argument("spreadsheet_id")
@click.option("--sheet-name", default=None, help="Section name (default: DEFAULT_SHEET_NAME).")
@click.option("--description", default=None)
@click.option("--inactive", is_flag=True, help="Register without publishing to it yet.")
@click.pass_context
def targets_add(
    ctx: click.Context,
    spreadsheet_id: str,
    sheet_name: str | None,
    description: str | None,
    inactive: bool,
) -> None:
    section = sheet_name or ctx.obj["settings"].default_sheet_name
    target = _with_runtime(
        ctx,
        lambda rt: rt.store.add_target(
            spreadsheet_id, section, description=description, active=not inactive
        ),
    )
    click.echo(f"Added target {target.id}: {target.key}")


def _toggle(ctx: click.Context, spreadsheet_id: str, sheet_name: str | None, active: bool) -> None:
    section = sheet_name or ctx.obj["settings"].default_sheet_name
    found = _with_runtime(
        ctx, lambda rt: rt.store.set_target_active(spreadsheet_id, section, active)
    )
    if not found:
        click.echo(f"No target {spreadsheet_id}:{section}", err=True)
        sys.exit(1)
    click.echo(f"{'Enabled' if active else 'Disabled'} {spreadsheet_id}:{section}")


@targets.command("enable")
@click.argument("spreadsheet_id")
@click.option("--sheet-name", default=None)
@click.pass_context
def targets_enable(ctx: click.Context, spreadsheet_id: str, sheet_name: str | None) -> None:
    _toggle(ctx, spreadsheet_id, sheet_name, True)


@targets.command("disable")
@click.argument("spreadsheet_id")
@click.option("--sheet-name", default=None)
@click.pass_context
def targets_disable(ctx: click.Context, spreadsheet_id: str, sheet_name: str | None) -> None:
    _toggle(ctx, spreadsheet_id, sheet_name, False)


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create tables (development databases only; production uses migrations)."""
    _with_runtime(ctx, lambda rt: create_all(rt.engine))
    click.echo("Tables created.")


if __name__ == "__main__":
    main()
