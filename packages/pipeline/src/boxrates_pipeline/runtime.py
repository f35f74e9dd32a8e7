"""
runtime.py — Composition root: one instance of each pipeline component per process.

Only entry points (CLI, scripts, monitoring) call build_runtime(); every
component below receives its collaborators explicitly.

Credentials are resolved on first use, so commands that never reach the
tariff API or the Sheets API (status, targets, init-db) run without them.

Usage:
    runtime = build_runtime(settings)
    try:
        await runtime.cycle.run("2025-11-12")
    finally:
        await runtime.close()
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from boxrates_shared.config import Settings
from boxrates_shared.db import create_engine, create_sessionmaker
from boxrates_shared.time_utils import resolve_timezone

from boxrates_pipeline.loaders.sheets_writer import SheetsWriter
from boxrates_pipeline.loaders.store import ReconciliationStore
from boxrates_pipeline.pipelines.cycle import TariffSyncCycle
from boxrates_pipeline.pipelines.publish import PublishCoordinator
from boxrates_pipeline.pipelines.reconcile import TariffReconciler
from boxrates_pipeline.scheduler import TariffScheduler
from boxrates_pipeline.sources.tariffs_api import TariffApiClient
from boxrates_pipeline.utils.credentials import (
    AccessToken,
    ServiceAccountTokenSource,
    StaticTokenSource,
    TokenCache,
    TokenFetcher,
    load_service_account_info,
)
from boxrates_pipeline.utils.rate_limit import RateLimiter
from boxrates_pipeline.utils.retry import RetryPolicy


def _lazy_fetcher(factory: Callable[[], Any]) -> TokenFetcher:
    """Build the token source on the first fetch, then reuse it."""
    source: Any = None

    async def fetch() -> AccessToken:
        nonlocal source
        if source is None:
            source = factory()
        return await source.fetch()

    return fetch


@dataclass
class Runtime:
    settings: Settings
    engine: AsyncEngine
    store: ReconciliationStore
    client: TariffApiClient
    writer: SheetsWriter
    reconciler: TariffReconciler
    coordinator: PublishCoordinator
    cycle: TariffSyncCycle
    scheduler: TariffScheduler

    async def close(self) -> None:
        await self.engine.dispose()


def build_runtime(settings: Settings) -> Runtime:
    tz = resolve_timezone(settings.business_timezone)
    engine = create_engine(settings.database_url, echo=settings.database_echo)
    store = ReconciliationStore(create_sessionmaker(engine))

    retry_policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_s,
        max_delay=settings.retry_max_delay_s,
    )

    api_tokens = TokenCache(
        _lazy_fetcher(lambda: StaticTokenSource(settings.tariffs_api_token)),
        refresh_threshold_s=settings.token_refresh_threshold_s,
        name="tariffs_api",
    )
    client = TariffApiClient(
        settings.tariffs_api_base_url,
        api_tokens,
        path=settings.tariffs_api_path,
        timeout_s=settings.tariffs_api_timeout_s,
        limiter=RateLimiter(
            max_concurrent=settings.tariffs_api_max_concurrent,
            max_calls=settings.tariffs_api_calls_per_window,
            window_s=settings.tariffs_api_window_s,
        ),
        retry_policy=retry_policy,
    )

    sheets_tokens = TokenCache(
        _lazy_fetcher(
            lambda: ServiceAccountTokenSource(
                load_service_account_info(settings.google_credentials_json),
                scopes=settings.google_scopes_list,
                token_uri=settings.google_token_uri,
                timeout_s=settings.sheets_api_timeout_s,
            )
        ),
        refresh_threshold_s=settings.token_refresh_threshold_s,
        name="google_sheets",
    )
    writer = SheetsWriter(
        sheets_tokens,
        base_url=settings.sheets_api_base_url,
        timeout_s=settings.sheets_api_timeout_s,
        retry_policy=retry_policy,
    )

    reconciler = TariffReconciler(client, store, timezone=tz)
    coordinator = PublishCoordinator(store, writer, timezone=tz)
    cycle = TariffSyncCycle(reconciler, coordinator, timezone=tz)
    scheduler = TariffScheduler(cycle, cron_expression=settings.schedule_cron, timezone=tz)

    return Runtime(
        settings=settings,
        engine=engine,
        store=store,
        client=client,
        writer=writer,
        reconciler=reconciler,
        coordinator=coordinator,
        cycle=cycle,
        scheduler=scheduler,
    )
