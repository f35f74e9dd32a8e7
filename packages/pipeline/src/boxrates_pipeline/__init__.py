"""
boxrates_pipeline — Scheduled box tariff sync: fetch, reconcile, publish.

Architecture:
  sources/     — rate-limited, retrying client for the upstream tariff API
  transforms/  — entry normalization, sorting coefficient, sheet formatting
  loaders/     — relational upsert store and the Google Sheets writer
  pipelines/   — reconcile, publish and the combined cycle
  utils/       — structlog config, retry, rate limiter, credentials, cron
  scheduler    — cron-driven, single-flight runner for the cycle
  runtime      — composition root wiring one instance of each component

Quick start:
    from boxrates_shared.config import settings
    from boxrates_pipeline.runtime import build_runtime
    import asyncio

    runtime = build_runtime(settings)
    result = asyncio.run(runtime.cycle.run("2025-11-12"))

CLI:
    boxrates run --date 2025-11-12
    boxrates serve
    python scripts/backfill.py --start-date 2025-11-01 --end-date 2025-11-12
"""

__version__ = "0.1.0"
