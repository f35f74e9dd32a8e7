"""
freshness_check.py — Lightweight freshness monitor for the tariff store and targets.

Reports the latest reconciled tariff date and each publish target's last
sync time, flags anything older than its threshold, writes a JSON report
and optionally sends an email alert.

Thresholds (environment):
    FRESHNESS_MAX_TARIFF_AGE_DAYS   default 1
    FRESHNESS_MAX_SYNC_AGE_HOURS    default 3

Usage:
    python monitoring/freshness_check.py
"""

from __future__ import annotations

import asyncio
import json
import os
import smtplib
import sys
from datetime import date, datetime, timezone
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Bootstrap: make the shared and pipeline packages importable when running
# this script directly from the repo root.
# ---------------------------------------------------------------------------
_REPO_ROOT = Path(__file__).resolve().parent.parent
for _src in (_REPO_ROOT / "shared" / "python" / "src", _REPO_ROOT / "packages" / "pipeline" / "src"):
    if str(_src) not in sys.path:
        sys.path.insert(0, str(_src))

from boxrates_shared.config import settings  # noqa: E402
from boxrates_shared.time_utils import business_today, resolve_timezone  # noqa: E402

from boxrates_pipeline.loaders.store import ReconciliationStore  # noqa: E402
from boxrates_pipeline.runtime import build_runtime  # noqa: E402

MAX_TARIFF_AGE_DAYS = int(os.environ.get("FRESHNESS_MAX_TARIFF_AGE_DAYS", "1"))
MAX_SYNC_AGE_HOURS = float(os.environ.get("FRESHNESS_MAX_SYNC_AGE_HOURS", "3"))


# ---------------------------------------------------------------------------
# Report generation
# ---------------------------------------------------------------------------


async def build_report(
    store: ReconciliationStore,
    *,
    today: date,
    now: datetime,
    max_tariff_age_days: int = MAX_TARIFF_AGE_DAYS,
    max_sync_age_hours: float = MAX_SYNC_AGE_HOURS,
) -> list[dict[str, Any]]:
    """One row for the tariff table plus one per active publish target."""
    rows: list[dict[str, Any]] = []

    latest = await store.latest_tariff_date()
    age_days = (today - latest).days if latest else None
    rows.append(
        {
            "name": "box_tariffs",
            "latest": latest.isoformat() if latest else None,
            "age": age_days,
            "max_age": max_tariff_age_days,
            "unit": "days",
            "records": await store.tariff_count(latest) if latest else 0,
            "is_stale": age_days is None or age_days > max_tariff_age_days,
        }
    )

    for target in await store.active_targets():
        synced = target.last_synced_at
        if synced is not None and synced.tzinfo is None:
            synced = synced.replace(tzinfo=timezone.utc)
        age_hours = round((now - synced).total_seconds() / 3600, 1) if synced else None
        rows.append(
            {
                "name": target.key,
                "latest": synced.isoformat() if synced else None,
                "age": age_hours,
                "max_age": max_sync_age_hours,
                "unit": "hours",
                "records": None,
                "is_stale": age_hours is None or age_hours > max_sync_age_hours,
            }
        )
    return rows


def print_report_table(report: list[dict[str, Any]]) -> None:
    header = f"{'Item':<60} {'Latest':>26} {'Age':>8} {'Max':>6} {'Stale?':>7}"
    sep = "-" * len(header)
    print()
    print(header)
    print(sep)
    for row in report:
        age = "-" if row["age"] is None else f"{row['age']}{row['unit'][0]}"
        print(
            f"{row['name']:<60} {row['latest'] or '-':>26} {age:>8} "
            f"{row['max_age']:>6} {'YES' if row['is_stale'] else '':>7}"
        )
    print(sep)
    print()


def write_json_report(report: list[dict[str, Any]], path: Path) -> None:
    payload = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "items": report,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, default=str) + "\n")
    print(f"Report written to {path}")


# ---------------------------------------------------------------------------
# Email alerting
# ---------------------------------------------------------------------------


def _send_email_alert(stale: list[dict[str, Any]]) -> None:
    """Send an email listing stale items, if SMTP env vars are set."""
    to_addr = os.environ.get("ALERT_EMAIL_TO")
    from_addr = os.environ.get("ALERT_EMAIL_FROM")
    smtp_host = os.environ.get("SMTP_HOST")
    smtp_port = int(os.environ.get("SMTP_PORT", "587"))
    smtp_user = os.environ.get("SMTP_USER")
    smtp_pass = os.environ.get("SMTP_PASS")

    if not (to_addr and from_addr and smtp_host):
        print("Email alert skipped: ALERT_EMAIL_TO, ALERT_EMAIL_FROM and SMTP_HOST are required")
        return

    lines = ["The following boxrates items are stale:\n"]
    for item in stale:
        lines.append(
            f"  • {item['name']}: latest {item['latest'] or 'never'} "
            f"(max age {item['max_age']} {item['unit']})"
        )
    lines.append("\nCheck the scheduler logs and run `boxrates run` to refresh.")

    msg = MIMEText("\n".join(lines), "plain")
    msg["Subject"] = f"[boxrates] {len(stale)} stale item(s) detected"
    msg["From"] = from_addr
    msg["To"] = to_addr

    try:
        with smtplib.SMTP(smtp_host, smtp_port) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            if smtp_user and smtp_pass:
                server.login(smtp_user, smtp_pass)
            server.sendmail(from_addr, [to_addr], msg.as_string())
        print(f"Alert email sent to {to_addr}")
    except (smtplib.SMTPException, OSError) as exc:
        print(f"Failed to send alert email: {exc}")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


async def _collect() -> list[dict[str, Any]]:
    runtime = build_runtime(settings)
    try:
        return await build_report(
            runtime.store,
            today=business_today(resolve_timezone(settings.business_timezone)),
            now=datetime.now(timezone.utc),
        )
    finally:
        await runtime.close()


def main() -> int:
    print("=== boxrates freshness check ===")
    report = asyncio.run(_collect())
    print_report_table(report)
    write_json_report(report, Path(__file__).resolve().parent / "freshness_report.json")

    stale = [r for r in report if r["is_stale"]]
    if stale:
        print(f"{len(stale)} item(s) are stale!")
        _send_email_alert(stale)
        return 1
    print("All items are within their freshness thresholds.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
