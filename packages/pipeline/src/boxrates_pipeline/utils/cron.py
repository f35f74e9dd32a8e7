"""
utils/cron.py — Five-field cron schedule for the recurring trigger.

Parsing and fire-time arithmetic come from APScheduler's CronTrigger; the
scheduler keeps its own timer loop and only asks this module when to wake.

Usage:
    schedule = CronSchedule("0 * * * *", ZoneInfo("Europe/Moscow"))
    schedule.next_after(datetime.now(timezone.utc))   # next top of the hour
"""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo

from apscheduler.triggers.cron import CronTrigger

from boxrates_pipeline.errors import ValidationError


class CronSchedule:
    """Standard crontab expression evaluated in a fixed timezone."""

    def __init__(self, expression: str, tz: tzinfo) -> None:
        try:
            self._trigger = CronTrigger.from_crontab(expression, timezone=tz)
        except ValueError as exc:
            raise ValidationError(f"Invalid cron expression {expression!r}: {exc}") from exc
        self.expression = expression
        self.tz = tz

    def next_after(self, moment: datetime) -> datetime:
        """First fire time strictly after `moment`, as an aware datetime in self.tz."""
        # CronTrigger returns fire times >= now
        fire = self._trigger.get_next_fire_time(None, moment + timedelta(microseconds=1))
        if fire is None:
            raise ValidationError(f"Cron expression never fires: {self.expression!r}")
        return fire.astimezone(self.tz)

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r}, tz={self.tz})"
