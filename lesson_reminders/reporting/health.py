"""Liveness and readiness snapshots for operators."""

from __future__ import annotations

from typing import Any

from lesson_reminders.jobs.scheduler import ReminderTicker
from lesson_reminders.utils.clock import Clock
from lesson_reminders.utils.idempotency import SentReminderSet


class HealthReporter:
    def __init__(self, ticker: ReminderTicker, sent: SentReminderSet, *, clock: Clock) -> None:
        self.ticker = ticker
        self.sent = sent
        self.clock = clock

    def get_status(self) -> dict[str, Any]:
        last_check = self.ticker.last_check_time
        return {
            "is_running": self.ticker.is_running,
            "last_check_time": last_check.isoformat() if last_check else None,
            "check_count": self.ticker.check_count,
            "sent_reminders_count": len(self.sent),
            "skipped_overlaps": self.ticker.skipped_overlaps,
        }

    def get_health(self) -> dict[str, Any]:
        is_running = self.ticker.is_running
        last_check = self.ticker.last_check_time
        since_last_check = (self.clock() - last_check).total_seconds() if last_check else 0
        return {
            "status": "healthy" if is_running else "stopped",
            "last_check": last_check.isoformat() if last_check else None,
            "time_since_last_check": round(since_last_check),
            "check_count": self.ticker.check_count,
            "sent_reminders_count": len(self.sent),
            "is_production_ready": is_running and self.ticker.check_count > 0,
        }
