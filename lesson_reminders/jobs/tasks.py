"""Task functions executed by the scheduler on every tick."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from lesson_reminders.adapters.repository import ReminderRepository
from lesson_reminders.domain.models import TickResult
from lesson_reminders.orchestration.send import NotificationSender
from lesson_reminders.reporting.summary import summarize_tick
from lesson_reminders.workflows.delivery import run_delivery_pass
from lesson_reminders.workflows.dispatch import DispatchContext, run_reminder_pass
from lesson_reminders.workflows.expiry import run_expiry_pass

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TickContext:
    dispatch: DispatchContext
    repository: ReminderRepository
    sender: NotificationSender
    zone: ZoneInfo


def run_reminder_tick(context: TickContext, *, now: datetime, check_number: int) -> TickResult:
    """Run the reminder, expiry and delivery passes in order."""
    logger.info("Checking for lessons that need reminders at %s (check #%s)", now.isoformat(), check_number)

    reminder_records = run_reminder_pass(context.dispatch, now=now)
    expiry_records = run_expiry_pass(context.repository, context.sender, now=now, zone=context.zone)
    delivery_records = run_delivery_pass(context.repository, context.sender, now=now)

    summary = summarize_tick(reminder_records, expiry_records, delivery_records)
    logger.info(
        "Tick #%s completed: reminders sent=%s skipped=%s failed=%s; cancelled=%s; redelivered=%s",
        check_number,
        summary["reminders"]["sent"],
        summary["reminders"]["skipped"]["total"],
        summary["reminders"]["failed"]["total"],
        summary["expiry"]["cancelled"],
        summary["delivery"]["sent"],
    )
    return TickResult(
        started_at=now,
        check_number=check_number,
        reminder_records=reminder_records,
        expiry_records=expiry_records,
        delivery_records=delivery_records,
        summary=summary,
    )
