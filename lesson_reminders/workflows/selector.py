from __future__ import annotations

from datetime import datetime, timedelta

from lesson_reminders.adapters.repository import ReminderRepository
from lesson_reminders.domain.models import Appointment, AppointmentStatus


def reminder_window(now: datetime, *, lookahead: timedelta, tolerance: timedelta) -> tuple[datetime, datetime]:
    """Inclusive ``[now + lookahead - tolerance, now + lookahead + tolerance]``."""
    target = now + lookahead
    return target - tolerance, target + tolerance


def select_candidates(
    repository: ReminderRepository,
    now: datetime,
    *,
    lookahead: timedelta,
    tolerance: timedelta,
) -> list[Appointment]:
    """Confirmed, not-yet-reminded appointments that start inside the window."""
    start, end = reminder_window(now, lookahead=lookahead, tolerance=tolerance)
    return repository.find_appointments_in_window(
        start,
        end,
        status=AppointmentStatus.CONFIRMED,
        reminder_sent=False,
    )
