from __future__ import annotations

from datetime import timedelta

from lesson_reminders.adapters.repository import ReminderRepository
from lesson_reminders.domain.models import Appointment, ReminderType
from lesson_reminders.utils.idempotency import SentReminderSet, build_reminder_key

SKIP_IN_MEMORY = "already_sent_in_memory"
SKIP_PERSISTED = "already_sent_in_store"


class DedupGuard:
    """Two-layer duplicate check run before every reminder dispatch.

    The process-local set answers for reminders sent since start; the
    repository lookup covers reminders sent by an earlier process.
    """

    def __init__(
        self,
        repository: ReminderRepository,
        sent: SentReminderSet,
        *,
        lookahead: timedelta,
        tolerance: timedelta,
        reminder_type: ReminderType = ReminderType.LESSON_CONFIRMATION,
    ) -> None:
        self.repository = repository
        self.sent = sent
        self.lookahead = lookahead
        self.tolerance = tolerance
        self.reminder_type = reminder_type

    def key_for(self, appointment: Appointment) -> str:
        return build_reminder_key(appointment.appointment_id, appointment.scheduled_at, self.reminder_type)

    def check(self, appointment: Appointment) -> str | None:
        """Return a skip reason, or None when the appointment may be reminded."""
        if self.sent.has_been_sent(self.key_for(appointment)):
            return SKIP_IN_MEMORY

        target_send_time = appointment.scheduled_at - self.lookahead
        if self.repository.reminder_exists_between(
            appointment.appointment_id,
            target_send_time - self.tolerance,
            target_send_time + self.tolerance,
        ):
            return SKIP_PERSISTED
        return None

    def record(self, appointment: Appointment) -> str:
        key = self.key_for(appointment)
        self.sent.mark_sent(key)
        return key
