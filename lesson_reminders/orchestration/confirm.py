"""Client acknowledgment of lesson confirmation requests."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from lesson_reminders.adapters.repository import ReminderRepository
from lesson_reminders.domain.errors import (
    AppointmentCancelledError,
    InvalidDecisionError,
    NotParticipantError,
    ReminderExpiredError,
    ReminderNotFoundError,
)
from lesson_reminders.domain.models import (
    AckDecision,
    AcknowledgeResult,
    Appointment,
    AppointmentStatus,
    Reminder,
    ReminderStatus,
)
from lesson_reminders.orchestration.messages import (
    attendance_confirmed_message,
    declined_message,
    format_lesson_time,
)
from lesson_reminders.utils.clock import Clock
from lesson_reminders.utils.logging import get_structured_logger, log_workflow_event

WORKFLOW_STEP = "reminder_acknowledge"


class ConfirmationHandler:
    def __init__(self, repository: ReminderRepository, *, clock: Clock, zone: ZoneInfo) -> None:
        self.repository = repository
        self.clock = clock
        self.zone = zone
        self._events = get_structured_logger()

    def _resolve(self, reminder_id_or_token: str) -> tuple[Reminder, Appointment]:
        reminder = self.repository.get_reminder(reminder_id_or_token)
        if reminder is None:
            reminder = self.repository.find_reminder_by_token(reminder_id_or_token)
        if reminder is None:
            raise ReminderNotFoundError("No reminder matches the given id or token")
        appointment = self.repository.get_appointment(reminder.appointment_id)
        if appointment is None:
            raise ReminderNotFoundError(f"Appointment {reminder.appointment_id} no longer exists")
        return reminder, appointment

    def acknowledge(
        self,
        reminder_id_or_token: str,
        decision: AckDecision | str = AckDecision.CONFIRM,
        *,
        client_id: str | None = None,
    ) -> AcknowledgeResult:
        """Apply a client's answer to a confirmation request.

        Repeating a confirmation (double click, resubmitted form) returns a
        result with ``already_confirmed`` set instead of raising.
        """
        try:
            decision = AckDecision(decision)
        except ValueError as exc:
            raise InvalidDecisionError(f"Unknown decision {decision!r}") from exc

        reminder, appointment = self._resolve(reminder_id_or_token)
        if client_id is not None and client_id != reminder.client_id:
            raise NotParticipantError("Only the reminded client may acknowledge this lesson")

        if decision == AckDecision.CONFIRM:
            return self._confirm(reminder, appointment)
        return self._decline(reminder, appointment)

    def _confirm(self, reminder: Reminder, appointment: Appointment) -> AcknowledgeResult:
        now = self.clock()
        result = AcknowledgeResult(
            reminder_id=reminder.reminder_id,
            appointment_id=appointment.appointment_id,
            decision=AckDecision.CONFIRM,
        )

        if reminder.status == ReminderStatus.CONFIRMED:
            result.already_confirmed = True
            result.acknowledged_at = reminder.confirmed_at
            return result
        if appointment.status == AppointmentStatus.CANCELLED:
            raise AppointmentCancelledError("The lesson has already been cancelled")
        if reminder.status == ReminderStatus.EXPIRED or now >= reminder.expires_at:
            raise ReminderExpiredError("The confirmation deadline has passed")

        if not self.repository.mark_reminder_confirmed(reminder.reminder_id, now):
            latest = self.repository.get_reminder(reminder.reminder_id)
            if latest is not None and latest.status == ReminderStatus.CONFIRMED:
                result.already_confirmed = True
                result.acknowledged_at = latest.confirmed_at
                return result
            raise ReminderExpiredError("The reminder is no longer awaiting confirmation")

        result.acknowledged_at = now
        log_workflow_event(
            self._events,
            workflow_step=WORKFLOW_STEP,
            client_name=appointment.client.name,
            appointment_id=appointment.appointment_id,
            status="confirmed",
            message="Lesson attendance confirmed",
        )
        self._notify_coach(
            appointment,
            attendance_confirmed_message(
                client_name=appointment.client.name,
                coach_name=appointment.coach.name,
                confirmed_at=now,
            ),
            now=now,
        )
        return result

    def _decline(self, reminder: Reminder, appointment: Appointment) -> AcknowledgeResult:
        now = self.clock()
        result = AcknowledgeResult(
            reminder_id=reminder.reminder_id,
            appointment_id=appointment.appointment_id,
            decision=AckDecision.DECLINE,
        )

        if appointment.status == AppointmentStatus.CANCELLED:
            result.already_cancelled = True
            return result
        if reminder.status == ReminderStatus.CONFIRMED:
            raise InvalidDecisionError("Attendance was already confirmed for this lesson")
        if reminder.status == ReminderStatus.EXPIRED or now >= reminder.expires_at:
            raise ReminderExpiredError("The confirmation deadline has passed")

        if not self.repository.cancel_with_reminder(reminder.reminder_id, now, require_lapsed=False):
            latest = self.repository.get_appointment(appointment.appointment_id)
            if latest is not None and latest.status == AppointmentStatus.CANCELLED:
                result.already_cancelled = True
                return result
            raise ReminderExpiredError("The reminder is no longer awaiting confirmation")

        result.acknowledged_at = now
        log_workflow_event(
            self._events,
            workflow_step=WORKFLOW_STEP,
            client_name=appointment.client.name,
            appointment_id=appointment.appointment_id,
            status="declined",
            message="Lesson declined by client and cancelled",
        )
        lesson_date, lesson_time = format_lesson_time(appointment.scheduled_at, self.zone)
        self._notify_coach(
            appointment,
            declined_message(
                client_name=appointment.client.name,
                coach_name=appointment.coach.name,
                lesson_date=lesson_date,
                lesson_time=lesson_time,
            ),
            now=now,
        )
        return result

    def _notify_coach(self, appointment: Appointment, content: str, *, now: datetime) -> None:
        """Post a follow-up to the coach; a failure here never undoes the acknowledgment."""
        try:
            conversation = self.repository.find_or_create_conversation(
                appointment.coach.person_id,
                appointment.client.person_id,
                now=now,
            )
            self.repository.create_in_app_message(
                conversation.conversation_id,
                content,
                False,
                sender_id=appointment.client.person_id,
                now=now,
            )
        except Exception as exc:
            log_workflow_event(
                self._events,
                workflow_step=WORKFLOW_STEP,
                client_name=appointment.client.name,
                appointment_id=appointment.appointment_id,
                status="failed",
                error_code=type(exc).__name__.upper(),
                error_message=str(exc),
                message="Coach follow-up message failed",
            )
