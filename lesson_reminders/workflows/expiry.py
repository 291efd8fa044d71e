"""Expiry pass: cancel lessons whose confirmation deadline lapsed."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from lesson_reminders.adapters.repository import ReminderRepository
from lesson_reminders.domain.models import Appointment, NotificationKind
from lesson_reminders.orchestration.messages import auto_cancelled_message, format_lesson_time
from lesson_reminders.orchestration.send import NotificationSender
from lesson_reminders.utils.logging import get_structured_logger, log_workflow_event

WORKFLOW_STEP = "reminder_expiry"


def notify_cancellation(
    repository: ReminderRepository,
    sender: NotificationSender,
    appointment: Appointment,
    *,
    now: datetime,
    zone: ZoneInfo,
) -> str:
    """Post the in-app cancellation notice and queue the cancellation email."""
    lesson_date, lesson_time = format_lesson_time(appointment.scheduled_at, zone)
    conversation = repository.find_or_create_conversation(
        appointment.coach.person_id,
        appointment.client.person_id,
        now=now,
    )
    repository.create_in_app_message(
        conversation.conversation_id,
        auto_cancelled_message(
            client_name=appointment.client.name,
            coach_name=appointment.coach.name,
            lesson_date=lesson_date,
            lesson_time=lesson_time,
        ),
        False,
        sender_id=appointment.coach.person_id,
        now=now,
    )
    if not appointment.client.email:
        return "no_email"
    return sender.enqueue_and_send(
        NotificationKind.AUTO_CANCELLED,
        {
            "email": appointment.client.email,
            "client_name": appointment.client.name,
            "coach_name": appointment.coach.name,
            "date_time": f"{lesson_date} at {lesson_time}",
        },
        now=now,
    )


def run_expiry_pass(
    repository: ReminderRepository,
    sender: NotificationSender,
    *,
    now: datetime,
    zone: ZoneInfo,
) -> list[dict[str, Any]]:
    """Cancel every appointment whose reminder lapsed without confirmation.

    Re-running the pass is a no-op: cancelled appointments and expired
    reminders no longer match the query, and the repository refuses a
    second cancellation.
    """
    logger = get_structured_logger()
    records: list[dict[str, Any]] = []

    try:
        lapsed = repository.find_expired_unconfirmed_reminders(now)
    except Exception as exc:
        log_workflow_event(
            logger,
            workflow_step=WORKFLOW_STEP,
            status="failed",
            error_code=type(exc).__name__.upper(),
            error_message=str(exc),
            message="Expired reminder query failed; pass aborted",
        )
        return records

    for reminder in lapsed:
        record: dict[str, Any] = {
            "appointment_id": reminder.appointment_id,
            "reminder_id": reminder.reminder_id,
            "client_name": "",
        }
        try:
            appointment = repository.get_appointment(reminder.appointment_id)
            if appointment is None:
                records.append({**record, "status": "skipped", "reason": "appointment_missing"})
                continue
            record["client_name"] = appointment.client.name

            if not repository.cancel_with_reminder(reminder.reminder_id, now):
                records.append({**record, "status": "skipped", "reason": "already_resolved"})
                log_workflow_event(
                    logger,
                    workflow_step=WORKFLOW_STEP,
                    client_name=appointment.client.name,
                    appointment_id=appointment.appointment_id,
                    status="skipped",
                    message="Reminder resolved before cancellation",
                )
                continue
        except Exception as exc:
            records.append({**record, "status": "failed", "reason": type(exc).__name__})
            log_workflow_event(
                logger,
                workflow_step=WORKFLOW_STEP,
                client_name=record["client_name"],
                appointment_id=reminder.appointment_id,
                status="failed",
                error_code=type(exc).__name__.upper(),
                error_message=str(exc),
                message="Cancellation failed; will retry next tick",
            )
            continue

        try:
            outcome = notify_cancellation(repository, sender, appointment, now=now, zone=zone)
        except Exception as exc:
            outcome = "notify_failed"
            log_workflow_event(
                logger,
                workflow_step=WORKFLOW_STEP,
                client_name=appointment.client.name,
                appointment_id=appointment.appointment_id,
                status="failed",
                error_code=type(exc).__name__.upper(),
                error_message=str(exc),
                message="Cancellation notice failed; lesson remains cancelled",
            )

        records.append({**record, "status": "cancelled", "delivery": outcome})
        log_workflow_event(
            logger,
            workflow_step=WORKFLOW_STEP,
            client_name=appointment.client.name,
            appointment_id=appointment.appointment_id,
            status="cancelled",
            message=f"Lesson auto-cancelled; reminder expired at {reminder.expires_at.isoformat()}",
        )

    return records
