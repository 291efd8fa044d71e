"""Reminder pass: select, dedup, claim and notify for each upcoming lesson."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from lesson_reminders.adapters.repository import ReminderRepository
from lesson_reminders.domain.models import Appointment, NotificationKind
from lesson_reminders.orchestration.dedup import DedupGuard
from lesson_reminders.orchestration.messages import (
    confirmation_request_message,
    format_lesson_time,
    hours_until,
)
from lesson_reminders.orchestration.send import OUTCOME_SENT, NotificationSender
from lesson_reminders.utils.identity import new_confirmation_token
from lesson_reminders.utils.logging import get_structured_logger, log_workflow_event
from lesson_reminders.workflows.selector import select_candidates

WORKFLOW_STEP = "reminder_dispatch"


@dataclass(slots=True)
class DispatchContext:
    repository: ReminderRepository
    guard: DedupGuard
    sender: NotificationSender
    lookahead: timedelta
    window_tolerance: timedelta
    confirmation_window: timedelta
    zone: ZoneInfo


def _post_confirmation_request(
    context: DispatchContext,
    appointment: Appointment,
    *,
    now: datetime,
    lesson_date: str,
    lesson_time: str,
    hours_remaining: int,
) -> None:
    conversation = context.repository.find_or_create_conversation(
        appointment.coach.person_id,
        appointment.client.person_id,
        now=now,
    )
    context.repository.create_in_app_message(
        conversation.conversation_id,
        confirmation_request_message(
            client_name=appointment.client.name,
            coach_name=appointment.coach.name,
            lesson_date=lesson_date,
            lesson_time=lesson_time,
            hours_remaining=hours_remaining,
            confirmation_hours=int(context.confirmation_window.total_seconds() // 3600),
        ),
        True,
        sender_id=appointment.coach.person_id,
        now=now,
    )


def run_reminder_pass(context: DispatchContext, *, now: datetime) -> list[dict[str, Any]]:
    """Issue confirmation requests for lessons entering the reminder window.

    Each candidate ends up with exactly one record whose status is
    ``sent``, ``skipped`` or ``failed``. A failure on one appointment never
    stops the pass.
    """
    logger = get_structured_logger()
    records: list[dict[str, Any]] = []

    try:
        candidates = select_candidates(
            context.repository,
            now,
            lookahead=context.lookahead,
            tolerance=context.window_tolerance,
        )
    except Exception as exc:
        log_workflow_event(
            logger,
            workflow_step=WORKFLOW_STEP,
            status="failed",
            error_code=type(exc).__name__.upper(),
            error_message=str(exc),
            message="Candidate query failed; pass aborted",
        )
        return records

    for appointment in candidates:
        client_name = appointment.client.name
        reminder_key = context.guard.key_for(appointment)
        record: dict[str, Any] = {
            "appointment_id": appointment.appointment_id,
            "client_name": client_name,
            "reminder_key": reminder_key,
        }

        def _event(status: str, message: str, **kwargs: Any) -> None:
            log_workflow_event(
                logger,
                workflow_step=WORKFLOW_STEP,
                client_name=client_name,
                appointment_id=appointment.appointment_id,
                reminder_key=reminder_key,
                status=status,
                message=message,
                **kwargs,
            )

        try:
            skip_reason = context.guard.check(appointment)
        except Exception as exc:
            records.append({**record, "status": "failed", "reason": type(exc).__name__})
            _event(
                "failed",
                "Dedup lookup failed",
                error_code=type(exc).__name__.upper(),
                error_message=str(exc),
            )
            continue

        if skip_reason is None and not appointment.client.email:
            skip_reason = "no_user_account"
        if skip_reason is not None:
            records.append({**record, "status": "skipped", "reason": skip_reason})
            _event("skipped", f"Reminder skipped ({skip_reason})")
            continue

        expires_at = now + context.confirmation_window
        try:
            reminder = context.repository.claim_reminder_dispatch(
                appointment.appointment_id,
                new_confirmation_token(),
                now=now,
                expires_at=expires_at,
            )
        except Exception as exc:
            records.append({**record, "status": "failed", "reason": type(exc).__name__})
            _event(
                "failed",
                "Reminder could not be persisted; will retry next tick",
                error_code=type(exc).__name__.upper(),
                error_message=str(exc),
            )
            continue

        context.guard.record(appointment)
        if reminder is None:
            records.append({**record, "status": "skipped", "reason": "already_claimed"})
            _event("skipped", "Appointment already claimed by another dispatch")
            continue

        lesson_date, lesson_time = format_lesson_time(appointment.scheduled_at, context.zone)
        hours_remaining = hours_until(appointment.scheduled_at, now)
        record["reminder_id"] = reminder.reminder_id

        try:
            _post_confirmation_request(
                context,
                appointment,
                now=now,
                lesson_date=lesson_date,
                lesson_time=lesson_time,
                hours_remaining=hours_remaining,
            )
        except Exception as exc:
            record["in_app_error"] = type(exc).__name__
            _event(
                "failed",
                "In-app confirmation message failed; reminder stays issued",
                error_code=type(exc).__name__.upper(),
                error_message=str(exc),
            )

        try:
            outcome = context.sender.enqueue_and_send(
                NotificationKind.CONFIRMATION_REMINDER,
                {
                    "email": appointment.client.email,
                    "client_name": client_name,
                    "coach_name": appointment.coach.name,
                    "date": lesson_date,
                    "time": lesson_time,
                    "hours_remaining": hours_remaining,
                },
                now=now,
                reminder_id=reminder.reminder_id,
            )
        except Exception as exc:
            outcome = "enqueue_failed"
            _event(
                "failed",
                "Confirmation email could not be queued",
                error_code=type(exc).__name__.upper(),
                error_message=str(exc),
            )

        records.append({**record, "status": "sent", "delivery": outcome})
        _event(
            "sent",
            f"Confirmation requested for lesson in {hours_remaining} hours ({lesson_time}); "
            f"email {'delivered' if outcome == OUTCOME_SENT else outcome}",
        )

    return records
