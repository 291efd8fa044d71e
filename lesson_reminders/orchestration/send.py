"""Outbox-backed delivery of email notices with bounded retry."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from lesson_reminders.adapters.email_gateway import NotificationGateway
from lesson_reminders.adapters.repository import ReminderRepository
from lesson_reminders.domain.models import DeliveryStatus, NotificationKind, OutboundNotification
from lesson_reminders.utils.logging import get_structured_logger, log_workflow_event
from lesson_reminders.utils.timeouts import BoundedCaller

MAX_BACKOFF_SECONDS = 3600

OUTCOME_SENT = "sent"
OUTCOME_RETRY = "retry_scheduled"
OUTCOME_DEAD_LETTER = "dead_letter"

GATEWAY_METHODS = {
    NotificationKind.CONFIRMATION_REMINDER: "send_confirmation_reminder",
    NotificationKind.AUTO_CANCELLED: "send_auto_cancelled",
}


def retry_delay(attempts: int, base_seconds: int) -> timedelta:
    """Exponential backoff after the given number of failed attempts."""
    seconds = base_seconds * (2 ** max(0, attempts - 1))
    return timedelta(seconds=min(seconds, MAX_BACKOFF_SECONDS))


class NotificationSender:
    """Queue every notice in the outbox, then try to deliver it.

    A failed, false or timed-out gateway call leaves the notice pending with
    a later ``available_at``; the delivery pass picks it up again until the
    attempt budget is spent.
    """

    def __init__(
        self,
        repository: ReminderRepository,
        gateway: NotificationGateway,
        caller: BoundedCaller,
        *,
        max_attempts: int,
        base_backoff_seconds: int,
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.caller = caller
        self.max_attempts = max_attempts
        self.base_backoff_seconds = base_backoff_seconds
        self._events = get_structured_logger()

    def enqueue_and_send(
        self,
        kind: NotificationKind,
        payload: dict[str, Any],
        *,
        now: datetime,
        reminder_id: str | None = None,
    ) -> str:
        notification = self.repository.enqueue_notification(kind, payload, now=now, reminder_id=reminder_id)
        return self.attempt(notification, now=now)

    def attempt(self, notification: OutboundNotification, *, now: datetime) -> str:
        method = getattr(self.gateway, GATEWAY_METHODS[notification.kind])
        client_name = str(notification.payload.get("client_name", ""))
        error: str | None = None
        try:
            delivered = self.caller.call(method, **notification.payload)
            if delivered is not True:
                error = "SEND_FALSE"
        except Exception as exc:  # any gateway failure is retryable
            error = f"{type(exc).__name__}: {exc}"

        if error is None:
            self.repository.mark_notification_sent(notification.notification_id, now=now)
            if notification.reminder_id:
                self.repository.set_reminder_delivery_status(notification.reminder_id, DeliveryStatus.DELIVERED)
            log_workflow_event(
                self._events,
                workflow_step=f"deliver_{notification.kind.value}",
                client_name=client_name,
                status="sent",
                message=f"Notification {notification.notification_id} delivered",
            )
            return OUTCOME_SENT

        attempts = notification.attempts + 1
        if attempts >= self.max_attempts:
            self.repository.mark_notification_dead_letter(notification.notification_id, error=error)
            if notification.reminder_id:
                self.repository.set_reminder_delivery_status(notification.reminder_id, DeliveryStatus.FAILED)
            log_workflow_event(
                self._events,
                workflow_step=f"deliver_{notification.kind.value}",
                client_name=client_name,
                status="failed",
                error_code="DEAD_LETTER",
                error_message=error,
                message=f"Notification {notification.notification_id} gave up after {attempts} attempts",
            )
            return OUTCOME_DEAD_LETTER

        available_at = now + retry_delay(attempts, self.base_backoff_seconds)
        self.repository.mark_notification_retry(
            notification.notification_id,
            error=error,
            available_at=available_at,
        )
        log_workflow_event(
            self._events,
            workflow_step=f"deliver_{notification.kind.value}",
            client_name=client_name,
            status="failed",
            error_code="RETRY_SCHEDULED",
            error_message=error,
            message=f"Notification {notification.notification_id} retry at {available_at.isoformat()}",
        )
        return OUTCOME_RETRY
