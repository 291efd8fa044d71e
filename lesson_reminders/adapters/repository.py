"""Persistence interface for appointments, reminders, messages and the outbox."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Protocol

from lesson_reminders.domain.errors import PersistenceError
from lesson_reminders.domain.models import (
    Appointment,
    AppointmentStatus,
    Conversation,
    DeliveryStatus,
    InAppMessage,
    NotificationKind,
    OutboundNotification,
    OutboxStatus,
    Reminder,
    ReminderStatus,
    ReminderType,
)
from lesson_reminders.utils.clock import ensure_utc
from lesson_reminders.utils.identity import new_record_id


class ReminderRepository(Protocol):
    def add_appointment(self, appointment: Appointment) -> Appointment: ...

    def get_appointment(self, appointment_id: str) -> Appointment | None: ...

    def list_appointments(self) -> list[Appointment]: ...

    def find_appointments_in_window(
        self,
        start: datetime,
        end: datetime,
        *,
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
        reminder_sent: bool = False,
    ) -> list[Appointment]: ...

    def reminder_exists_between(self, appointment_id: str, start: datetime, end: datetime) -> bool: ...

    def create_reminder(
        self,
        appointment_id: str,
        token: str,
        expires_at: datetime,
        *,
        now: datetime,
        reminder_type: ReminderType = ReminderType.LESSON_CONFIRMATION,
    ) -> Reminder: ...

    def update_appointment_reminder_flags(
        self,
        appointment_id: str,
        *,
        sent_at: datetime,
        confirmation_deadline: datetime,
    ) -> None: ...

    def claim_reminder_dispatch(
        self,
        appointment_id: str,
        token: str,
        *,
        now: datetime,
        expires_at: datetime,
        reminder_type: ReminderType = ReminderType.LESSON_CONFIRMATION,
    ) -> Reminder | None: ...

    def find_expired_unconfirmed_reminders(self, now: datetime) -> list[Reminder]: ...

    def update_appointment_status(self, appointment_id: str, status: AppointmentStatus) -> bool: ...

    def get_reminder(self, reminder_id: str) -> Reminder | None: ...

    def find_reminder_by_token(self, token: str) -> Reminder | None: ...

    def list_reminders(self, appointment_id: str | None = None) -> list[Reminder]: ...

    def mark_reminder_confirmed(self, reminder_id: str, now: datetime) -> bool: ...

    def mark_reminder_expired(self, reminder_id: str, now: datetime) -> bool: ...

    def cancel_with_reminder(self, reminder_id: str, now: datetime, *, require_lapsed: bool = True) -> bool: ...

    def set_reminder_delivery_status(self, reminder_id: str, status: DeliveryStatus) -> None: ...

    def find_or_create_conversation(self, coach_id: str, client_id: str, *, now: datetime) -> Conversation: ...

    def create_in_app_message(
        self,
        conversation_id: str,
        content: str,
        requires_ack: bool,
        *,
        sender_id: str,
        now: datetime,
    ) -> InAppMessage: ...

    def list_messages(self, conversation_id: str | None = None) -> list[InAppMessage]: ...

    def enqueue_notification(
        self,
        kind: NotificationKind,
        payload: dict[str, Any],
        *,
        now: datetime,
        reminder_id: str | None = None,
    ) -> OutboundNotification: ...

    def find_due_notifications(self, now: datetime, *, limit: int = 100) -> list[OutboundNotification]: ...

    def mark_notification_sent(self, notification_id: str, *, now: datetime) -> None: ...

    def mark_notification_retry(
        self,
        notification_id: str,
        *,
        error: str,
        available_at: datetime,
    ) -> OutboundNotification: ...

    def mark_notification_dead_letter(self, notification_id: str, *, error: str) -> OutboundNotification: ...

    def list_notifications(self) -> list[OutboundNotification]: ...


class InMemoryReminderRepository:
    """Thread-safe dictionary-backed repository.

    Every read returns a copy, so callers cannot mutate stored state
    without going through the repository.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._appointments: dict[str, Appointment] = {}
        self._reminders: dict[str, Reminder] = {}
        self._tokens: dict[str, str] = {}
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, InAppMessage] = {}
        self._outbox: dict[str, OutboundNotification] = {}
        self._mutation_depth = 0

    def _commit(self) -> None:
        """Hook for durable subclasses; called once per mutation."""

    def _snapshot(self) -> tuple[dict, ...]:
        return copy.deepcopy(
            (
                self._appointments,
                self._reminders,
                self._tokens,
                self._conversations,
                self._messages,
                self._outbox,
            )
        )

    def _restore(self, snapshot: tuple[dict, ...]) -> None:
        (
            self._appointments,
            self._reminders,
            self._tokens,
            self._conversations,
            self._messages,
            self._outbox,
        ) = snapshot

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """Apply the enclosed changes and commit them, or roll them back.

        Nested mutations join the outermost one, which commits once. If the
        body or the commit raises, in-memory state is restored to what it
        was before the outermost mutation began.
        """
        with self._lock:
            if self._mutation_depth:
                self._mutation_depth += 1
                try:
                    yield
                finally:
                    self._mutation_depth -= 1
                return
            snapshot = self._snapshot()
            self._mutation_depth = 1
            try:
                yield
                self._commit()
            except BaseException:
                self._restore(snapshot)
                raise
            finally:
                self._mutation_depth = 0

    def _require_appointment(self, appointment_id: str) -> Appointment:
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise PersistenceError(f"Unknown appointment {appointment_id}")
        return appointment

    def _require_reminder(self, reminder_id: str) -> Reminder:
        reminder = self._reminders.get(reminder_id)
        if reminder is None:
            raise PersistenceError(f"Unknown reminder {reminder_id}")
        return reminder

    def _require_notification(self, notification_id: str) -> OutboundNotification:
        notification = self._outbox.get(notification_id)
        if notification is None:
            raise PersistenceError(f"Unknown notification {notification_id}")
        return notification

    # appointments

    def add_appointment(self, appointment: Appointment) -> Appointment:
        """Store an appointment with every timestamp normalised to UTC."""
        stored = normalise_appointment(appointment)
        with self._lock:
            if stored.appointment_id in self._appointments:
                raise PersistenceError(f"Appointment {stored.appointment_id} already exists")
            with self._mutation():
                self._appointments[stored.appointment_id] = stored
            return copy.deepcopy(stored)

    def get_appointment(self, appointment_id: str) -> Appointment | None:
        with self._lock:
            appointment = self._appointments.get(appointment_id)
            return copy.deepcopy(appointment) if appointment else None

    def list_appointments(self) -> list[Appointment]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._appointments.values()]

    def find_appointments_in_window(
        self,
        start: datetime,
        end: datetime,
        *,
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
        reminder_sent: bool = False,
    ) -> list[Appointment]:
        start, end = ensure_utc(start), ensure_utc(end)
        with self._lock:
            return [
                copy.deepcopy(item)
                for item in self._appointments.values()
                if item.status == status
                and item.reminder_sent == reminder_sent
                and start <= item.scheduled_at <= end
            ]

    def update_appointment_reminder_flags(
        self,
        appointment_id: str,
        *,
        sent_at: datetime,
        confirmation_deadline: datetime,
    ) -> None:
        with self._lock:
            appointment = self._require_appointment(appointment_id)
            if appointment.status == AppointmentStatus.CANCELLED:
                raise PersistenceError(f"Appointment {appointment_id} is cancelled")
            with self._mutation():
                self._set_reminder_flags(appointment, sent_at, confirmation_deadline)

    def _set_reminder_flags(
        self, appointment: Appointment, sent_at: datetime, confirmation_deadline: datetime
    ) -> None:
        appointment.reminder_sent = True
        appointment.reminder_sent_at = sent_at
        appointment.confirmation_required = True
        appointment.confirmation_deadline = confirmation_deadline

    def update_appointment_status(self, appointment_id: str, status: AppointmentStatus) -> bool:
        with self._lock:
            appointment = self._require_appointment(appointment_id)
            if appointment.status == status:
                return False
            if appointment.status == AppointmentStatus.CANCELLED:
                raise PersistenceError(f"Appointment {appointment_id} is cancelled")
            with self._mutation():
                appointment.status = status
            return True

    # reminders

    def reminder_exists_between(self, appointment_id: str, start: datetime, end: datetime) -> bool:
        with self._lock:
            return any(
                reminder.appointment_id == appointment_id and start <= reminder.created_at <= end
                for reminder in self._reminders.values()
            )

    def create_reminder(
        self,
        appointment_id: str,
        token: str,
        expires_at: datetime,
        *,
        now: datetime,
        reminder_type: ReminderType = ReminderType.LESSON_CONFIRMATION,
    ) -> Reminder:
        with self._mutation():
            reminder = self._insert_reminder(appointment_id, token, expires_at, now, reminder_type)
            return copy.deepcopy(reminder)

    def _insert_reminder(
        self,
        appointment_id: str,
        token: str,
        expires_at: datetime,
        now: datetime,
        reminder_type: ReminderType,
    ) -> Reminder:
        appointment = self._require_appointment(appointment_id)
        if token in self._tokens:
            raise PersistenceError("Confirmation token collision")
        live = [
            item
            for item in self._reminders.values()
            if item.appointment_id == appointment_id and item.status == ReminderStatus.SENT
        ]
        if live:
            raise PersistenceError(f"Appointment {appointment_id} already has a live reminder")
        reminder = Reminder(
            reminder_id=new_record_id("rem"),
            appointment_id=appointment_id,
            client_id=appointment.client.person_id,
            coach_id=appointment.coach.person_id,
            confirmation_token=token,
            created_at=now,
            expires_at=expires_at,
            reminder_type=reminder_type,
        )
        self._reminders[reminder.reminder_id] = reminder
        self._tokens[token] = reminder.reminder_id
        return reminder

    def claim_reminder_dispatch(
        self,
        appointment_id: str,
        token: str,
        *,
        now: datetime,
        expires_at: datetime,
        reminder_type: ReminderType = ReminderType.LESSON_CONFIRMATION,
    ) -> Reminder | None:
        """Create the reminder and flag the appointment in one commit.

        Returns None when the appointment was already reminded or is no
        longer confirmed (``UPDATE ... WHERE reminder_sent = false``). If the
        commit fails neither change is kept, so the next pass can retry.
        """
        with self._lock:
            appointment = self._require_appointment(appointment_id)
            if appointment.reminder_sent or appointment.status != AppointmentStatus.CONFIRMED:
                return None
            with self._mutation():
                reminder = self._insert_reminder(appointment_id, token, expires_at, now, reminder_type)
                self._set_reminder_flags(self._appointments[appointment_id], now, expires_at)
            return copy.deepcopy(reminder)

    def find_expired_unconfirmed_reminders(self, now: datetime) -> list[Reminder]:
        with self._lock:
            expired: list[Reminder] = []
            for reminder in self._reminders.values():
                if reminder.status != ReminderStatus.SENT or not reminder.expires_at < now:
                    continue
                appointment = self._appointments.get(reminder.appointment_id)
                if appointment is None:
                    continue
                if appointment.confirmed_at is None and appointment.status == AppointmentStatus.CONFIRMED:
                    expired.append(copy.deepcopy(reminder))
            return expired

    def get_reminder(self, reminder_id: str) -> Reminder | None:
        with self._lock:
            reminder = self._reminders.get(reminder_id)
            return copy.deepcopy(reminder) if reminder else None

    def find_reminder_by_token(self, token: str) -> Reminder | None:
        with self._lock:
            reminder_id = self._tokens.get(token)
            if reminder_id is None:
                return None
            return copy.deepcopy(self._reminders[reminder_id])

    def list_reminders(self, appointment_id: str | None = None) -> list[Reminder]:
        with self._lock:
            return [
                copy.deepcopy(item)
                for item in self._reminders.values()
                if appointment_id is None or item.appointment_id == appointment_id
            ]

    def mark_reminder_confirmed(self, reminder_id: str, now: datetime) -> bool:
        """Confirm a live reminder and stamp its appointment.

        Returns False if the reminder is not SENT, already past its expiry,
        or its appointment is not CONFIRMED.
        """
        with self._lock:
            reminder = self._require_reminder(reminder_id)
            appointment = self._require_appointment(reminder.appointment_id)
            if reminder.status != ReminderStatus.SENT or now >= reminder.expires_at:
                return False
            if appointment.status != AppointmentStatus.CONFIRMED:
                return False
            with self._mutation():
                reminder.status = ReminderStatus.CONFIRMED
                reminder.confirmed_at = now
                appointment.confirmed_at = now
            return True

    def mark_reminder_expired(self, reminder_id: str, now: datetime) -> bool:
        with self._lock:
            reminder = self._require_reminder(reminder_id)
            if reminder.status != ReminderStatus.SENT:
                return False
            with self._mutation():
                reminder.status = ReminderStatus.EXPIRED
                reminder.expired_at = now
            return True

    def cancel_with_reminder(self, reminder_id: str, now: datetime, *, require_lapsed: bool = True) -> bool:
        """Expire a live reminder and cancel its appointment together.

        With ``require_lapsed`` the reminder must be past its expiry and the
        appointment still unconfirmed; otherwise only liveness is checked.
        Returns False when nothing changed, so a cancellation happens once.
        """
        with self._lock:
            reminder = self._require_reminder(reminder_id)
            appointment = self._require_appointment(reminder.appointment_id)
            if reminder.status != ReminderStatus.SENT:
                return False
            if appointment.status != AppointmentStatus.CONFIRMED or appointment.confirmed_at is not None:
                return False
            if require_lapsed and not reminder.expires_at < now:
                return False
            with self._mutation():
                reminder.status = ReminderStatus.EXPIRED
                reminder.expired_at = now
                appointment.status = AppointmentStatus.CANCELLED
            return True

    def set_reminder_delivery_status(self, reminder_id: str, status: DeliveryStatus) -> None:
        with self._lock:
            reminder = self._require_reminder(reminder_id)
            with self._mutation():
                reminder.delivery_status = status

    # conversations

    def find_or_create_conversation(self, coach_id: str, client_id: str, *, now: datetime) -> Conversation:
        with self._lock:
            for conversation in self._conversations.values():
                if conversation.coach_id == coach_id and conversation.client_id == client_id:
                    return copy.deepcopy(conversation)
            conversation = Conversation(
                conversation_id=new_record_id("conv"),
                coach_id=coach_id,
                client_id=client_id,
                updated_at=now,
            )
            with self._mutation():
                self._conversations[conversation.conversation_id] = conversation
            return copy.deepcopy(conversation)

    def create_in_app_message(
        self,
        conversation_id: str,
        content: str,
        requires_ack: bool,
        *,
        sender_id: str,
        now: datetime,
    ) -> InAppMessage:
        with self._lock:
            if conversation_id not in self._conversations:
                raise PersistenceError(f"Unknown conversation {conversation_id}")
            message = InAppMessage(
                message_id=new_record_id("msg"),
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=content,
                requires_ack=requires_ack,
                created_at=now,
            )
            with self._mutation():
                self._messages[message.message_id] = message
                self._conversations[conversation_id].updated_at = now
            return copy.deepcopy(message)

    def list_messages(self, conversation_id: str | None = None) -> list[InAppMessage]:
        with self._lock:
            return [
                copy.deepcopy(item)
                for item in self._messages.values()
                if conversation_id is None or item.conversation_id == conversation_id
            ]

    # outbox

    def enqueue_notification(
        self,
        kind: NotificationKind,
        payload: dict[str, Any],
        *,
        now: datetime,
        reminder_id: str | None = None,
    ) -> OutboundNotification:
        notification = OutboundNotification(
            notification_id=new_record_id("ntf"),
            kind=kind,
            payload=dict(payload),
            created_at=now,
            available_at=now,
            reminder_id=reminder_id,
        )
        with self._mutation():
            self._outbox[notification.notification_id] = notification
        return copy.deepcopy(notification)

    def find_due_notifications(self, now: datetime, *, limit: int = 100) -> list[OutboundNotification]:
        """Return pending notifications whose retry time has come, oldest first.

        Nothing is marked in flight; the delivery pass runs under the tick
        lock, so two passes never read the same batch concurrently.
        """
        with self._lock:
            due = [
                item
                for item in self._outbox.values()
                if item.status == OutboxStatus.PENDING and item.available_at <= now
            ]
            due.sort(key=lambda item: item.available_at)
            return [copy.deepcopy(item) for item in due[:limit]]

    def mark_notification_sent(self, notification_id: str, *, now: datetime) -> None:
        with self._lock:
            notification = self._require_notification(notification_id)
            with self._mutation():
                self._outbox[notification_id] = replace(
                    notification,
                    status=OutboxStatus.SENT,
                    attempts=notification.attempts + 1,
                    available_at=now,
                    last_error=None,
                )

    def mark_notification_retry(
        self,
        notification_id: str,
        *,
        error: str,
        available_at: datetime,
    ) -> OutboundNotification:
        with self._lock:
            notification = self._require_notification(notification_id)
            updated = replace(
                notification,
                attempts=notification.attempts + 1,
                available_at=available_at,
                last_error=error,
            )
            with self._mutation():
                self._outbox[notification_id] = updated
            return copy.deepcopy(updated)

    def mark_notification_dead_letter(self, notification_id: str, *, error: str) -> OutboundNotification:
        with self._lock:
            notification = self._require_notification(notification_id)
            updated = replace(
                notification,
                attempts=notification.attempts + 1,
                status=OutboxStatus.DEAD_LETTER,
                last_error=error,
            )
            with self._mutation():
                self._outbox[notification_id] = updated
            return copy.deepcopy(updated)

    def list_notifications(self) -> list[OutboundNotification]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._outbox.values()]


def normalise_appointment(appointment: Appointment) -> Appointment:
    """Return a copy of ``appointment`` with its timestamps in UTC.

    Naive values are read as UTC so a single bad record cannot break
    window comparisons for every other appointment.
    """
    stored = copy.deepcopy(appointment)
    stored.scheduled_at = ensure_utc(stored.scheduled_at)
    for name in ("reminder_sent_at", "confirmation_deadline", "confirmed_at"):
        value = getattr(stored, name)
        if value is not None:
            setattr(stored, name, ensure_utc(value))
    return stored
