from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from lesson_reminders.adapters.repository import InMemoryReminderRepository
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
    Person,
    Reminder,
    ReminderStatus,
    ReminderType,
)
from lesson_reminders.utils.clock import ensure_utc

SCHEMA_VERSION = 1

logger = logging.getLogger(__name__)


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_timestamp(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value))


def _parse_dt(value: str | None) -> datetime | None:
    return _parse_timestamp(value) if value else None


def _person_to_dict(person: Person) -> dict[str, Any]:
    return {"person_id": person.person_id, "name": person.name, "email": person.email}


def _person_from_dict(payload: dict[str, Any]) -> Person:
    return Person(person_id=payload["person_id"], name=payload["name"], email=payload.get("email"))


def appointment_to_dict(appointment: Appointment) -> dict[str, Any]:
    return {
        "appointment_id": appointment.appointment_id,
        "scheduled_at": _dt(appointment.scheduled_at),
        "coach": _person_to_dict(appointment.coach),
        "client": _person_to_dict(appointment.client),
        "status": appointment.status.value,
        "reminder_sent": appointment.reminder_sent,
        "reminder_sent_at": _dt(appointment.reminder_sent_at),
        "confirmation_required": appointment.confirmation_required,
        "confirmation_deadline": _dt(appointment.confirmation_deadline),
        "confirmed_at": _dt(appointment.confirmed_at),
    }


def appointment_from_dict(payload: dict[str, Any]) -> Appointment:
    return Appointment(
        appointment_id=payload["appointment_id"],
        scheduled_at=_parse_timestamp(payload["scheduled_at"]),
        coach=_person_from_dict(payload["coach"]),
        client=_person_from_dict(payload["client"]),
        status=AppointmentStatus(payload["status"]),
        reminder_sent=bool(payload.get("reminder_sent", False)),
        reminder_sent_at=_parse_dt(payload.get("reminder_sent_at")),
        confirmation_required=bool(payload.get("confirmation_required", False)),
        confirmation_deadline=_parse_dt(payload.get("confirmation_deadline")),
        confirmed_at=_parse_dt(payload.get("confirmed_at")),
    )


def reminder_to_dict(reminder: Reminder) -> dict[str, Any]:
    return {
        "reminder_id": reminder.reminder_id,
        "appointment_id": reminder.appointment_id,
        "client_id": reminder.client_id,
        "coach_id": reminder.coach_id,
        "confirmation_token": reminder.confirmation_token,
        "created_at": _dt(reminder.created_at),
        "expires_at": _dt(reminder.expires_at),
        "reminder_type": reminder.reminder_type.value,
        "status": reminder.status.value,
        "delivery_status": reminder.delivery_status.value,
        "confirmed_at": _dt(reminder.confirmed_at),
        "expired_at": _dt(reminder.expired_at),
    }


def reminder_from_dict(payload: dict[str, Any]) -> Reminder:
    return Reminder(
        reminder_id=payload["reminder_id"],
        appointment_id=payload["appointment_id"],
        client_id=payload["client_id"],
        coach_id=payload["coach_id"],
        confirmation_token=payload["confirmation_token"],
        created_at=_parse_timestamp(payload["created_at"]),
        expires_at=_parse_timestamp(payload["expires_at"]),
        reminder_type=ReminderType(payload.get("reminder_type", ReminderType.LESSON_CONFIRMATION.value)),
        status=ReminderStatus(payload["status"]),
        delivery_status=DeliveryStatus(payload.get("delivery_status", DeliveryStatus.PENDING.value)),
        confirmed_at=_parse_dt(payload.get("confirmed_at")),
        expired_at=_parse_dt(payload.get("expired_at")),
    )


def notification_to_dict(notification: OutboundNotification) -> dict[str, Any]:
    return {
        "notification_id": notification.notification_id,
        "kind": notification.kind.value,
        "payload": notification.payload,
        "created_at": _dt(notification.created_at),
        "available_at": _dt(notification.available_at),
        "reminder_id": notification.reminder_id,
        "attempts": notification.attempts,
        "status": notification.status.value,
        "last_error": notification.last_error,
    }


def notification_from_dict(payload: dict[str, Any]) -> OutboundNotification:
    return OutboundNotification(
        notification_id=payload["notification_id"],
        kind=NotificationKind(payload["kind"]),
        payload=dict(payload.get("payload") or {}),
        created_at=_parse_timestamp(payload["created_at"]),
        available_at=_parse_timestamp(payload["available_at"]),
        reminder_id=payload.get("reminder_id"),
        attempts=int(payload.get("attempts", 0)),
        status=OutboxStatus(payload["status"]),
        last_error=payload.get("last_error"),
    )


class JsonFileReminderRepository(InMemoryReminderRepository):
    """Repository that rewrites a JSON document after every mutation.

    Survives process restarts, which is what the persisted dedup lookup
    relies on. Intended for single-process deployments.
    """

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Store {self.path} is not valid JSON") from exc
        except OSError as exc:
            raise PersistenceError(f"Could not read store {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise PersistenceError(f"Store {self.path} must contain a JSON object")
        try:
            self._load_records(payload)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise PersistenceError(f"Store {self.path} has a malformed record: {exc!r}") from exc

        logger.info(
            "Loaded store %s (appointments=%s, reminders=%s, outbox=%s)",
            self.path,
            len(self._appointments),
            len(self._reminders),
            len(self._outbox),
        )

    def _load_records(self, payload: dict[str, Any]) -> None:
        for item in payload.get("appointments", []):
            appointment = appointment_from_dict(item)
            self._appointments[appointment.appointment_id] = appointment
        for item in payload.get("reminders", []):
            reminder = reminder_from_dict(item)
            self._reminders[reminder.reminder_id] = reminder
            self._tokens[reminder.confirmation_token] = reminder.reminder_id
        for item in payload.get("conversations", []):
            conversation = Conversation(
                conversation_id=item["conversation_id"],
                coach_id=item["coach_id"],
                client_id=item["client_id"],
                updated_at=_parse_timestamp(item["updated_at"]),
            )
            self._conversations[conversation.conversation_id] = conversation
        for item in payload.get("messages", []):
            message = InAppMessage(
                message_id=item["message_id"],
                conversation_id=item["conversation_id"],
                sender_id=item["sender_id"],
                content=item["content"],
                requires_ack=bool(item["requires_ack"]),
                created_at=_parse_timestamp(item["created_at"]),
            )
            self._messages[message.message_id] = message
        for item in payload.get("outbox", []):
            notification = notification_from_dict(item)
            self._outbox[notification.notification_id] = notification

    def _commit(self) -> None:
        payload = {
            "version": SCHEMA_VERSION,
            "appointments": [appointment_to_dict(item) for item in self._appointments.values()],
            "reminders": [reminder_to_dict(item) for item in self._reminders.values()],
            "conversations": [
                {
                    "conversation_id": item.conversation_id,
                    "coach_id": item.coach_id,
                    "client_id": item.client_id,
                    "updated_at": _dt(item.updated_at),
                }
                for item in self._conversations.values()
            ],
            "messages": [
                {
                    "message_id": item.message_id,
                    "conversation_id": item.conversation_id,
                    "sender_id": item.sender_id,
                    "content": item.content,
                    "requires_ack": item.requires_ack,
                    "created_at": _dt(item.created_at),
                }
                for item in self._messages.values()
            ],
            "outbox": [notification_to_dict(item) for item in self._outbox.values()],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(f"Could not write store {self.path}: {exc}") from exc
