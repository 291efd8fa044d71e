from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ReminderStatus(str, Enum):
    SENT = "sent"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


class ReminderType(str, Enum):
    LESSON_CONFIRMATION = "lesson_confirmation"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class NotificationKind(str, Enum):
    CONFIRMATION_REMINDER = "confirmation_reminder"
    AUTO_CANCELLED = "auto_cancelled"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DEAD_LETTER = "dead_letter"


class AckDecision(str, Enum):
    CONFIRM = "confirm"
    DECLINE = "decline"


@dataclass(slots=True)
class Person:
    person_id: str
    name: str
    email: str | None = None


@dataclass(slots=True)
class Appointment:
    appointment_id: str
    scheduled_at: datetime
    coach: Person
    client: Person
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    reminder_sent: bool = False
    reminder_sent_at: datetime | None = None
    confirmation_required: bool = False
    confirmation_deadline: datetime | None = None
    confirmed_at: datetime | None = None


@dataclass(slots=True)
class Reminder:
    reminder_id: str
    appointment_id: str
    client_id: str
    coach_id: str
    confirmation_token: str
    created_at: datetime
    expires_at: datetime
    reminder_type: ReminderType = ReminderType.LESSON_CONFIRMATION
    status: ReminderStatus = ReminderStatus.SENT
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    confirmed_at: datetime | None = None
    expired_at: datetime | None = None


@dataclass(slots=True)
class InAppMessage:
    message_id: str
    conversation_id: str
    sender_id: str
    content: str
    requires_ack: bool
    created_at: datetime


@dataclass(slots=True)
class Conversation:
    conversation_id: str
    coach_id: str
    client_id: str
    updated_at: datetime


@dataclass(slots=True)
class OutboundNotification:
    notification_id: str
    kind: NotificationKind
    payload: dict[str, Any]
    created_at: datetime
    available_at: datetime
    reminder_id: str | None = None
    attempts: int = 0
    status: OutboxStatus = OutboxStatus.PENDING
    last_error: str | None = None


@dataclass(slots=True)
class AcknowledgeResult:
    reminder_id: str
    appointment_id: str
    decision: AckDecision
    already_confirmed: bool = False
    already_cancelled: bool = False
    acknowledged_at: datetime | None = None


@dataclass(slots=True)
class TickResult:
    started_at: datetime
    check_number: int
    reminder_records: list[dict[str, Any]] = field(default_factory=list)
    expiry_records: list[dict[str, Any]] = field(default_factory=list)
    delivery_records: list[dict[str, Any]] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)
    skipped_overlap: bool = False
