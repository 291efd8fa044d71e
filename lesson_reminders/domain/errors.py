"""Domain exceptions raised by the reminder scheduler."""

from __future__ import annotations


class ReminderError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(ReminderError):
    """Raised when environment configuration cannot be parsed."""


class PersistenceError(ReminderError):
    """Raised by repositories when a read or write cannot be completed."""


class StartupError(ReminderError):
    """Raised when the ticker does not report running after start."""


class NotificationTimeoutError(ReminderError):
    """Raised when a gateway call exceeds its time budget."""


class ConfirmationError(ReminderError):
    """Raised when an acknowledgment cannot be applied."""

    code = "confirmation_failed"


class ReminderNotFoundError(ConfirmationError):
    code = "reminder_not_found"


class ReminderExpiredError(ConfirmationError):
    code = "reminder_expired"


class AppointmentCancelledError(ConfirmationError):
    code = "appointment_cancelled"


class InvalidDecisionError(ConfirmationError):
    code = "invalid_decision"


class NotParticipantError(ConfirmationError):
    code = "not_participant"
