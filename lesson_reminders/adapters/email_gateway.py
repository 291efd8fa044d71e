"""Email notification gateways for confirmation and cancellation notices."""

from __future__ import annotations

import logging
import smtplib
import threading
from email.message import EmailMessage
from typing import Any, Protocol

from lesson_reminders.config import SmtpSettings

logger = logging.getLogger(__name__)


class NotificationGateway(Protocol):
    def send_confirmation_reminder(
        self,
        email: str,
        client_name: str,
        coach_name: str,
        date: str,
        time: str,
        hours_remaining: int,
    ) -> bool: ...

    def send_auto_cancelled(
        self,
        email: str,
        client_name: str,
        coach_name: str,
        date_time: str,
    ) -> bool: ...


def confirmation_reminder_content(
    client_name: str,
    coach_name: str,
    date: str,
    time: str,
    hours_remaining: int,
) -> tuple[str, str]:
    subject = f"Lesson Confirmation Required - {date} at {time}"
    body = (
        f"Hi {client_name},\n\n"
        f"Your lesson with Coach {coach_name} is scheduled for {date} at {time} "
        f"(in {hours_remaining} hours).\n\n"
        "Please confirm your attendance within 24 hours or your spot will be released.\n"
    )
    return subject, body


def auto_cancelled_content(client_name: str, coach_name: str, date_time: str) -> tuple[str, str]:
    subject = f"Lesson Cancelled - {date_time}"
    body = (
        f"Hi {client_name},\n\n"
        f"Your lesson with Coach {coach_name} scheduled for {date_time} has been "
        "automatically cancelled because we didn't receive confirmation within the "
        "required timeframe.\n\n"
        "The time slot is now available for other bookings.\n"
    )
    return subject, body


class LoggingNotificationGateway:
    """Gateway that records every send instead of delivering it."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sent: list[dict[str, Any]] = []

    def _record(self, kind: str, email: str, subject: str) -> bool:
        with self._lock:
            self.sent.append({"kind": kind, "email": email, "subject": subject})
        logger.info("Email (%s) recorded for %s: %s", kind, email, subject)
        return True

    def send_confirmation_reminder(
        self,
        email: str,
        client_name: str,
        coach_name: str,
        date: str,
        time: str,
        hours_remaining: int,
    ) -> bool:
        subject, _ = confirmation_reminder_content(client_name, coach_name, date, time, hours_remaining)
        return self._record("confirmation_reminder", email, subject)

    def send_auto_cancelled(
        self,
        email: str,
        client_name: str,
        coach_name: str,
        date_time: str,
    ) -> bool:
        subject, _ = auto_cancelled_content(client_name, coach_name, date_time)
        return self._record("auto_cancelled", email, subject)


class SmtpNotificationGateway:
    """Deliver plain-text notices through an SMTP relay."""

    def __init__(self, settings: SmtpSettings, timeout_seconds: float = 30.0) -> None:
        self.settings = settings
        self.timeout_seconds = timeout_seconds

    def _send(self, to_email: str, subject: str, body: str) -> bool:
        message = EmailMessage()
        message["From"] = self.settings.from_email
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body)

        try:
            with smtplib.SMTP(self.settings.host, self.settings.port, timeout=self.timeout_seconds) as server:
                if self.settings.use_tls:
                    server.starttls()
                if self.settings.username and self.settings.password:
                    server.login(self.settings.username, self.settings.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP send to %s failed: %s", to_email, exc)
            return False

        logger.info("Email sent to %s: %s", to_email, subject)
        return True

    def send_confirmation_reminder(
        self,
        email: str,
        client_name: str,
        coach_name: str,
        date: str,
        time: str,
        hours_remaining: int,
    ) -> bool:
        subject, body = confirmation_reminder_content(client_name, coach_name, date, time, hours_remaining)
        return self._send(email, subject, body)

    def send_auto_cancelled(
        self,
        email: str,
        client_name: str,
        coach_name: str,
        date_time: str,
    ) -> bool:
        subject, body = auto_cancelled_content(client_name, coach_name, date_time)
        return self._send(email, subject, body)
