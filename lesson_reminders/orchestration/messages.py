"""In-app message text and lesson time formatting."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

CONFIRMATION_HEADER = "**Lesson Confirmation Required**"
CANCELLED_HEADER = "**Lesson Cancelled**"
ATTENDANCE_CONFIRMED_HEADER = "**Lesson Attendance Confirmed**"
DECLINED_HEADER = "**Lesson Declined**"


def format_lesson_time(scheduled_at: datetime, zone: ZoneInfo) -> tuple[str, str]:
    """Return ``("Wednesday, March 4", "3:30 PM")`` in the display timezone."""
    local = scheduled_at.astimezone(zone)
    lesson_date = f"{local:%A, %B} {local.day}"
    lesson_time = f"{local:%I:%M %p}".lstrip("0")
    return lesson_date, lesson_time


def hours_until(scheduled_at: datetime, now: datetime) -> int:
    return round((scheduled_at - now).total_seconds() / 3600)


def confirmation_request_message(
    *,
    client_name: str,
    coach_name: str,
    lesson_date: str,
    lesson_time: str,
    hours_remaining: int,
    confirmation_hours: int,
) -> str:
    return (
        f"{CONFIRMATION_HEADER}\n\n"
        f"Hi {client_name or 'there'}!\n\n"
        f"You have a lesson scheduled for **{lesson_date}** at **{lesson_time}** "
        f"(in {hours_remaining} hours).\n\n"
        f"Please acknowledge this message within {confirmation_hours} hours to confirm "
        "your attendance, otherwise the lesson will be cancelled automatically.\n\n"
        f"- Coach {coach_name}"
    )


def auto_cancelled_message(*, client_name: str, coach_name: str, lesson_date: str, lesson_time: str) -> str:
    return (
        f"{CANCELLED_HEADER}\n\n"
        f"Hi {client_name or 'there'},\n\n"
        f"Your lesson on **{lesson_date}** at **{lesson_time}** was cancelled because "
        "attendance was not confirmed in time.\n\n"
        f"- Coach {coach_name}"
    )


def attendance_confirmed_message(*, client_name: str, coach_name: str, confirmed_at: datetime) -> str:
    return (
        f"{ATTENDANCE_CONFIRMED_HEADER}\n\n"
        f"Hi Coach {coach_name}!\n\n"
        f"{client_name} has confirmed their attendance for the upcoming lesson.\n\n"
        f"- **Client**: {client_name}\n"
        f"- **Confirmed at**: {confirmed_at.isoformat()}\n"
        "- **Status**: Attendance confirmed - lesson will proceed as scheduled"
    )


def declined_message(*, client_name: str, coach_name: str, lesson_date: str, lesson_time: str) -> str:
    return (
        f"{DECLINED_HEADER}\n\n"
        f"Hi Coach {coach_name},\n\n"
        f"{client_name} will not attend the lesson on **{lesson_date}** at **{lesson_time}**. "
        "The lesson has been cancelled and the slot released."
    )
