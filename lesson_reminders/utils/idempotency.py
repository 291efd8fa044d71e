from __future__ import annotations

import threading
from datetime import datetime

from lesson_reminders.domain.models import ReminderType


def build_reminder_key(
    appointment_id: str,
    scheduled_at: datetime,
    reminder_type: ReminderType = ReminderType.LESSON_CONFIRMATION,
) -> str:
    return f"lesson:{appointment_id}:{scheduled_at.date().isoformat()}:{reminder_type.value}"


class SentReminderSet:
    """Process-local record of reminder keys dispatched since start.

    Lost on restart; the persisted reminder lookup is what keeps dispatch
    single-shot across processes.
    """

    def __init__(self) -> None:
        self._keys: set[str] = set()
        self._lock = threading.Lock()

    def has_been_sent(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def mark_sent(self, key: str) -> None:
        with self._lock:
            self._keys.add(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
