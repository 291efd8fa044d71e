from __future__ import annotations

from datetime import datetime
from typing import Any

from lesson_reminders.adapters.repository import ReminderRepository
from lesson_reminders.orchestration.send import OUTCOME_DEAD_LETTER, OUTCOME_SENT, NotificationSender
from lesson_reminders.utils.logging import get_structured_logger, log_workflow_event

WORKFLOW_STEP = "delivery_retry"
DEFAULT_BATCH_SIZE = 100


def run_delivery_pass(
    repository: ReminderRepository,
    sender: NotificationSender,
    *,
    now: datetime,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> list[dict[str, Any]]:
    """Retry queued notices whose backoff has elapsed."""
    logger = get_structured_logger()
    records: list[dict[str, Any]] = []

    try:
        due = repository.find_due_notifications(now, limit=batch_size)
    except Exception as exc:
        log_workflow_event(
            logger,
            workflow_step=WORKFLOW_STEP,
            status="failed",
            error_code=type(exc).__name__.upper(),
            error_message=str(exc),
            message="Outbox query failed; pass aborted",
        )
        return records

    for notification in due:
        record: dict[str, Any] = {
            "notification_id": notification.notification_id,
            "kind": notification.kind.value,
            "client_name": str(notification.payload.get("client_name", "")),
            "attempt": notification.attempts + 1,
        }
        try:
            outcome = sender.attempt(notification, now=now)
        except Exception as exc:
            records.append({**record, "status": "failed", "reason": type(exc).__name__})
            continue

        if outcome == OUTCOME_SENT:
            records.append({**record, "status": "sent"})
        elif outcome == OUTCOME_DEAD_LETTER:
            records.append({**record, "status": "failed", "reason": "dead_letter"})
        else:
            records.append({**record, "status": "failed", "reason": "retry_scheduled"})

    return records
