"""Summary generation for tick reports."""

from __future__ import annotations

from collections import Counter
from typing import Any

SUCCESS_STATUSES = ("sent", "cancelled")


def compute_summary(records: list[dict[str, Any]]) -> dict[str, Any]:
    """Compute aggregate stats from one pass's workflow records."""
    status_counts = Counter(record.get("status") for record in records)

    skipped_reasons = Counter(
        record.get("reason", "unknown")
        for record in records
        if record.get("status") == "skipped"
    )
    failed_reasons = Counter(
        record.get("reason", "unknown")
        for record in records
        if record.get("status") == "failed"
    )

    return {
        "total": len(records),
        "successful": sum(status_counts.get(status, 0) for status in SUCCESS_STATUSES),
        "sent": status_counts.get("sent", 0),
        "cancelled": status_counts.get("cancelled", 0),
        "skipped": {
            "total": status_counts.get("skipped", 0),
            "reasons": dict(skipped_reasons),
        },
        "failed": {
            "total": status_counts.get("failed", 0),
            "reasons": dict(failed_reasons),
        },
    }


def summarize_tick(
    reminder_records: list[dict[str, Any]],
    expiry_records: list[dict[str, Any]],
    delivery_records: list[dict[str, Any]],
) -> dict[str, Any]:
    return {
        "reminders": compute_summary(reminder_records),
        "expiry": compute_summary(expiry_records),
        "delivery": compute_summary(delivery_records),
    }
