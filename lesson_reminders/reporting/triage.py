"""Utilities for writing tick reports in JSON and Markdown."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from lesson_reminders.domain.models import TickResult
from lesson_reminders.utils.logging import mask_client_name

PASSES = ("reminders", "expiry", "delivery")


def _masked(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{**record, "client_name": mask_client_name(str(record.get("client_name", "")))} for record in records]


def write_tick_report(*, artifacts_dir: str | Path, result: TickResult) -> tuple[Path, Path]:
    """Write JSON and Markdown reports for one tick."""
    out_dir = Path(artifacts_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    slug = result.started_at.strftime("%Y%m%dT%H%M%SZ")
    json_path = out_dir / f"tick_{slug}.json"
    md_path = out_dir / f"tick_{slug}.md"

    payload = {
        "started_at": result.started_at.isoformat(),
        "check_number": result.check_number,
        "skipped_overlap": result.skipped_overlap,
        "summary": result.summary,
        "records": {
            "reminders": _masked(result.reminder_records),
            "expiry": _masked(result.expiry_records),
            "delivery": _masked(result.delivery_records),
        },
    }
    json_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    md_lines = [
        f"# Reminder Tick Report ({result.started_at.isoformat()})",
        "",
        f"- Check number: {result.check_number}",
    ]
    if result.skipped_overlap:
        md_lines.append("- Skipped: a previous tick was still in progress")

    for name in PASSES:
        section = result.summary.get(name)
        if not section:
            continue
        md_lines.extend(
            [
                "",
                f"## {name.capitalize()}",
                f"- Total: {section['total']}",
                f"- Successful: {section['successful']}",
                f"- Skipped: {section['skipped']['total']}",
                f"- Failed: {section['failed']['total']}",
            ]
        )
        reasons = {**section["skipped"]["reasons"], **section["failed"]["reasons"]}
        for reason, count in reasons.items():
            md_lines.append(f"  - {reason}: {count}")

    md_path.write_text("\n".join(md_lines) + "\n", encoding="utf-8")
    return json_path, md_path
