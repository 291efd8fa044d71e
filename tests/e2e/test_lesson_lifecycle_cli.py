from __future__ import annotations

import json
from pathlib import Path

import pytest

from lesson_reminders import cli


@pytest.mark.e2e
def test_unconfirmed_lesson_is_cancelled_across_processes(tmp_path: Path, monkeypatch, capsys) -> None:
    store = tmp_path / "state" / "store.json"
    reports = tmp_path / "reports"
    monkeypatch.setenv("LESSON_REMINDER_STORE_PATH", str(store))
    monkeypatch.setenv("LESSON_REMINDER_EMAIL_MODE", "log")

    assert cli.main(["seed", "--appointment-id", "apt-1", "--at", "2026-03-04T12:10:00Z"]) == 0
    assert cli.main(["seed", "--appointment-id", "apt-2", "--at", "2026-03-04T12:20:00Z"]) == 0

    # Each command builds a fresh service, so dedup has to come from the store.
    assert cli.main(["check", "--now", "2026-03-02T12:00:00Z"]) == 0
    assert cli.main(["check", "--now", "2026-03-02T12:15:00Z"]) == 0

    document = json.loads(store.read_text(encoding="utf-8"))
    assert len(document["reminders"]) == 2
    token = next(
        item["confirmation_token"] for item in document["reminders"] if item["appointment_id"] == "apt-2"
    )
    assert cli.main(["acknowledge", token, "--now", "2026-03-02T18:00:00Z"]) == 0

    assert cli.main(["check", "--now", "2026-03-03T13:00:00Z", "--report-dir", str(reports)]) == 0
    assert cli.main(["check", "--now", "2026-03-03T13:15:00Z"]) == 0

    document = json.loads(store.read_text(encoding="utf-8"))
    statuses = {item["appointment_id"]: item["status"] for item in document["appointments"]}
    assert statuses == {"apt-1": "cancelled", "apt-2": "confirmed"}
    sent_kinds = [item["kind"] for item in document["outbox"] if item["status"] == "sent"]
    assert sorted(sent_kinds) == ["auto_cancelled", "confirmation_reminder", "confirmation_reminder"]

    report = json.loads((reports / "tick_20260303T130000Z.json").read_text(encoding="utf-8"))
    assert report["summary"]["expiry"]["cancelled"] == 1

    capsys.readouterr()
    assert cli.main(["status"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["store"]["appointments"] == {"cancelled": 1, "confirmed": 1}
    assert status["store"]["reminders"] == {"expired": 1, "confirmed": 1}
