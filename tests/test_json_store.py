from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from lesson_reminders.adapters import json_store
from lesson_reminders.adapters.json_store import JsonFileReminderRepository
from lesson_reminders.domain.errors import PersistenceError
from lesson_reminders.domain.models import Appointment, AppointmentStatus, Person, ReminderStatus
from lesson_reminders.service import build_service

from conftest import RecordingGateway


def _appointment(clock, appointment_id: str = "apt-1") -> Appointment:
    return Appointment(
        appointment_id=appointment_id,
        scheduled_at=clock() + timedelta(hours=48),
        coach=Person(person_id="coach-1", name="Sam Coach"),
        client=Person(person_id="client-1", name="Jane Example", email="jane@example.com"),
        status=AppointmentStatus.CONFIRMED,
    )


def test_store_round_trips_every_record_kind(tmp_path: Path, settings, clock) -> None:
    path = tmp_path / "store.json"
    repository = JsonFileReminderRepository(path)
    repository.add_appointment(_appointment(clock))
    service = build_service(settings, repository=repository, gateway=RecordingGateway(failures=1), clock=clock)
    try:
        service.manual_check()
    finally:
        service.close()

    reloaded = JsonFileReminderRepository(path)

    assert reloaded.list_appointments() == repository.list_appointments()
    assert reloaded.list_reminders() == repository.list_reminders()
    assert reloaded.list_messages() == repository.list_messages()
    assert reloaded.list_notifications() == repository.list_notifications()
    token = repository.list_reminders()[0].confirmation_token
    assert reloaded.find_reminder_by_token(token) is not None


def test_restarted_process_does_not_resend(tmp_path: Path, settings, clock) -> None:
    path = tmp_path / "store.json"
    first_gateway = RecordingGateway()
    first = build_service(settings, repository=JsonFileReminderRepository(path), gateway=first_gateway, clock=clock)
    first.repository.add_appointment(_appointment(clock))
    first.manual_check()
    first.close()

    # Simulate a crash that lost the reminder_sent flag but kept the reminder row.
    document = json.loads(path.read_text(encoding="utf-8"))
    document["appointments"][0]["reminder_sent"] = False
    path.write_text(json.dumps(document), encoding="utf-8")

    clock.advance(minutes=15)
    second_gateway = RecordingGateway()
    second = build_service(settings, repository=JsonFileReminderRepository(path), gateway=second_gateway, clock=clock)
    try:
        result = second.manual_check()
    finally:
        second.close()

    assert result.reminder_records[0]["status"] == "skipped"
    assert result.reminder_records[0]["reason"] == "already_sent_in_store"
    assert second_gateway.calls == []
    assert first_gateway.kinds() == ["confirmation_reminder"]


def test_confirmation_survives_restart(tmp_path: Path, clock) -> None:
    path = tmp_path / "store.json"
    repository = JsonFileReminderRepository(path)
    repository.add_appointment(_appointment(clock))
    reminder = repository.claim_reminder_dispatch(
        "apt-1",
        "tok",
        now=clock(),
        expires_at=clock() + timedelta(hours=24),
    )
    assert repository.mark_reminder_confirmed(reminder.reminder_id, clock() + timedelta(hours=1))

    reloaded = JsonFileReminderRepository(path)

    assert reloaded.get_reminder(reminder.reminder_id).status == ReminderStatus.CONFIRMED
    assert reloaded.find_expired_unconfirmed_reminders(clock() + timedelta(hours=30)) == []


def test_missing_store_starts_empty_and_creates_parent_on_write(tmp_path: Path, clock) -> None:
    path = tmp_path / "nested" / "dir" / "store.json"
    repository = JsonFileReminderRepository(path)

    assert repository.list_appointments() == []
    repository.add_appointment(_appointment(clock))
    assert path.exists()


def test_corrupt_store_raises_persistence_error(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        JsonFileReminderRepository(path)


def test_failed_write_during_claim_is_retried_next_tick(tmp_path: Path, settings, clock, monkeypatch) -> None:
    path = tmp_path / "store.json"
    repository = JsonFileReminderRepository(path)
    appointment = _appointment(clock)
    appointment.scheduled_at = clock() + timedelta(hours=48, minutes=10)
    repository.add_appointment(appointment)
    gateway = RecordingGateway()
    service = build_service(settings, repository=repository, gateway=gateway, clock=clock)

    real_replace = json_store.os.replace
    failures = {"left": 1}

    def flaky_replace(src, dst):
        if failures["left"]:
            failures["left"] -= 1
            raise OSError("No space left on device")
        return real_replace(src, dst)

    monkeypatch.setattr(json_store.os, "replace", flaky_replace)
    try:
        first = service.manual_check()

        assert first.reminder_records[0]["status"] == "failed"
        assert first.reminder_records[0]["reason"] == "PersistenceError"
        assert repository.list_reminders() == []
        assert repository.get_appointment("apt-1").reminder_sent is False
        assert gateway.calls == []

        clock.advance(minutes=15)
        second = service.manual_check()

        assert second.reminder_records[0]["status"] == "sent"
        assert gateway.kinds() == ["confirmation_reminder"]
    finally:
        service.close()

    reloaded = JsonFileReminderRepository(path)
    assert len(reloaded.list_reminders()) == 1
    assert reloaded.get_appointment("apt-1").reminder_sent is True


@pytest.mark.parametrize(
    "mutate",
    [
        lambda record: record.pop("scheduled_at"),
        lambda record: record.update(status="rescheduled"),
        lambda record: record.update(scheduled_at="next tuesday"),
        lambda record: record.update(coach=None),
    ],
    ids=["missing-key", "unknown-status", "bad-timestamp", "null-person"],
)
def test_malformed_record_raises_persistence_error(tmp_path: Path, clock, mutate) -> None:
    path = tmp_path / "store.json"
    JsonFileReminderRepository(path).add_appointment(_appointment(clock))
    document = json.loads(path.read_text(encoding="utf-8"))
    mutate(document["appointments"][0])
    path.write_text(json.dumps(document), encoding="utf-8")

    with pytest.raises(PersistenceError, match="malformed record"):
        JsonFileReminderRepository(path)


def test_naive_timestamps_in_store_load_as_utc(tmp_path: Path, clock) -> None:
    path = tmp_path / "store.json"
    JsonFileReminderRepository(path).add_appointment(_appointment(clock))
    document = json.loads(path.read_text(encoding="utf-8"))
    document["appointments"][0]["scheduled_at"] = "2027-01-01T10:00:00"
    path.write_text(json.dumps(document), encoding="utf-8")

    reloaded = JsonFileReminderRepository(path)

    assert reloaded.get_appointment("apt-1").scheduled_at == datetime(2027, 1, 1, 10, 0, tzinfo=UTC)
