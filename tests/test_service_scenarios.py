"""End-to-end lesson lifecycles driven through the service with an injected clock."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from lesson_reminders.domain.models import Appointment, AppointmentStatus, Person, ReminderStatus

from conftest import T0


def test_unacknowledged_lesson_is_cancelled_after_deadline(service, repository, gateway, clock, make_appointment) -> None:
    appointment = make_appointment(starts_in=timedelta(hours=48, minutes=10))

    service.manual_check()

    reminder = repository.list_reminders(appointment.appointment_id)[0]
    assert reminder.expires_at == T0 + timedelta(hours=24)
    assert repository.get_appointment(appointment.appointment_id).reminder_sent is True

    clock.advance(hours=25)
    result = service.manual_check()

    assert result.summary["expiry"]["cancelled"] == 1
    assert repository.get_appointment(appointment.appointment_id).status == AppointmentStatus.CANCELLED
    assert repository.get_reminder(reminder.reminder_id).status == ReminderStatus.EXPIRED
    assert gateway.kinds().count("auto_cancelled") == 1


def test_acknowledged_lesson_survives_the_deadline(service, repository, gateway, clock, make_appointment) -> None:
    appointment = make_appointment(starts_in=timedelta(hours=48, minutes=10))

    service.manual_check()
    reminder = repository.list_reminders(appointment.appointment_id)[0]

    clock.advance(hours=2)
    ack = service.acknowledge(reminder.confirmation_token)
    assert ack.acknowledged_at == T0 + timedelta(hours=2)

    stored = repository.get_reminder(reminder.reminder_id)
    assert stored.status == ReminderStatus.CONFIRMED
    assert repository.get_appointment(appointment.appointment_id).confirmed_at == T0 + timedelta(hours=2)

    clock.advance(hours=23)
    result = service.manual_check()

    assert result.expiry_records == []
    assert repository.get_appointment(appointment.appointment_id).status == AppointmentStatus.CONFIRMED
    assert "auto_cancelled" not in gateway.kinds()


def test_status_and_health_reflect_manual_checks(service, clock, make_appointment) -> None:
    make_appointment()

    assert service.get_health()["status"] == "stopped"
    service.manual_check()
    clock.advance(minutes=5)

    status = service.get_status()
    assert status["is_running"] is False
    assert status["check_count"] == 1
    assert status["last_check_time"] == T0.isoformat()
    assert status["sent_reminders_count"] == 1

    health = service.get_health()
    assert health["time_since_last_check"] == 300
    assert health["is_production_ready"] is False


def test_naive_lesson_time_does_not_block_other_reminders(service, repository, gateway, make_appointment) -> None:
    good = make_appointment()
    naive = repository.add_appointment(
        Appointment(
            appointment_id="apt-naive",
            scheduled_at=datetime(2027, 1, 1, 10, 0),
            coach=Person(person_id="coach-1", name="Sam Coach"),
            client=Person(person_id="client-naive", name="Nora Naive", email="nora@example.com"),
            status=AppointmentStatus.CONFIRMED,
        )
    )

    result = service.manual_check()

    assert naive.scheduled_at == datetime(2027, 1, 1, 10, 0, tzinfo=UTC)
    assert [record["appointment_id"] for record in result.reminder_records] == [good.appointment_id]
    assert result.reminder_records[0]["status"] == "sent"
    assert gateway.kinds() == ["confirmation_reminder"]
