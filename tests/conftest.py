from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Callable

import pytest

from lesson_reminders.adapters.repository import InMemoryReminderRepository
from lesson_reminders.config import ReminderSettings
from lesson_reminders.domain.models import Appointment, AppointmentStatus, Person
from lesson_reminders.service import ReminderService, build_service

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class MutableClock:
    """Injected clock that tests move forward explicitly."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingGateway:
    """Gateway double that records calls and can fail a set number of times."""

    def __init__(self, *, failures: int = 0, result: bool = True) -> None:
        self.failures = failures
        self.result = result
        self.calls: list[dict[str, Any]] = []

    def _handle(self, kind: str, **payload: Any) -> bool:
        self.calls.append({"kind": kind, **payload})
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("smtp relay unavailable")
        return self.result

    def send_confirmation_reminder(self, email, client_name, coach_name, date, time, hours_remaining) -> bool:
        return self._handle(
            "confirmation_reminder",
            email=email,
            client_name=client_name,
            coach_name=coach_name,
            date=date,
            time=time,
            hours_remaining=hours_remaining,
        )

    def send_auto_cancelled(self, email, client_name, coach_name, date_time) -> bool:
        return self._handle(
            "auto_cancelled",
            email=email,
            client_name=client_name,
            coach_name=coach_name,
            date_time=date_time,
        )

    def kinds(self) -> list[str]:
        return [call["kind"] for call in self.calls]


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def repository() -> InMemoryReminderRepository:
    return InMemoryReminderRepository()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def settings(tmp_path: Path) -> ReminderSettings:
    return ReminderSettings(
        startup_retry_delay_seconds=0,
        startup_verify_delay_seconds=0,
        notification_timeout_seconds=5.0,
        store_path=tmp_path / "state" / "store.json",
    )


@pytest.fixture
def make_appointment(repository, clock) -> Callable[..., Appointment]:
    counter = {"n": 0}

    def _make(
        *,
        starts_in: timedelta = timedelta(hours=48),
        email: str | None = "jane@example.com",
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
        appointment_id: str | None = None,
    ) -> Appointment:
        counter["n"] += 1
        appointment = Appointment(
            appointment_id=appointment_id or f"apt-{counter['n']}",
            scheduled_at=clock() + starts_in,
            coach=Person(person_id="coach-1", name="Sam Coach", email="sam@example.com"),
            client=Person(person_id=f"client-{counter['n']}", name="Jane Example", email=email),
            status=status,
        )
        return repository.add_appointment(appointment)

    return _make


@pytest.fixture
def service(settings, repository, gateway, clock) -> ReminderService:
    svc = build_service(settings, repository=repository, gateway=gateway, clock=clock, sleep=lambda _s: None)
    yield svc
    svc.close()
