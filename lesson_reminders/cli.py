"""Top-level lesson reminder command line interface."""

from __future__ import annotations

import argparse
import json
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Sequence

from lesson_reminders.config import ReminderSettings
from lesson_reminders.domain.errors import ConfirmationError, ReminderError
from lesson_reminders.domain.models import AckDecision, Appointment, AppointmentStatus, Person
from lesson_reminders.reporting.triage import write_tick_report
from lesson_reminders.service import ReminderService, build_service
from lesson_reminders.utils.clock import ensure_utc, utc_now
from lesson_reminders.utils.identity import new_record_id
from lesson_reminders.utils.logging import configure_logging


def _timestamp(value: str) -> datetime:
    normalized = value.replace("Z", "+00:00")
    try:
        return ensure_utc(datetime.fromisoformat(normalized))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            "expected an ISO-8601 datetime (example: 2026-03-04T15:30:00Z)"
        ) from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lesson-reminders", description="Lesson reminder scheduler CLI")
    parser.add_argument("--store", type=Path, help="Override the JSON store path")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the supervised scheduler until signalled")
    serve_parser.set_defaults(handler=_handle_serve)

    check_parser = subparsers.add_parser("check", help="Run one reminder tick immediately")
    check_parser.add_argument("--now", type=_timestamp, help="Evaluate the tick as of this instant")
    check_parser.add_argument("--report-dir", type=Path, help="Write JSON and Markdown tick reports here")
    check_parser.set_defaults(handler=_handle_check)

    status_parser = subparsers.add_parser("status", help="Print service health and stored record counts")
    status_parser.set_defaults(handler=_handle_status)

    ack_parser = subparsers.add_parser("acknowledge", help="Confirm or decline a lesson reminder")
    ack_parser.add_argument("reminder", help="Reminder id or confirmation token")
    ack_parser.add_argument("--decline", action="store_true", help="Decline and cancel the lesson")
    ack_parser.add_argument("--client-id", help="Reject the acknowledgment unless made by this client")
    ack_parser.add_argument("--now", type=_timestamp, help="Acknowledge as of this instant")
    ack_parser.set_defaults(handler=_handle_acknowledge)

    seed_parser = subparsers.add_parser("seed", help="Add a confirmed lesson to the store for testing")
    seed_parser.add_argument("--appointment-id", help="Explicit appointment id")
    seed_parser.add_argument("--at", type=_timestamp, help="Lesson start time")
    seed_parser.add_argument(
        "--hours-ahead",
        type=float,
        default=48.0,
        help="Lesson start relative to now when --at is omitted",
    )
    seed_parser.add_argument("--client-name", default="Test Client")
    seed_parser.add_argument("--client-email", default="client@example.com")
    seed_parser.add_argument("--coach-name", default="Test Coach")
    seed_parser.set_defaults(handler=_handle_seed)

    return parser


def _settings(args: argparse.Namespace) -> ReminderSettings:
    settings = ReminderSettings.from_env()
    if args.store:
        settings.store_path = args.store
    return settings


def _service(args: argparse.Namespace, now: datetime | None = None) -> ReminderService:
    clock = (lambda: now) if now is not None else utc_now
    return build_service(_settings(args), clock=clock)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _handle_serve(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        started = service.supervisor.run_forever()
    finally:
        service.close()
    return 0 if started else 1


def _handle_check(args: argparse.Namespace) -> int:
    service = _service(args, args.now)
    try:
        result = service.manual_check()
    finally:
        service.close()

    if args.report_dir:
        json_path, md_path = write_tick_report(artifacts_dir=args.report_dir, result=result)
        print(f"Wrote tick reports to {json_path} and {md_path}")
    _print_json({"check_number": result.check_number, "summary": result.summary})
    return 0


def _store_counts(service: ReminderService) -> dict[str, Any]:
    repository = service.repository
    return {
        "appointments": dict(Counter(item.status.value for item in repository.list_appointments())),
        "reminders": dict(Counter(item.status.value for item in repository.list_reminders())),
        "outbox": dict(Counter(item.status.value for item in repository.list_notifications())),
    }


def _handle_status(args: argparse.Namespace) -> int:
    service = _service(args)
    try:
        _print_json({"health": service.get_health(), "store": _store_counts(service)})
    finally:
        service.close()
    return 0


def _handle_acknowledge(args: argparse.Namespace) -> int:
    service = _service(args, args.now)
    decision = AckDecision.DECLINE if args.decline else AckDecision.CONFIRM
    try:
        result = service.acknowledge(args.reminder, decision, client_id=args.client_id)
    except ConfirmationError as exc:
        _print_json({"error": exc.code, "message": str(exc)})
        return 1
    finally:
        service.close()

    _print_json(
        {
            "reminder_id": result.reminder_id,
            "appointment_id": result.appointment_id,
            "decision": result.decision.value,
            "already_confirmed": result.already_confirmed,
            "already_cancelled": result.already_cancelled,
            "acknowledged_at": result.acknowledged_at.isoformat() if result.acknowledged_at else None,
        }
    )
    return 0


def _handle_seed(args: argparse.Namespace) -> int:
    service = _service(args)
    scheduled_at = args.at or utc_now() + timedelta(hours=args.hours_ahead)
    appointment = Appointment(
        appointment_id=args.appointment_id or new_record_id("apt"),
        scheduled_at=scheduled_at,
        coach=Person(person_id=new_record_id("coach"), name=args.coach_name),
        client=Person(person_id=new_record_id("client"), name=args.client_name, email=args.client_email or None),
        status=AppointmentStatus.CONFIRMED,
    )
    try:
        service.repository.add_appointment(appointment)
    except ReminderError as exc:
        print(f"Could not seed appointment: {exc}")
        return 1
    finally:
        service.close()

    print(f"Seeded appointment {appointment.appointment_id} at {scheduled_at.isoformat()}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args(argv)
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
