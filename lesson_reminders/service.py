"""Construction of the reminder service from settings and collaborators."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from lesson_reminders.adapters.email_gateway import (
    LoggingNotificationGateway,
    NotificationGateway,
    SmtpNotificationGateway,
)
from lesson_reminders.adapters.json_store import JsonFileReminderRepository
from lesson_reminders.adapters.repository import ReminderRepository
from lesson_reminders.config import ReminderSettings, SmtpSettings
from lesson_reminders.domain.models import AckDecision, AcknowledgeResult, TickResult
from lesson_reminders.jobs.scheduler import ReminderTicker
from lesson_reminders.jobs.supervisor import ReminderSupervisor
from lesson_reminders.jobs.tasks import TickContext, run_reminder_tick
from lesson_reminders.orchestration.confirm import ConfirmationHandler
from lesson_reminders.orchestration.dedup import DedupGuard
from lesson_reminders.orchestration.send import NotificationSender
from lesson_reminders.reporting.health import HealthReporter
from lesson_reminders.utils.clock import Clock, utc_now
from lesson_reminders.utils.idempotency import SentReminderSet
from lesson_reminders.utils.timeouts import BoundedCaller
from lesson_reminders.workflows.dispatch import DispatchContext

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReminderService:
    settings: ReminderSettings
    repository: ReminderRepository
    gateway: NotificationGateway
    sent: SentReminderSet
    sender: NotificationSender
    confirmations: ConfirmationHandler
    ticker: ReminderTicker
    health: HealthReporter
    supervisor: ReminderSupervisor
    caller: BoundedCaller

    def manual_check(self) -> TickResult:
        logger.info("Manual reminder check triggered")
        return self.ticker.run_tick("manual")

    def acknowledge(
        self,
        reminder_id_or_token: str,
        decision: AckDecision | str = AckDecision.CONFIRM,
        *,
        client_id: str | None = None,
    ) -> AcknowledgeResult:
        return self.confirmations.acknowledge(reminder_id_or_token, decision, client_id=client_id)

    def get_status(self) -> dict[str, Any]:
        return self.health.get_status()

    def get_health(self) -> dict[str, Any]:
        return self.health.get_health()

    def close(self) -> None:
        self.supervisor.shutdown()
        self.caller.shutdown()


def build_gateway(settings: ReminderSettings) -> NotificationGateway:
    if settings.email_mode == "smtp":
        return SmtpNotificationGateway(
            settings.smtp or SmtpSettings(),
            timeout_seconds=settings.notification_timeout_seconds,
        )
    return LoggingNotificationGateway()


def build_service(
    settings: ReminderSettings | None = None,
    *,
    repository: ReminderRepository | None = None,
    gateway: NotificationGateway | None = None,
    clock: Clock = utc_now,
    sleep: Callable[[float], None] | None = None,
) -> ReminderService:
    """Wire every collaborator once; nothing here is a module-level singleton."""
    settings = settings or ReminderSettings.from_env()
    repository = repository if repository is not None else JsonFileReminderRepository(settings.store_path)
    gateway = gateway if gateway is not None else build_gateway(settings)

    sent = SentReminderSet()
    caller = BoundedCaller(settings.notification_timeout_seconds)
    sender = NotificationSender(
        repository,
        gateway,
        caller,
        max_attempts=settings.delivery_max_attempts,
        base_backoff_seconds=settings.delivery_base_backoff_seconds,
    )
    guard = DedupGuard(
        repository,
        sent,
        lookahead=settings.lookahead,
        tolerance=settings.dedup_tolerance,
    )
    context = TickContext(
        dispatch=DispatchContext(
            repository=repository,
            guard=guard,
            sender=sender,
            lookahead=settings.lookahead,
            window_tolerance=settings.window_tolerance,
            confirmation_window=settings.confirmation_window,
            zone=settings.zone,
        ),
        repository=repository,
        sender=sender,
        zone=settings.zone,
    )

    def _tick(now: datetime, check_number: int) -> TickResult:
        return run_reminder_tick(context, now=now, check_number=check_number)

    ticker = ReminderTicker(
        _tick,
        primary_interval_minutes=settings.primary_interval_minutes,
        backup_interval_minutes=settings.backup_interval_minutes,
        clock=clock,
    )
    supervisor_kwargs: dict[str, Any] = {}
    if sleep is not None:
        supervisor_kwargs["sleep"] = sleep
    supervisor = ReminderSupervisor(
        ticker,
        max_attempts=settings.startup_max_attempts,
        retry_delay_seconds=settings.startup_retry_delay_seconds,
        verify_delay_seconds=settings.startup_verify_delay_seconds,
        monitor_interval_seconds=settings.monitor_interval_seconds,
        **supervisor_kwargs,
    )

    return ReminderService(
        settings=settings,
        repository=repository,
        gateway=gateway,
        sent=sent,
        sender=sender,
        confirmations=ConfirmationHandler(repository, clock=clock, zone=settings.zone),
        ticker=ticker,
        health=HealthReporter(ticker, sent, clock=clock),
        supervisor=supervisor,
        caller=caller,
    )
