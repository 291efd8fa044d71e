from __future__ import annotations

import signal
import threading
from datetime import timedelta

import pytest

from lesson_reminders.domain.models import TickResult
from lesson_reminders.jobs.scheduler import BACKUP_JOB_ID, PRIMARY_JOB_ID, ReminderTicker
from lesson_reminders.jobs.supervisor import MONITOR_JOB_ID, ReminderSupervisor


def _recording_tick(calls: list[int]):
    def _tick(now, check_number: int) -> TickResult:
        calls.append(check_number)
        return TickResult(started_at=now, check_number=check_number)

    return _tick


def test_scheduler_registers_primary_and_backup_jobs(clock) -> None:
    ticker = ReminderTicker(_recording_tick([]), clock=clock)

    scheduler = ticker.build_scheduler()
    jobs = {job.id: job for job in scheduler.get_jobs()}

    assert set(jobs) == {PRIMARY_JOB_ID, BACKUP_JOB_ID}
    assert jobs[PRIMARY_JOB_ID].trigger.interval == timedelta(minutes=60)
    assert jobs[BACKUP_JOB_ID].trigger.interval == timedelta(minutes=15)
    assert all(job.max_instances == 1 and job.coalesce for job in jobs.values())


def test_manual_ticks_increment_counter_and_stamp_time(clock) -> None:
    calls: list[int] = []
    ticker = ReminderTicker(_recording_tick(calls), clock=clock)

    ticker.run_tick()
    clock.advance(minutes=15)
    result = ticker.run_tick("backup")

    assert calls == [1, 2]
    assert result.check_number == 2
    assert ticker.last_check_time == clock()


def test_overlapping_tick_is_skipped(clock) -> None:
    entered = threading.Event()
    release = threading.Event()
    calls: list[int] = []

    def _slow_tick(now, check_number: int) -> TickResult:
        calls.append(check_number)
        entered.set()
        release.wait(5)
        return TickResult(started_at=now, check_number=check_number)

    ticker = ReminderTicker(_slow_tick, clock=clock)
    worker = threading.Thread(target=ticker.run_tick, args=("primary",))
    worker.start()
    assert entered.wait(5)

    skipped = ticker.run_tick("backup")
    release.set()
    worker.join(5)

    assert skipped.skipped_overlap is True
    assert ticker.skipped_overlaps == 1
    assert ticker.check_count == 1
    assert calls == [1]


def test_scheduled_tick_swallows_tick_errors(clock) -> None:
    def _boom(now, check_number):
        raise RuntimeError("store offline")

    ticker = ReminderTicker(_boom, clock=clock)

    ticker.scheduled_tick("primary")
    ticker.scheduled_tick("backup")

    assert ticker.check_count == 2


def test_start_runs_first_tick_immediately_and_stop_halts(clock) -> None:
    ticked = threading.Event()

    def _tick(now, check_number: int) -> TickResult:
        ticked.set()
        return TickResult(started_at=now, check_number=check_number)

    ticker = ReminderTicker(_tick, clock=clock)
    ticker.start()
    try:
        assert ticker.is_running is True
        ticker.start()
        assert ticked.wait(5)
    finally:
        ticker.stop()

    assert ticker.is_running is False


class FakeTicker:
    def __init__(self, failures: int = 0, *, report_running: bool = True) -> None:
        self.failures = failures
        self.report_running = report_running
        self.is_running = False
        self.starts = 0
        self.stops = 0

    def start(self) -> None:
        self.starts += 1
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("scheduler thread failed")
        self.is_running = self.report_running

    def stop(self) -> None:
        self.stops += 1
        self.is_running = False


class FakeMonitor:
    def __init__(self) -> None:
        self.jobs: list[dict] = []
        self.running = False

    def add_job(self, func, **kwargs) -> None:
        self.jobs.append({"func": func, **kwargs})

    def start(self) -> None:
        self.running = True

    def shutdown(self, wait: bool = True) -> None:
        self.running = False


def _supervisor(ticker, *, sleeps=None, monitor=None, max_attempts: int = 3) -> ReminderSupervisor:
    recorded = sleeps if sleeps is not None else []
    return ReminderSupervisor(
        ticker,
        max_attempts=max_attempts,
        retry_delay_seconds=5,
        verify_delay_seconds=1,
        sleep=recorded.append,
        monitor_factory=lambda: monitor or FakeMonitor(),
    )


def test_initialize_retries_until_started() -> None:
    sleeps: list[float] = []
    ticker = FakeTicker(failures=2)
    supervisor = _supervisor(ticker, sleeps=sleeps)

    assert supervisor.initialize() is True
    assert ticker.starts == 3
    assert supervisor.startup_attempts == 0
    assert sleeps == [5, 5, 1]


def test_initialize_gives_up_after_budget() -> None:
    ticker = FakeTicker(failures=10)
    supervisor = _supervisor(ticker)

    assert supervisor.initialize() is False
    assert ticker.starts == 3
    assert supervisor.budget_exhausted is True


def test_ticker_that_never_reports_running_counts_as_failure() -> None:
    ticker = FakeTicker(report_running=False)
    supervisor = _supervisor(ticker, max_attempts=2)

    assert supervisor.initialize() is False
    assert supervisor.startup_attempts == 2


def test_monitor_restarts_stopped_ticker() -> None:
    ticker = FakeTicker()
    supervisor = _supervisor(ticker)
    supervisor.initialize()

    ticker.is_running = False
    supervisor.check_ticker()

    assert ticker.starts == 2
    assert ticker.is_running is True


def test_monitor_leaves_ticker_down_once_budget_is_spent() -> None:
    ticker = FakeTicker(failures=10)
    supervisor = _supervisor(ticker)
    supervisor.initialize()

    supervisor.check_ticker()

    assert ticker.starts == 3


def test_start_monitor_registers_interval_job() -> None:
    monitor = FakeMonitor()
    supervisor = _supervisor(FakeTicker(), monitor=monitor)

    supervisor.start_monitor()

    assert monitor.running is True
    assert monitor.jobs[0]["id"] == MONITOR_JOB_ID
    assert monitor.jobs[0]["seconds"] == 30
    assert monitor.jobs[0]["max_instances"] == 1


def test_signal_triggers_graceful_shutdown() -> None:
    monitor_started = threading.Event()

    class SignallingMonitor(FakeMonitor):
        def start(self) -> None:
            super().start()
            monitor_started.set()

    monitor = SignallingMonitor()
    ticker = FakeTicker()
    supervisor = _supervisor(ticker, monitor=monitor)
    outcome: dict[str, bool] = {}

    def _serve() -> None:
        outcome["started"] = supervisor.run_forever(install_signals=False)

    worker = threading.Thread(target=_serve)
    worker.start()
    assert monitor_started.wait(5)
    supervisor.handle_signal(signal.SIGTERM, None)
    worker.join(5)

    assert not worker.is_alive()
    assert outcome["started"] is True
    assert ticker.stops == 1
    assert monitor.running is False

    supervisor.check_ticker()
    assert ticker.starts == 1


@pytest.mark.skipif(not hasattr(signal, "SIGUSR2"), reason="platform lacks SIGUSR2")
def test_install_signal_handlers_covers_shutdown_signals(monkeypatch) -> None:
    installed: dict[int, object] = {}
    monkeypatch.setattr(signal, "signal", lambda signum, handler: installed.setdefault(signum, handler))
    supervisor = _supervisor(FakeTicker())

    supervisor.install_signal_handlers()

    assert set(installed) == {signal.SIGTERM, signal.SIGINT, signal.SIGUSR2}
