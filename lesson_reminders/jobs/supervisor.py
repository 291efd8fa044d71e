"""Startup retry, self-healing restarts and signal-driven shutdown."""

from __future__ import annotations

import logging
import signal
import threading
import time
from datetime import UTC
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler

from lesson_reminders.domain.errors import StartupError
from lesson_reminders.jobs.scheduler import ReminderTicker

MONITOR_JOB_ID = "lesson_reminders_monitor"
SHUTDOWN_SIGNALS = ("SIGTERM", "SIGINT", "SIGUSR2")

logger = logging.getLogger(__name__)


class ReminderSupervisor:
    """Keep the ticker alive for the lifetime of the process.

    Startup failures and unexpected stops share a single retry budget;
    once it is spent the process keeps running without the scheduler and
    manual checks remain available.
    """

    def __init__(
        self,
        ticker: ReminderTicker,
        *,
        max_attempts: int = 3,
        retry_delay_seconds: float = 5.0,
        verify_delay_seconds: float = 1.0,
        monitor_interval_seconds: int = 30,
        sleep: Callable[[float], None] = time.sleep,
        monitor_factory: Callable[[], BackgroundScheduler] | None = None,
    ) -> None:
        self.ticker = ticker
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.verify_delay_seconds = verify_delay_seconds
        self.monitor_interval_seconds = monitor_interval_seconds
        self._sleep = sleep
        self._monitor_factory = monitor_factory or (lambda: BackgroundScheduler(timezone=UTC))
        self._monitor: BackgroundScheduler | None = None
        self._init_lock = threading.Lock()
        self._monitor_lock = threading.RLock()
        self._stopped = threading.Event()
        self.startup_attempts = 0

    @property
    def budget_exhausted(self) -> bool:
        return self.startup_attempts >= self.max_attempts

    def initialize(self) -> bool:
        """Start the ticker, retrying with a fixed delay until the budget runs out."""
        with self._init_lock:
            while not self._stopped.is_set():
                try:
                    logger.info("Initializing lesson reminder service...")
                    self.ticker.start()
                    self._sleep(self.verify_delay_seconds)
                    if not self.ticker.is_running:
                        raise StartupError("Ticker did not report running after start")
                    logger.info("Lesson reminder service started successfully")
                    self.startup_attempts = 0
                    return True
                except Exception as exc:
                    self.startup_attempts += 1
                    logger.error(
                        "Failed to start lesson reminder service (attempt %s/%s): %s",
                        self.startup_attempts,
                        self.max_attempts,
                        exc,
                    )
                    if self.budget_exhausted:
                        logger.critical(
                            "Failed to start lesson reminder service after %s attempts; "
                            "continuing without scheduled checks",
                            self.max_attempts,
                        )
                        return False
                    logger.info("Retrying in %s seconds...", self.retry_delay_seconds)
                    self._sleep(self.retry_delay_seconds)
            return False

    def check_ticker(self) -> None:
        """Monitor body: restart a ticker that stopped unexpectedly."""
        if self._stopped.is_set() or self.ticker.is_running:
            return
        if self.budget_exhausted:
            logger.debug("Ticker is down and the restart budget is spent")
            return
        logger.warning("Lesson reminder ticker stopped unexpectedly, attempting restart...")
        self.initialize()

    def start_monitor(self) -> None:
        with self._monitor_lock:
            if self._monitor is not None or self._stopped.is_set():
                return
            monitor = self._monitor_factory()
            monitor.add_job(
                self.check_ticker,
                trigger="interval",
                seconds=self.monitor_interval_seconds,
                id=MONITOR_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            monitor.start()
            self._monitor = monitor
        logger.info("Auto-restart monitoring configured (every %ss)", self.monitor_interval_seconds)

    def install_signal_handlers(self) -> list[int]:
        installed: list[int] = []
        for name in SHUTDOWN_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            signal.signal(signum, self.handle_signal)
            installed.append(signum)
        logger.info("Graceful shutdown handlers configured")
        return installed

    def handle_signal(self, signum: int, _frame: Any) -> None:
        logger.info("Received signal %s, shutting down lesson reminder service gracefully...", signum)
        self.shutdown()

    def shutdown(self) -> None:
        self._stopped.set()
        with self._monitor_lock:
            monitor, self._monitor = self._monitor, None
        if monitor is not None and monitor.running:
            monitor.shutdown(wait=False)
        self.ticker.stop()

    def run_forever(self, *, install_signals: bool = True) -> bool:
        """Start everything and block until a shutdown signal arrives.

        Returns whether the ticker ever started.
        """
        if install_signals:
            self.install_signal_handlers()
        started = self.initialize()
        self.start_monitor()
        while not self._stopped.wait(timeout=1.0):
            pass
        return started
