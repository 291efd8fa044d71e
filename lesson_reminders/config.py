"""Environment-driven runtime configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lesson_reminders.domain.errors import ConfigError

ENV_PREFIX = "LESSON_REMINDER_"
DEFAULT_STORE_PATH = "/tmp/lesson-reminders/state/store.json"
EMAIL_MODES = ("log", "smtp")

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SmtpSettings:
    host: str = "localhost"
    port: int = 587
    username: str | None = None
    password: str | None = None
    from_email: str = "lessons@localhost"
    use_tls: bool = True


@dataclass(slots=True)
class ReminderSettings:
    primary_interval_minutes: int = 60
    backup_interval_minutes: int = 15
    lookahead_hours: int = 48
    window_tolerance_hours: int = 1
    confirmation_window_hours: int = 24
    dedup_tolerance_hours: int = 1
    notification_timeout_seconds: float = 30.0
    delivery_max_attempts: int = 5
    delivery_base_backoff_seconds: int = 60
    startup_max_attempts: int = 3
    startup_retry_delay_seconds: float = 5.0
    startup_verify_delay_seconds: float = 1.0
    monitor_interval_seconds: int = 30
    timezone: str = "America/New_York"
    store_path: Path = Path(DEFAULT_STORE_PATH)
    email_mode: str = "log"
    smtp: SmtpSettings | None = None

    @property
    def lookahead(self) -> timedelta:
        return timedelta(hours=self.lookahead_hours)

    @property
    def window_tolerance(self) -> timedelta:
        return timedelta(hours=self.window_tolerance_hours)

    @property
    def confirmation_window(self) -> timedelta:
        return timedelta(hours=self.confirmation_window_hours)

    @property
    def dedup_tolerance(self) -> timedelta:
        return timedelta(hours=self.dedup_tolerance_hours)

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ReminderSettings":
        env = os.environ if environ is None else environ
        defaults = cls()

        def _int(name: str, default: int, *, minimum: int = 0) -> int:
            raw = env.get(ENV_PREFIX + name, "").strip()
            if not raw:
                return default
            try:
                value = int(raw)
            except ValueError as exc:
                raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc
            if value < minimum:
                raise ConfigError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}")
            return value

        def _float(name: str, default: float) -> float:
            raw = env.get(ENV_PREFIX + name, "").strip()
            if not raw:
                return default
            try:
                value = float(raw)
            except ValueError as exc:
                raise ConfigError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc
            if value < 0:
                raise ConfigError(f"{ENV_PREFIX}{name} must not be negative")
            return value

        timezone_name = env.get(ENV_PREFIX + "TIMEZONE", "").strip() or defaults.timezone
        try:
            ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Unknown timezone {timezone_name!r}") from exc

        email_mode = (env.get(ENV_PREFIX + "EMAIL_MODE", "").strip() or defaults.email_mode).lower()
        if email_mode not in EMAIL_MODES:
            raise ConfigError(f"{ENV_PREFIX}EMAIL_MODE must be one of {', '.join(EMAIL_MODES)}")

        smtp: SmtpSettings | None = None
        if email_mode == "smtp":
            smtp = SmtpSettings(
                host=env.get(ENV_PREFIX + "SMTP_HOST", "").strip() or "localhost",
                port=_int("SMTP_PORT", 587, minimum=1),
                username=env.get(ENV_PREFIX + "SMTP_USERNAME", "").strip() or None,
                password=env.get(ENV_PREFIX + "SMTP_PASSWORD", "").strip() or None,
                from_email=env.get(ENV_PREFIX + "SMTP_FROM_EMAIL", "").strip() or "lessons@localhost",
                use_tls=env.get(ENV_PREFIX + "SMTP_USE_TLS", "true").strip().lower() != "false",
            )

        settings = cls(
            primary_interval_minutes=_int("PRIMARY_INTERVAL_MINUTES", defaults.primary_interval_minutes, minimum=1),
            backup_interval_minutes=_int("BACKUP_INTERVAL_MINUTES", defaults.backup_interval_minutes, minimum=1),
            lookahead_hours=_int("LOOKAHEAD_HOURS", defaults.lookahead_hours, minimum=1),
            window_tolerance_hours=_int("WINDOW_TOLERANCE_HOURS", defaults.window_tolerance_hours),
            confirmation_window_hours=_int(
                "CONFIRMATION_WINDOW_HOURS", defaults.confirmation_window_hours, minimum=1
            ),
            dedup_tolerance_hours=_int("DEDUP_TOLERANCE_HOURS", defaults.dedup_tolerance_hours),
            notification_timeout_seconds=_float(
                "NOTIFICATION_TIMEOUT_SECONDS", defaults.notification_timeout_seconds
            ),
            delivery_max_attempts=_int("DELIVERY_MAX_ATTEMPTS", defaults.delivery_max_attempts, minimum=1),
            delivery_base_backoff_seconds=_int(
                "DELIVERY_BASE_BACKOFF_SECONDS", defaults.delivery_base_backoff_seconds
            ),
            startup_max_attempts=_int("STARTUP_MAX_ATTEMPTS", defaults.startup_max_attempts, minimum=1),
            startup_retry_delay_seconds=_float(
                "STARTUP_RETRY_DELAY_SECONDS", defaults.startup_retry_delay_seconds
            ),
            startup_verify_delay_seconds=_float(
                "STARTUP_VERIFY_DELAY_SECONDS", defaults.startup_verify_delay_seconds
            ),
            monitor_interval_seconds=_int("MONITOR_INTERVAL_SECONDS", defaults.monitor_interval_seconds, minimum=1),
            timezone=timezone_name,
            store_path=Path(env.get(ENV_PREFIX + "STORE_PATH", "").strip() or DEFAULT_STORE_PATH),
            email_mode=email_mode,
            smtp=smtp,
        )
        logger.info(
            "Resolved reminder config (timezone=%s, lookahead=%sh, window=±%sh, email_mode=%s, store=%s)",
            settings.timezone,
            settings.lookahead_hours,
            settings.window_tolerance_hours,
            settings.email_mode,
            settings.store_path,
        )
        return settings
