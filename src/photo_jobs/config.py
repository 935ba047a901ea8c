"""Runtime configuration for the task queue, handlers and notifications."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from photo_jobs.queue.models import TaskType
from photo_jobs.queue.retry_policy import DEFAULT_BACKOFF_SECONDS


@dataclass(slots=True)
class SchedulerSettings:
    """Scheduler loop and housekeeping settings."""

    tick_interval_seconds: float = 30.0
    max_concurrent_tasks: int = 3
    max_task_age_seconds: int = 86_400
    cleanup_interval_seconds: float = 3_600.0
    terminal_task_ttl_seconds: int = 86_400
    stats_log_interval_seconds: float = 60.0


@dataclass(slots=True)
class RetrySettings:
    """Attempt budget and backoff table."""

    default_max_attempts: int = 3
    backoff_seconds: tuple[float, ...] = DEFAULT_BACKOFF_SECONDS


@dataclass(slots=True)
class TelegramSettings:
    """Telegram Bot API settings; an empty token disables delivery."""

    bot_token: str = ""
    api_base: str = "https://api.telegram.org"
    timeout_seconds: float = 60.0
    max_retries: int = 5


@dataclass(slots=True)
class VendorSettings:
    """External processing endpoints keyed by task type."""

    endpoints: dict[str, str] = field(default_factory=dict)
    api_key: str | None = None
    timeout_seconds: float = 120.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".photo_jobs.db")
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    telegram: TelegramSettings = field(default_factory=TelegramSettings)
    vendor: VendorSettings = field(default_factory=VendorSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("PHOTO_JOBS_DB_PATH", ".photo_jobs.db")),
            scheduler=SchedulerSettings(
                tick_interval_seconds=float(
                    os.getenv("PHOTO_JOBS_TICK_INTERVAL_SECONDS", "30"),
                ),
                max_concurrent_tasks=int(os.getenv("PHOTO_JOBS_MAX_CONCURRENT_TASKS", "3")),
                max_task_age_seconds=int(os.getenv("PHOTO_JOBS_MAX_TASK_AGE_SECONDS", "86400")),
                cleanup_interval_seconds=float(
                    os.getenv("PHOTO_JOBS_CLEANUP_INTERVAL_SECONDS", "3600"),
                ),
                terminal_task_ttl_seconds=int(
                    os.getenv("PHOTO_JOBS_TERMINAL_TASK_TTL_SECONDS", "86400"),
                ),
                stats_log_interval_seconds=float(
                    os.getenv("PHOTO_JOBS_STATS_LOG_INTERVAL_SECONDS", "60"),
                ),
            ),
            retry=RetrySettings(
                default_max_attempts=int(os.getenv("PHOTO_JOBS_DEFAULT_MAX_ATTEMPTS", "3")),
                backoff_seconds=_parse_backoff(
                    os.getenv("PHOTO_JOBS_RETRY_BACKOFF_SECONDS", "1,5,15,60,300"),
                ),
            ),
            telegram=TelegramSettings(
                bot_token=os.getenv("PHOTO_JOBS_TELEGRAM_BOT_TOKEN", "").strip(),
                api_base=os.getenv("PHOTO_JOBS_TELEGRAM_API_BASE", "https://api.telegram.org"),
                timeout_seconds=float(os.getenv("PHOTO_JOBS_TELEGRAM_TIMEOUT_SECONDS", "60")),
                max_retries=int(os.getenv("PHOTO_JOBS_TELEGRAM_MAX_RETRIES", "5")),
            ),
            vendor=VendorSettings(
                endpoints=_parse_vendor_endpoints(os.getenv("PHOTO_JOBS_VENDOR_ENDPOINTS", "")),
                api_key=os.getenv("PHOTO_JOBS_VENDOR_API_KEY", "").strip() or None,
                timeout_seconds=float(os.getenv("PHOTO_JOBS_VENDOR_TIMEOUT_SECONDS", "120")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the scheduler cannot run with."""

        scheduler = self.scheduler
        if scheduler.tick_interval_seconds <= 0:
            raise ValueError("PHOTO_JOBS_TICK_INTERVAL_SECONDS must be > 0.")
        if scheduler.max_concurrent_tasks <= 0:
            raise ValueError("PHOTO_JOBS_MAX_CONCURRENT_TASKS must be a positive integer.")
        if scheduler.max_task_age_seconds <= 0:
            raise ValueError("PHOTO_JOBS_MAX_TASK_AGE_SECONDS must be > 0.")
        if scheduler.cleanup_interval_seconds <= 0:
            raise ValueError("PHOTO_JOBS_CLEANUP_INTERVAL_SECONDS must be > 0.")
        if scheduler.terminal_task_ttl_seconds <= 0:
            raise ValueError("PHOTO_JOBS_TERMINAL_TASK_TTL_SECONDS must be > 0.")
        if scheduler.stats_log_interval_seconds <= 0:
            raise ValueError("PHOTO_JOBS_STATS_LOG_INTERVAL_SECONDS must be > 0.")
        if self.retry.default_max_attempts <= 0:
            raise ValueError("PHOTO_JOBS_DEFAULT_MAX_ATTEMPTS must be a positive integer.")
        if not self.retry.backoff_seconds:
            raise ValueError("PHOTO_JOBS_RETRY_BACKOFF_SECONDS must contain at least one delay.")
        if any(delay < 0 for delay in self.retry.backoff_seconds):
            raise ValueError("PHOTO_JOBS_RETRY_BACKOFF_SECONDS delays must be >= 0.")
        if self.telegram.timeout_seconds <= 0:
            raise ValueError("PHOTO_JOBS_TELEGRAM_TIMEOUT_SECONDS must be > 0.")
        if self.telegram.max_retries < 0:
            raise ValueError("PHOTO_JOBS_TELEGRAM_MAX_RETRIES must be >= 0.")
        if self.vendor.timeout_seconds <= 0:
            raise ValueError("PHOTO_JOBS_VENDOR_TIMEOUT_SECONDS must be > 0.")

        known_types = {task_type.value for task_type in TaskType}
        for task_type, url in self.vendor.endpoints.items():
            if task_type not in known_types:
                raise ValueError(
                    f"Unknown task type in PHOTO_JOBS_VENDOR_ENDPOINTS: {task_type!r}. "
                    f"Expected one of {sorted(known_types)}.",
                )
            _validate_endpoint_url(url)


def _parse_backoff(raw: str) -> tuple[float, ...]:
    delays: list[float] = []
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        try:
            delays.append(float(token))
        except ValueError as error:
            raise ValueError(
                f"Invalid PHOTO_JOBS_RETRY_BACKOFF_SECONDS entry: {token!r}",
            ) from error
    return tuple(delays)


def _parse_vendor_endpoints(raw: str) -> dict[str, str]:
    endpoints: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "|" not in token:
            raise ValueError(
                "Invalid PHOTO_JOBS_VENDOR_ENDPOINTS entry: "
                f"{token!r}. Expected format '<task_type>|<url>'.",
            )
        task_type, url = token.split("|", 1)
        endpoints[task_type.strip()] = url.strip()
    return endpoints


def _validate_endpoint_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid vendor endpoint URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
