"""Controllers for scheduler and task CLI commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from photo_jobs.billing.ledger import SqlBalanceLedger
from photo_jobs.config import Settings
from photo_jobs.notifications.base import LoggingNotifier, Notifier
from photo_jobs.notifications.telegram import TelegramNotifier
from photo_jobs.queue.dispatcher import Dispatcher
from photo_jobs.queue.executor import TaskExecutor
from photo_jobs.queue.gate import ConcurrencyGate
from photo_jobs.queue.handlers import EchoHandler, HttpVendorHandler, TaskHandler
from photo_jobs.queue.models import TaskStatus, TaskType
from photo_jobs.queue.repository import TaskRepository
from photo_jobs.queue.scheduler import TaskScheduler
from photo_jobs.queue.services import (
    StaleTaskRecoveryService,
    SubmitTask,
    TaskSubmissionService,
)
from photo_jobs.queue.side_effects import SideEffectCoordinator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SchedulerRunCommand:
    """CLI input for the scheduler loop."""

    db_path: Path | None
    once: bool
    echo: bool


@dataclass(slots=True)
class SubmitTaskCommand:
    """CLI input for task submission."""

    db_path: Path | None
    task_type: str
    payload_json: str
    user_id: str | None
    recipient_id: str | None
    photo_id: str | None
    cost: float
    max_attempts: int | None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class ResubmitTaskCommand:
    """CLI input for operator resubmission."""

    db_path: Path | None
    task_id: str
    extra_attempts: int | None


@dataclass(slots=True)
class RecoverStaleCommand:
    """CLI input for stale processing recovery."""

    db_path: Path | None
    older_than_minutes: int


@dataclass(slots=True)
class CleanupCommand:
    """CLI input for terminal task cleanup."""

    db_path: Path | None
    older_than_hours: int | None


@dataclass(slots=True)
class QueueStatsCommand:
    """CLI input for queue counters."""

    db_path: Path | None


class SchedulerCliController:
    """Builds the scheduler runtime from settings and runs it."""

    def run(self, command: SchedulerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repository(settings) as repository:
            scheduler, closers = build_scheduler(
                settings=settings,
                repository=repository,
                echo=command.echo,
            )
            launched: int | None = None
            try:
                if command.once:
                    launched = scheduler.run_once()
                else:
                    scheduler.run_forever()
                    scheduler.wait_idle(timeout=settings.vendor.timeout_seconds)
            finally:
                close_when_idle(scheduler, closers)
            counts = repository.count_by_status()

        lines = []
        if launched is not None:
            lines.append(f"Tick launched {launched} task(s).")
        lines.append(_format_counts(counts))
        return lines


class TaskCliController:
    """Coordinates submission, inspection and operator mutations."""

    def submit(self, command: SubmitTaskCommand) -> list[str]:
        try:
            payload = json.loads(command.payload_json)
        except json.JSONDecodeError as error:
            raise ValueError(f"Payload is not valid JSON: {error}") from error
        if not isinstance(payload, dict):
            raise ValueError("Payload must be a JSON object.")

        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            service = TaskSubmissionService(
                repository=repository,
                default_max_attempts=settings.retry.default_max_attempts,
            )
            task = service.submit(
                SubmitTask(
                    task_type=command.task_type,
                    payload=payload,
                    user_id=command.user_id,
                    recipient_id=command.recipient_id,
                    photo_id=command.photo_id,
                    cost=command.cost,
                    max_attempts=command.max_attempts,
                ),
            )
        return [
            "Task submitted: "
            f"task_id={task.task_id} type={task.task_type} status={task.status.value} "
            f"max_attempts={task.max_attempts} cost={task.cost}",
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            next_eligible = task.next_eligible_at.isoformat() if task.next_eligible_at else "-"
            lines.append(
                f"  {task.task_id} type={task.task_type} status={task.status.value} "
                f"attempt={task.attempt_count}/{task.max_attempts} "
                f"next_eligible_at={next_eligible}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Type: {task.task_type}",
            f"Status: {task.status.value}",
            f"Attempt: {task.attempt_count}/{task.max_attempts}",
            f"Cost: {task.cost}",
            f"User: {task.user_id or '-'}",
            f"Result: {task.result_locator or '-'}",
            f"Error kind: {task.error_kind.value if task.error_kind else '-'}",
            f"Error: {task.error_message or '-'}",
            f"Error detail: {task.error_detail or '-'}",
            f"Charged at: {task.charged_at.isoformat() if task.charged_at else '-'}",
            f"Charge waived: {'yes' if task.charge_waived else 'no'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def resubmit_task(self, command: ResubmitTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        extra_attempts = command.extra_attempts or settings.retry.default_max_attempts
        with _repository(settings) as repository:
            task = repository.resubmit_task(
                task_id=command.task_id,
                extra_attempts=extra_attempts,
            )
        return [
            f"Task resubmitted: {task.task_id} "
            f"attempt={task.attempt_count}/{task.max_attempts} (will not be charged)",
        ]

    def recover_stale(self, command: RecoverStaleCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            coordinator, closers = build_coordinator(settings=settings, repository=repository)
            try:
                recovered = StaleTaskRecoveryService(
                    repository=repository,
                    coordinator=coordinator,
                ).recover(stale_after=timedelta(minutes=command.older_than_minutes))
            finally:
                for close in closers:
                    close()
        lines = [f"Recovered tasks: {len(recovered)}"]
        for task in recovered:
            lines.append(f"  {task.task_id} -> {task.status.value}")
        return lines

    def cleanup(self, command: CleanupCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        older_than = (
            timedelta(hours=command.older_than_hours)
            if command.older_than_hours is not None
            else timedelta(seconds=settings.scheduler.terminal_task_ttl_seconds)
        )
        with _repository(settings) as repository:
            removed = repository.cleanup_terminal(older_than=older_than)
        return [f"Removed terminal tasks: {removed}"]

    def stats(self, command: QueueStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            counts = repository.count_by_status()
        return [
            _format_counts(counts),
            f"Max concurrent tasks: {settings.scheduler.max_concurrent_tasks}",
            f"Tick interval: {settings.scheduler.tick_interval_seconds}s",
        ]


def build_handlers(settings: Settings, *, echo: bool) -> dict[str, TaskHandler]:
    """Vendor endpoints win; ``echo`` fills the remaining task types."""

    handlers: dict[str, TaskHandler] = {}
    for task_type in TaskType:
        url = settings.vendor.endpoints.get(task_type.value)
        if url:
            handlers[task_type.value] = HttpVendorHandler(
                endpoint_url=url,
                api_key=settings.vendor.api_key,
                timeout_seconds=settings.vendor.timeout_seconds,
            )
        elif echo:
            handlers[task_type.value] = EchoHandler()
    return handlers


def build_notifier(settings: Settings) -> Notifier:
    if not settings.telegram.bot_token:
        return LoggingNotifier()
    return TelegramNotifier(
        bot_token=settings.telegram.bot_token,
        api_base=settings.telegram.api_base,
        timeout_seconds=settings.telegram.timeout_seconds,
        max_retries=settings.telegram.max_retries,
    )


def build_coordinator(
    *,
    settings: Settings,
    repository: TaskRepository,
) -> tuple[SideEffectCoordinator, list[Callable[[], None]]]:
    """Ledger and notifier side effects, with the close callbacks of their clients."""

    notifier = build_notifier(settings)
    closers: list[Callable[[], None]] = []
    if isinstance(notifier, TelegramNotifier):
        closers.append(notifier.close)
    coordinator = SideEffectCoordinator(
        repository=repository,
        ledger=SqlBalanceLedger(repository.engine),
        notifier=notifier,
    )
    return coordinator, closers


def build_scheduler(
    *,
    settings: Settings,
    repository: TaskRepository,
    echo: bool = False,
) -> tuple[TaskScheduler, list[Callable[[], None]]]:
    """Wire the scheduler runtime. Returns it with the close callbacks of its clients."""

    handlers = build_handlers(settings, echo=echo)
    coordinator, closers = build_coordinator(settings=settings, repository=repository)
    closers.extend(
        handler.close for handler in handlers.values() if isinstance(handler, HttpVendorHandler)
    )
    executor = TaskExecutor(
        repository=repository,
        dispatcher=Dispatcher(handlers),
        coordinator=coordinator,
        backoff_table=settings.retry.backoff_seconds,
    )
    scheduler = TaskScheduler(
        repository=repository,
        executor=executor,
        gate=ConcurrencyGate(settings.scheduler.max_concurrent_tasks),
        tick_interval_seconds=settings.scheduler.tick_interval_seconds,
        max_task_age=timedelta(seconds=settings.scheduler.max_task_age_seconds),
        cleanup_interval_seconds=settings.scheduler.cleanup_interval_seconds,
        terminal_task_ttl=timedelta(seconds=settings.scheduler.terminal_task_ttl_seconds),
        stats_log_interval_seconds=settings.scheduler.stats_log_interval_seconds,
    )
    return scheduler, closers


def close_when_idle(scheduler: TaskScheduler, closers: list[Callable[[], None]]) -> bool:
    """Close clients unless executions still use them. Returns whether they were closed."""

    in_flight = scheduler.stats().in_flight
    if in_flight:
        logger.warning(
            "Abandoning %s running task(s) at shutdown; their clients are left open",
            in_flight,
        )
        return False
    for close in closers:
        close()
    return True


def _format_counts(counts: dict[TaskStatus, int]) -> str:
    parts = " ".join(f"{status.value}={counts.get(status, 0)}" for status in TaskStatus)
    return f"Queue: {parts}"


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(db_path=settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
