"""CLI entrypoint for photo-jobs."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from photo_jobs import __version__
from photo_jobs.billing.controllers import (
    LedgerBalanceCommand,
    LedgerCliController,
    LedgerCreditCommand,
)
from photo_jobs.billing.ledger import LedgerError
from photo_jobs.logging_setup import configure_logging
from photo_jobs.queue.controllers import (
    CleanupCommand,
    InspectTaskCommand,
    ListTasksCommand,
    QueueStatsCommand,
    RecoverStaleCommand,
    ResubmitTaskCommand,
    SchedulerCliController,
    SchedulerRunCommand,
    SubmitTaskCommand,
    TaskCliController,
)
from photo_jobs.queue.models import TaskNotFoundError, TaskStateError, TaskStatus, TaskType

click.rich_click.USE_MARKDOWN = True
SCHEDULER_CONTROLLER = SchedulerCliController()
TASK_CONTROLLER = TaskCliController()
LEDGER_CONTROLLER = LedgerCliController()

DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="photo-jobs")
@click.option(
    "--log-level",
    envvar="PHOTO_JOBS_LOG_LEVEL",
    default="INFO",
    show_default=True,
    help="Root log level.",
)
def photo_jobs(log_level: str) -> None:
    """Photo processing task queue CLI."""

    try:
        configure_logging(log_level)
    except ValueError as error:
        raise click.BadParameter(str(error), param_hint="--log-level") from error


@photo_jobs.group()
def scheduler() -> None:
    """Scheduler loop commands."""


@scheduler.command("run")
@DB_PATH_OPTION
@click.option("--once", is_flag=True, help="Run a single tick and wait for its tasks.")
@click.option(
    "--echo",
    is_flag=True,
    help="Serve task types without a vendor endpoint with the local echo handler.",
)
def scheduler_run(db_path: Path | None, once: bool, echo: bool) -> None:
    """Run the scheduler until SIGINT/SIGTERM, or one tick with `--once`."""

    _emit_lines(
        _guarded(
            lambda: SCHEDULER_CONTROLLER.run(
                SchedulerRunCommand(db_path=db_path, once=once, echo=echo),
            ),
        ),
    )


@photo_jobs.group()
def tasks() -> None:
    """Task submission and operator commands."""


@tasks.command("submit")
@DB_PATH_OPTION
@click.option(
    "--type",
    "task_type",
    type=click.Choice([task_type.value for task_type in TaskType]),
    required=True,
    help="Task type.",
)
@click.option("--payload", "payload_json", required=True, help="Task payload as a JSON object.")
@click.option("--user-id", default=None, help="User whose balance is debited on success.")
@click.option("--recipient-id", default=None, help="Notification recipient (Telegram chat id).")
@click.option("--photo-id", default=None, help="Related photo record id.")
@click.option(
    "--cost",
    type=click.FloatRange(min=0),
    default=0.0,
    show_default=True,
    help="Amount debited on success.",
)
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Attempt budget; defaults to PHOTO_JOBS_DEFAULT_MAX_ATTEMPTS.",
)
def tasks_submit(  # noqa: PLR0913
    db_path: Path | None,
    task_type: str,
    payload_json: str,
    user_id: str | None,
    recipient_id: str | None,
    photo_id: str | None,
    cost: float,
    max_attempts: int | None,
) -> None:
    """Submit a task in `pending` state."""

    _emit_lines(
        _guarded(
            lambda: TASK_CONTROLLER.submit(
                SubmitTaskCommand(
                    db_path=db_path,
                    task_type=task_type,
                    payload_json=payload_json,
                    user_id=user_id,
                    recipient_id=recipient_id,
                    photo_id=photo_id,
                    cost=cost,
                    max_attempts=max_attempts,
                ),
            ),
        ),
    )


@tasks.command("list")
@DB_PATH_OPTION
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus]),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of tasks to print.",
)
def tasks_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent tasks, newest first."""

    _emit_lines(
        TASK_CONTROLLER.list_tasks(ListTasksCommand(db_path=db_path, status=status, limit=limit)),
    )


@tasks.command("inspect")
@DB_PATH_OPTION
@click.option("--task-id", required=True, help="Task id.")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Show one task with its event trail."""

    _emit_lines(TASK_CONTROLLER.inspect_task(InspectTaskCommand(db_path=db_path, task_id=task_id)))


@tasks.command("resubmit")
@DB_PATH_OPTION
@click.option("--task-id", required=True, help="Failed or blocked task id.")
@click.option(
    "--extra-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Fresh attempt budget; defaults to PHOTO_JOBS_DEFAULT_MAX_ATTEMPTS.",
)
def tasks_resubmit(db_path: Path | None, task_id: str, extra_attempts: int | None) -> None:
    """Move a failed/blocked task back to `pending`. The rerun is never charged."""

    _emit_lines(
        _guarded(
            lambda: TASK_CONTROLLER.resubmit_task(
                ResubmitTaskCommand(
                    db_path=db_path,
                    task_id=task_id,
                    extra_attempts=extra_attempts,
                ),
            ),
        ),
    )


@tasks.command("recover-stale")
@DB_PATH_OPTION
@click.option(
    "--older-than-minutes",
    type=click.IntRange(min=1),
    default=30,
    show_default=True,
    help="Processing tasks started before this many minutes ago are recovered.",
)
def tasks_recover_stale(db_path: Path | None, older_than_minutes: int) -> None:
    """Resolve tasks left in `processing` by a crashed scheduler."""

    _emit_lines(
        TASK_CONTROLLER.recover_stale(
            RecoverStaleCommand(db_path=db_path, older_than_minutes=older_than_minutes),
        ),
    )


@tasks.command("cleanup")
@DB_PATH_OPTION
@click.option(
    "--older-than-hours",
    type=click.IntRange(min=1),
    default=None,
    help="Defaults to PHOTO_JOBS_TERMINAL_TASK_TTL_SECONDS.",
)
def tasks_cleanup(db_path: Path | None, older_than_hours: int | None) -> None:
    """Delete old completed/failed/blocked tasks."""

    _emit_lines(
        TASK_CONTROLLER.cleanup(
            CleanupCommand(db_path=db_path, older_than_hours=older_than_hours),
        ),
    )


@tasks.command("stats")
@DB_PATH_OPTION
def tasks_stats(db_path: Path | None) -> None:
    """Show task counts by status."""

    _emit_lines(TASK_CONTROLLER.stats(QueueStatsCommand(db_path=db_path)))


@photo_jobs.group()
def ledger() -> None:
    """User balance commands."""


@ledger.command("credit")
@DB_PATH_OPTION
@click.option("--user-id", required=True, help="User id.")
@click.option("--amount", type=click.FloatRange(min=0, min_open=True), required=True)
@click.option("--description", default="Balance top-up", show_default=True)
def ledger_credit(db_path: Path | None, user_id: str, amount: float, description: str) -> None:
    """Top up a user's balance, creating the account if needed."""

    _emit_lines(
        LEDGER_CONTROLLER.credit(
            LedgerCreditCommand(
                db_path=db_path,
                user_id=user_id,
                amount=amount,
                description=description,
            ),
        ),
    )


@ledger.command("balance")
@DB_PATH_OPTION
@click.option("--user-id", required=True, help="User id.")
@click.option(
    "--entries",
    type=click.IntRange(min=0, max=500),
    default=10,
    show_default=True,
    help="How many recent ledger entries to print.",
)
def ledger_balance(db_path: Path | None, user_id: str, entries: int) -> None:
    """Show a user's balance and recent ledger entries."""

    _emit_lines(
        _guarded(
            lambda: LEDGER_CONTROLLER.balance(
                LedgerBalanceCommand(db_path=db_path, user_id=user_id, entries=entries),
            ),
        ),
    )


def _guarded(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except (ValueError, TaskNotFoundError, TaskStateError, LedgerError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    photo_jobs()
