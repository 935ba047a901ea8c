from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

import allure
import pytest
from doubles import FrozenClock, RecordingLedger, RecordingNotifier, ScriptedHandler
from sqlalchemy.exc import OperationalError

from photo_jobs.queue.dispatcher import Dispatcher
from photo_jobs.queue.error_messages import translate_error_code
from photo_jobs.queue.executor import TaskExecutor
from photo_jobs.queue.handlers.base import HandlerResult
from photo_jobs.queue.models import ErrorKind, TaskStatus, TaskView
from photo_jobs.queue.repository import TaskRepository
from photo_jobs.queue.side_effects import SideEffectCoordinator

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Task Executor"),
]


def _executor(
    repository: TaskRepository,
    handler: ScriptedHandler,
    *,
    ledger: RecordingLedger,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> TaskExecutor:
    return TaskExecutor(
        repository=repository,
        dispatcher=Dispatcher({"restore": handler}),
        coordinator=SideEffectCoordinator(
            repository=repository,
            ledger=ledger,
            notifier=notifier,
            clock=clock,
        ),
        clock=clock,
    )


def test_transient_failure_then_success_debits_once(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    ledger: RecordingLedger,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> None:
    handler = ScriptedHandler(
        HandlerResult.failure("SERVICE_UNAVAILABLE: upstream 502"),
        HandlerResult.ok("https://cdn.example.com/out/1.png"),
    )
    executor = _executor(repository, handler, ledger=ledger, notifier=notifier, clock=clock)
    task = submit()

    first = executor.execute(task)
    assert first is not None
    assert first.status == TaskStatus.PENDING_RETRY
    assert first.attempt_count == 1
    assert first.next_eligible_at == clock() + timedelta(seconds=1)
    assert ledger.debits == []
    assert notifier.sent == []

    clock.advance(1)
    second = executor.execute(first)
    assert second is not None
    assert second.status == TaskStatus.COMPLETED
    assert second.attempt_count == 2
    assert second.result_locator == "https://cdn.example.com/out/1.png"

    assert len(ledger.debits) == 1
    assert ledger.balances["user-1"] == 90.0
    assert [item["success"] for item in notifier.sent] == [True]
    stored = repository.get_task(task.task_id)
    assert stored is not None
    assert stored.charged_at is not None

    details = repository.get_task_details(task_id=task.task_id)
    assert details is not None
    assert [event.event_type for event in details.events] == [
        "enqueued",
        "claimed",
        "retry_scheduled",
        "claimed",
        "completed",
        "charged",
    ]


def test_policy_block_is_terminal_and_not_charged(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    ledger: RecordingLedger,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> None:
    handler = ScriptedHandler(HandlerResult.failure("CONTENT_SAFETY_VIOLATION"))
    executor = _executor(repository, handler, ledger=ledger, notifier=notifier, clock=clock)

    finished = executor.execute(submit(max_attempts=5))

    assert finished is not None
    assert finished.status == TaskStatus.BLOCKED
    assert finished.attempt_count == 1
    assert finished.error_kind == ErrorKind.POLICY_BLOCK
    assert finished.error_message == translate_error_code("CONTENT_SAFETY_VIOLATION")
    assert ledger.debits == []
    assert notifier.sent[0]["success"] is False
    assert notifier.sent[0]["message"] == finished.error_message


def test_exhausted_attempts_end_failed(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    ledger: RecordingLedger,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> None:
    handler = ScriptedHandler(*(HandlerResult.failure("API_TIMEOUT") for _ in range(3)))
    executor = _executor(repository, handler, ledger=ledger, notifier=notifier, clock=clock)
    task: TaskView | None = submit(max_attempts=3)

    delays = []
    while task is not None and task.status != TaskStatus.FAILED:
        task = executor.execute(task)
        assert task is not None
        if task.next_eligible_at is not None:
            delays.append((task.next_eligible_at - clock()).total_seconds())
            clock.advance(delays[-1])

    assert task is not None
    assert task.attempt_count == 3
    assert delays == [1.0, 5.0]
    assert len(handler.calls) == 3
    assert ledger.debits == []
    assert len(notifier.sent) == 1


def test_handler_exception_is_recorded_as_failure(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    ledger: RecordingLedger,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> None:
    handler = ScriptedHandler(ConnectionError("vendor reset connection"))
    executor = _executor(repository, handler, ledger=ledger, notifier=notifier, clock=clock)

    finished = executor.execute(submit())

    assert finished is not None
    assert finished.status == TaskStatus.PENDING_RETRY
    assert finished.error_detail == "vendor reset connection"


def test_task_claimed_elsewhere_is_skipped(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    ledger: RecordingLedger,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> None:
    handler = ScriptedHandler()
    executor = _executor(repository, handler, ledger=ledger, notifier=notifier, clock=clock)
    task = submit()
    assert executor.execute(task) is not None

    assert executor.execute(task) is None
    assert len(handler.calls) == 1


def test_store_failure_during_claim_skips_attempt(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    ledger: RecordingLedger,
    notifier: RecordingNotifier,
    clock: FrozenClock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    handler = ScriptedHandler()
    executor = _executor(repository, handler, ledger=ledger, notifier=notifier, clock=clock)
    task = submit()

    def _locked(*_: object, **__: object) -> bool:
        raise OperationalError("UPDATE tasks", {}, Exception("database is locked"))

    monkeypatch.setattr(repository, "apply_transition", _locked)

    assert executor.execute(task) is None
    assert handler.calls == []
