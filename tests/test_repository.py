from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta

import allure
import pytest
from doubles import BASE_TIME, FrozenClock

from photo_jobs.queue.handlers.base import HandlerResult
from photo_jobs.queue.models import (
    TaskNotFoundError,
    TaskStateError,
    TaskStatus,
    TaskView,
)
from photo_jobs.queue.repository import TaskRepository
from photo_jobs.queue.state_machine import apply_result, begin_attempt

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Task Repository"),
]

DAY = timedelta(hours=24)


def _run_to(
    repository: TaskRepository,
    task: TaskView,
    result: HandlerResult,
    *,
    clock: FrozenClock,
) -> TaskView:
    claim = begin_attempt(task, now=clock())
    assert repository.apply_transition(claim)
    outcome = apply_result(claim.task, result, now=clock())
    assert repository.apply_transition(outcome)
    return outcome.task


def test_create_task_starts_pending_with_enqueued_event(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
) -> None:
    task = submit(photo_id="photo-7")

    stored = repository.get_task(task.task_id)
    assert stored is not None
    assert stored.status == TaskStatus.PENDING
    assert stored.attempt_count == 0
    assert stored.photo_id == "photo-7"
    assert stored.created_at == BASE_TIME

    details = repository.get_task_details(task_id=task.task_id)
    assert details is not None
    assert [event.event_type for event in details.events] == ["enqueued"]


def test_select_eligible_orders_oldest_first_and_respects_limit(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    first = submit()
    clock.advance(1)
    second = submit()
    clock.advance(1)
    submit()

    selected = repository.select_eligible(now=clock(), max_age=DAY, limit=2)

    assert [task.task_id for task in selected] == [first.task_id, second.task_id]
    assert repository.select_eligible(now=clock(), max_age=DAY, limit=0) == []


def test_select_eligible_skips_expired_and_excluded_tasks(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    old = submit()
    clock.advance(DAY.total_seconds() + 1)
    fresh = submit()
    other = submit()

    selected = repository.select_eligible(
        now=clock(),
        max_age=DAY,
        limit=10,
        exclude_ids=[other.task_id],
    )

    ids = [task.task_id for task in selected]
    assert ids == [fresh.task_id]
    assert old.task_id not in ids


def test_select_eligible_waits_for_retry_time(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    task = submit()
    retrying = _run_to(repository, task, HandlerResult.failure("timeout"), clock=clock)
    assert retrying.status == TaskStatus.PENDING_RETRY
    assert retrying.next_eligible_at == clock() + timedelta(seconds=1)

    assert repository.select_eligible(now=clock(), max_age=DAY, limit=10) == []
    clock.advance(1)
    selected = repository.select_eligible(now=clock(), max_age=DAY, limit=10)
    assert [item.task_id for item in selected] == [task.task_id]


def test_select_eligible_ignores_processing_and_terminal(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    processing = submit()
    assert repository.apply_transition(begin_attempt(processing, now=clock()))
    _run_to(repository, submit(), HandlerResult.ok("https://x/1.png"), clock=clock)

    assert repository.select_eligible(now=clock(), max_age=DAY, limit=10) == []


def test_guarded_transition_rejects_stale_source_status(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    task = submit()
    claim = begin_attempt(task, now=clock())

    assert repository.apply_transition(claim) is True
    assert repository.apply_transition(claim) is False

    stored = repository.get_task(task.task_id)
    assert stored is not None
    assert stored.attempt_count == 1


def test_mark_charged_sets_marker_exactly_once(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    task = _run_to(repository, submit(), HandlerResult.ok("https://x/1.png"), clock=clock)

    assert repository.mark_charged(task_id=task.task_id, charged_at=clock(), reference_id="r")
    assert not repository.mark_charged(task_id=task.task_id, charged_at=clock(), reference_id="r")

    stored = repository.get_task(task.task_id)
    assert stored is not None
    assert stored.charged_at == clock()
    assert stored.debit_eligible is False


def test_mark_charged_refuses_unfinished_task(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    task = submit()
    assert not repository.mark_charged(task_id=task.task_id, charged_at=clock(), reference_id="r")


def test_resubmit_task_reopens_failed_task_without_charge(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    task = _run_to(
        repository,
        submit(max_attempts=1),
        HandlerResult.failure("timeout"),
        clock=clock,
    )
    assert task.status == TaskStatus.FAILED

    clock.advance(60)
    reopened = repository.resubmit_task(task_id=task.task_id, extra_attempts=2, now=clock())

    assert reopened.status == TaskStatus.PENDING
    assert reopened.max_attempts == 3
    assert reopened.charge_waived is True
    selected = repository.select_eligible(now=clock(), max_age=DAY, limit=10)
    assert [item.task_id for item in selected] == [task.task_id]

    completed = _run_to(repository, selected[0], HandlerResult.ok("https://x/1.png"), clock=clock)
    assert completed.debit_eligible is False
    assert not repository.mark_charged(task_id=task.task_id, charged_at=clock(), reference_id="r")


def test_resubmit_task_errors(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
) -> None:
    with pytest.raises(TaskNotFoundError):
        repository.resubmit_task(task_id="missing", extra_attempts=1)
    pending = submit()
    with pytest.raises(TaskStateError):
        repository.resubmit_task(task_id=pending.task_id, extra_attempts=1)


def test_recover_stale_processing_counts_interrupted_attempt(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    retryable = submit()
    last_chance = submit(max_attempts=1)
    for task in (retryable, last_chance):
        assert repository.apply_transition(begin_attempt(task, now=clock()))
    clock.advance(3600)
    fresh = submit()
    assert repository.apply_transition(begin_attempt(fresh, now=clock()))

    recovered = repository.recover_stale_processing(stale_after=timedelta(minutes=30), now=clock())

    statuses = {task.task_id: task.status for task in recovered}
    assert statuses == {
        retryable.task_id: TaskStatus.PENDING_RETRY,
        last_chance.task_id: TaskStatus.FAILED,
    }
    still_running = repository.get_task(fresh.task_id)
    assert still_running is not None
    assert still_running.status == TaskStatus.PROCESSING

    details = repository.get_task_details(task_id=retryable.task_id)
    assert details is not None
    assert details.events[-1].event_type == "recovered"


def test_cleanup_terminal_removes_only_old_terminal_tasks(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    done = _run_to(repository, submit(), HandlerResult.ok("https://x/1.png"), clock=clock)
    waiting = submit()
    clock.advance(DAY.total_seconds() + 60)
    recent = _run_to(repository, submit(), HandlerResult.ok("https://x/2.png"), clock=clock)

    removed = repository.cleanup_terminal(older_than=DAY, now=clock())

    assert removed == 1
    assert repository.get_task(done.task_id) is None
    assert repository.get_task_details(task_id=done.task_id) is None
    assert repository.get_task(waiting.task_id) is not None
    assert repository.get_task(recent.task_id) is not None


def test_count_by_status_reports_every_status(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    submit()
    _run_to(repository, submit(), HandlerResult.ok("https://x/1.png"), clock=clock)
    _run_to(
        repository,
        submit(),
        HandlerResult.failure("CONTENT_SAFETY_VIOLATION"),
        clock=clock,
    )

    counts = repository.count_by_status()

    assert counts[TaskStatus.PENDING] == 1
    assert counts[TaskStatus.COMPLETED] == 1
    assert counts[TaskStatus.BLOCKED] == 1
    assert counts[TaskStatus.FAILED] == 0
    assert set(counts) == set(TaskStatus)


def test_list_tasks_filters_by_status(
    repository: TaskRepository,
    submit: Callable[..., TaskView],
    clock: FrozenClock,
) -> None:
    pending = submit()
    _run_to(repository, submit(), HandlerResult.ok("https://x/1.png"), clock=clock)

    listed = repository.list_tasks(status=TaskStatus.PENDING)

    assert [task.task_id for task in listed] == [pending.task_id]
    assert len(repository.list_tasks()) == 2
