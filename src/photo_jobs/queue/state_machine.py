"""Pure task state transitions.

Every function here takes a task snapshot and returns the next snapshot plus
the audit event describing the change. Nothing in this module touches the
store, the clock or the network, so the executor and the operator commands
share one definition of which transitions are legal.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from photo_jobs.queue.error_messages import friendly_error_message, policy_block_message
from photo_jobs.queue.handlers.base import HandlerResult
from photo_jobs.queue.models import (
    SELECTABLE_STATUSES,
    ErrorKind,
    TaskStateError,
    TaskStatus,
    TaskView,
)
from photo_jobs.queue.retry_policy import (
    DEFAULT_BACKOFF_SECONDS,
    RETRY_POLICY_VERSION,
    RetryAction,
    classify_error,
    decide_retry,
)


class InvalidTransitionError(TaskStateError):
    """Raised when a transition is requested from a status that does not allow it."""


@dataclass(slots=True, frozen=True)
class Transition:
    """Next task snapshot with the event that records it."""

    task: TaskView
    status_from: TaskStatus
    event_type: str
    details: dict[str, object] = field(default_factory=dict)

    @property
    def status_to(self) -> TaskStatus:
        return self.task.status


def is_eligible(task: TaskView, *, now: datetime) -> bool:
    if task.status not in SELECTABLE_STATUSES:
        return False
    if task.attempt_count >= task.max_attempts:
        return False
    if task.status == TaskStatus.PENDING_RETRY:
        return task.next_eligible_at is None or task.next_eligible_at <= now
    return True


def begin_attempt(task: TaskView, *, now: datetime) -> Transition:
    """Move a selectable task into processing and count the attempt."""

    if not is_eligible(task, now=now):
        raise InvalidTransitionError(
            f"Task {task.task_id} is not eligible for processing "
            f"(status={task.status.value}, attempt={task.attempt_count}/{task.max_attempts}).",
        )
    started = task.evolve(
        status=TaskStatus.PROCESSING,
        attempt_count=task.attempt_count + 1,
        started_at=now,
        next_eligible_at=None,
        updated_at=now,
    )
    return Transition(
        task=started,
        status_from=task.status,
        event_type="claimed",
        details={"attempt": started.attempt_count, "max_attempts": started.max_attempts},
    )


def apply_result(
    task: TaskView,
    result: HandlerResult,
    *,
    now: datetime,
    backoff_table: Sequence[float] = DEFAULT_BACKOFF_SECONDS,
) -> Transition:
    """Resolve a processing task from its handler result."""

    _require_processing(task)
    if result.success:
        completed = task.evolve(
            status=TaskStatus.COMPLETED,
            result_locator=result.result_locator,
            completed_at=now,
            updated_at=now,
            error_kind=None,
            error_message=None,
            error_detail=None,
        )
        return Transition(
            task=completed,
            status_from=TaskStatus.PROCESSING,
            event_type="completed",
            details={"result_locator": result.result_locator, "attempt": task.attempt_count},
        )

    detail = result.error_detail or "Handler reported failure without details."
    classification = classify_error(detail, result.error_kind)
    decision = decide_retry(
        attempt_count=task.attempt_count,
        max_attempts=task.max_attempts,
        error_kind=classification.error_kind,
        backoff_table=backoff_table,
    )
    details: dict[str, object] = {
        "attempt": task.attempt_count,
        "error_kind": classification.error_kind.value,
        "reason_code": decision.reason_code,
        "matched_rule": classification.matched_rule,
        "matched_pattern": classification.matched_pattern,
        "error_detail": detail,
        "policy_version": RETRY_POLICY_VERSION,
    }
    failed_fields = {
        "error_kind": classification.error_kind,
        "error_message": (
            policy_block_message(classification.matched_pattern)
            if classification.error_kind == ErrorKind.POLICY_BLOCK
            else friendly_error_message(detail)
        ),
        "error_detail": detail,
        "updated_at": now,
    }

    if decision.action == RetryAction.RETRY:
        delay = decision.delay_seconds or 0.0
        next_eligible_at = now + timedelta(seconds=delay)
        details["delay_seconds"] = delay
        details["next_eligible_at"] = next_eligible_at.isoformat()
        return Transition(
            task=task.evolve(
                status=TaskStatus.PENDING_RETRY,
                next_eligible_at=next_eligible_at,
                **failed_fields,
            ),
            status_from=TaskStatus.PROCESSING,
            event_type="retry_scheduled",
            details=details,
        )

    terminal_status = (
        TaskStatus.BLOCKED if decision.action == RetryAction.BLOCK else TaskStatus.FAILED
    )
    return Transition(
        task=task.evolve(status=terminal_status, completed_at=now, **failed_fields),
        status_from=TaskStatus.PROCESSING,
        event_type=terminal_status.value,
        details=details,
    )


def recover_interrupted(task: TaskView, *, now: datetime) -> Transition:
    """Resolve a task left in processing by a crashed or killed process.

    An interrupted attempt still counts; if budget remains the task is
    eligible again immediately.
    """

    return apply_result(
        task,
        HandlerResult.failure("Processing was interrupted before a result was recorded."),
        now=now,
        backoff_table=(0.0,),
    )


def resubmit(task: TaskView, *, now: datetime, extra_attempts: int) -> Transition:
    """Operator resubmission of a terminal failure; the rerun is never charged."""

    if task.status not in {TaskStatus.FAILED, TaskStatus.BLOCKED}:
        raise InvalidTransitionError(
            f"Only failed/blocked tasks can be resubmitted, got {task.status.value}.",
        )
    if extra_attempts < 1:
        raise ValueError("extra_attempts must be >= 1")
    reopened = task.evolve(
        status=TaskStatus.PENDING,
        max_attempts=task.attempt_count + extra_attempts,
        charge_waived=True,
        next_eligible_at=None,
        completed_at=None,
        created_at=now,
        updated_at=now,
    )
    return Transition(
        task=reopened,
        status_from=task.status,
        event_type="resubmitted",
        details={"max_attempts": reopened.max_attempts, "charge_waived": True},
    )


def _require_processing(task: TaskView) -> None:
    if task.status != TaskStatus.PROCESSING:
        raise InvalidTransitionError(
            f"Task {task.task_id} must be processing to record a result, "
            f"got {task.status.value}.",
        )


__all__ = [
    "InvalidTransitionError",
    "Transition",
    "apply_result",
    "begin_attempt",
    "is_eligible",
    "recover_interrupted",
    "resubmit",
]
