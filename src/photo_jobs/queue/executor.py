"""Runs one attempt of one task from claim to persisted outcome."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from photo_jobs.queue.dispatcher import Dispatcher
from photo_jobs.queue.handlers.base import HandlerResult
from photo_jobs.queue.models import TaskView
from photo_jobs.queue.repository import TaskRepository
from photo_jobs.queue.retry_policy import DEFAULT_BACKOFF_SECONDS
from photo_jobs.queue.side_effects import SideEffectCoordinator
from photo_jobs.queue.state_machine import (
    InvalidTransitionError,
    apply_result,
    begin_attempt,
)
from photo_jobs.storage.common import utc_now

logger = logging.getLogger(__name__)


class TaskExecutor:
    """Claim, dispatch, classify, persist, then hand terminal tasks to side effects."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        dispatcher: Dispatcher,
        coordinator: SideEffectCoordinator,
        backoff_table: Sequence[float] = DEFAULT_BACKOFF_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.dispatcher = dispatcher
        self.coordinator = coordinator
        self.backoff_table = tuple(backoff_table)
        self.clock = clock

    def execute(self, task: TaskView) -> TaskView | None:
        """Run one attempt. Returns the persisted task, or ``None`` if skipped."""

        try:
            claim = begin_attempt(task, now=self.clock())
        except InvalidTransitionError as error:
            logger.info("Skipping task %s: %s", task.task_id, error)
            return None

        try:
            claimed = self.repository.apply_transition(claim)
        except SQLAlchemyError:
            logger.exception("Could not claim task %s", task.task_id)
            return None
        if not claimed:
            logger.info("Task %s was claimed by another execution, skipping", task.task_id)
            return None

        running = claim.task
        logger.info(
            "Task %s (%s) attempt %s/%s started",
            running.task_id,
            running.task_type,
            running.attempt_count,
            running.max_attempts,
        )

        try:
            result = self.dispatcher.dispatch(running)
        except Exception as error:  # noqa: BLE001
            logger.exception("Handler raised for task %s", running.task_id)
            result = HandlerResult.failure(str(error) or type(error).__name__)

        outcome = apply_result(
            running,
            result,
            now=self.clock(),
            backoff_table=self.backoff_table,
        )
        try:
            persisted = self.repository.apply_transition(outcome)
        except SQLAlchemyError:
            logger.exception(
                "Could not persist outcome of task %s; it stays in processing",
                running.task_id,
            )
            return None
        if not persisted:
            logger.warning(
                "Task %s changed state during execution, outcome dropped",
                running.task_id,
            )
            return None

        finished = outcome.task
        if outcome.event_type == "retry_scheduled":
            logger.info(
                "Task %s failed (%s), retry at %s",
                finished.task_id,
                finished.error_detail,
                finished.next_eligible_at.isoformat() if finished.next_eligible_at else "now",
            )
        elif finished.status.is_terminal:
            logger.info("Task %s finished as %s", finished.task_id, finished.status.value)

        if finished.status.is_terminal:
            self.coordinator.on_terminal(finished)
        return finished
