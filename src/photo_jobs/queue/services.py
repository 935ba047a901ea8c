"""Use-case services for the task queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from photo_jobs.queue.models import TaskCreate, TaskType, TaskView
from photo_jobs.queue.payloads import parse_payload, payload_to_dict
from photo_jobs.queue.repository import TaskRepository
from photo_jobs.queue.side_effects import SideEffectCoordinator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubmitTask:
    """High-level command to submit a processing task."""

    task_type: str
    payload: dict[str, Any]
    user_id: str | None = None
    recipient_id: str | None = None
    photo_id: str | None = None
    cost: float = 0.0
    max_attempts: int | None = None


class TaskSubmissionService:
    """Validates submissions before they reach the queue."""

    def __init__(self, *, repository: TaskRepository, default_max_attempts: int = 3) -> None:
        self.repository = repository
        self.default_max_attempts = default_max_attempts

    def submit(self, command: SubmitTask) -> TaskView:
        typed = parse_payload(command.task_type, command.payload)
        if command.cost < 0:
            raise ValueError("Task cost must be >= 0.")
        max_attempts = command.max_attempts or self.default_max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")

        task = self.repository.create_task(
            TaskCreate(
                task_type=TaskType(command.task_type).value,
                payload=payload_to_dict(typed),
                cost=command.cost,
                max_attempts=max_attempts,
                user_id=command.user_id,
                recipient_id=command.recipient_id,
                photo_id=command.photo_id,
            ),
        )
        logger.info("Task %s submitted (%s, cost=%s)", task.task_id, task.task_type, task.cost)
        return task


class StaleTaskRecoveryService:
    """Resolves tasks abandoned in processing and runs side effects for those that ended."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        coordinator: SideEffectCoordinator,
    ) -> None:
        self.repository = repository
        self.coordinator = coordinator

    def recover(self, *, stale_after: timedelta, now: datetime | None = None) -> list[TaskView]:
        recovered = self.repository.recover_stale_processing(stale_after=stale_after, now=now)
        for task in recovered:
            logger.info("Recovered stale task %s as %s", task.task_id, task.status.value)
            if task.status.is_terminal:
                self.coordinator.on_terminal(task)
        return recovered
