"""Route tasks to the handler registered for their type."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from photo_jobs.queue.handlers.base import HandlerResult, TaskHandler
from photo_jobs.queue.models import ErrorKind, TaskType, TaskView
from photo_jobs.queue.payloads import PayloadError, parse_payload

logger = logging.getLogger(__name__)


class Dispatcher:
    """Maps task types to handlers supplied at construction."""

    def __init__(self, handlers: Mapping[TaskType | str, TaskHandler]) -> None:
        self._handlers: dict[str, TaskHandler] = {
            (key.value if isinstance(key, TaskType) else key): handler
            for key, handler in handlers.items()
        }

    @property
    def task_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    def dispatch(self, task: TaskView) -> HandlerResult:
        """Execute one attempt; unknown types and bad payloads become failures."""

        handler = self._handlers.get(task.task_type)
        if handler is None:
            logger.warning("No handler for task %s of type %s", task.task_id, task.task_type)
            return HandlerResult.failure(
                f"Unsupported task type: {task.task_type}",
                error_kind=ErrorKind.PROGRAMMER,
            )

        try:
            payload = parse_payload(task.task_type, task.payload)
        except PayloadError as error:
            logger.warning("Malformed payload for task %s: %s", task.task_id, error)
            return HandlerResult.failure(
                f"INVALID_REQUEST_DATA: {error}",
                error_kind=ErrorKind.PROGRAMMER,
            )

        return handler.execute(payload)
