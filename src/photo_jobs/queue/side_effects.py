"""Debit and notification side effects of terminal task states."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from photo_jobs.billing.ledger import BalanceLedger, LedgerError
from photo_jobs.notifications.base import Notifier
from photo_jobs.queue.models import TaskStatus, TaskView
from photo_jobs.queue.repository import TaskRepository
from photo_jobs.storage.common import utc_now

logger = logging.getLogger(__name__)


def debit_reference(task_id: str) -> str:
    return f"task:{task_id}"


class SideEffectCoordinator:
    """Runs after a terminal state has been persisted.

    Failures here are logged and never change the task's status.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        ledger: BalanceLedger,
        notifier: Notifier,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.ledger = ledger
        self.notifier = notifier
        self.clock = clock

    def on_terminal(self, task: TaskView) -> None:
        if task.status == TaskStatus.COMPLETED:
            self._charge(task)
            self._notify(task, success=True)
        elif task.status in {TaskStatus.FAILED, TaskStatus.BLOCKED}:
            self._notify(task, success=False)
        else:
            logger.debug("No side effects for task %s in %s", task.task_id, task.status.value)

    def _charge(self, task: TaskView) -> None:
        if not task.debit_eligible:
            return
        if task.user_id is None:
            logger.warning("Task %s has cost %s but no user to charge", task.task_id, task.cost)
            return

        reference_id = debit_reference(task.task_id)
        try:
            self.ledger.debit(
                task.user_id,
                task.cost,
                reference_id=reference_id,
                description=f"Background processing {task.task_type}",
            )
        except LedgerError as error:
            logger.warning("Debit for task %s failed: %s", task.task_id, error)
            return
        except SQLAlchemyError:
            logger.exception("Ledger store error while charging task %s", task.task_id)
            return
        logger.info("Charged %s to user %s for task %s", task.cost, task.user_id, task.task_id)

        try:
            marked = self.repository.mark_charged(
                task_id=task.task_id,
                charged_at=self.clock(),
                reference_id=reference_id,
            )
        except SQLAlchemyError:
            logger.exception("Could not record charge marker for task %s", task.task_id)
            return
        if not marked:
            logger.warning("Charge marker for task %s was already set", task.task_id)

    def _notify(self, task: TaskView, *, success: bool) -> None:
        if task.recipient_id is None:
            logger.debug("Task %s has no recipient, skipping notification", task.task_id)
            return
        try:
            delivered = self.notifier.notify(
                recipient_id=task.recipient_id,
                task_type=task.task_type,
                result_locator=task.result_locator if success else None,
                success=success,
                message=None if success else task.error_message,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Notifier raised for task %s", task.task_id)
            return
        if not delivered:
            logger.warning("Notification for task %s was not delivered", task.task_id)
