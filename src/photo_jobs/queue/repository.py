"""Persistent task store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, or_
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from photo_jobs.queue.models import (
    SELECTABLE_STATUSES,
    TERMINAL_STATUSES,
    ErrorKind,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskNotFoundError,
    TaskStateError,
    TaskStatus,
    TaskView,
)
from photo_jobs.queue.state_machine import Transition, recover_interrupted, resubmit
from photo_jobs.storage.alembic_runner import upgrade_head
from photo_jobs.storage.common import (
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from photo_jobs.storage.sqlmodel_models import TaskEvent, TaskRecord

DEFAULT_BUSY_TIMEOUT_MS = 5000


class TaskRepository:
    """Queue persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_task(self, payload: TaskCreate, *, now: datetime | None = None) -> TaskView:
        """Insert a pending task."""

        created_at = now or utc_now()
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = TaskRecord(
                task_id=task_id,
                task_type=payload.task_type,
                payload_json=json.dumps(payload.payload, ensure_ascii=False, sort_keys=True),
                status=TaskStatus.PENDING.value,
                attempt_count=0,
                max_attempts=payload.max_attempts,
                cost=payload.cost,
                user_id=payload.user_id,
                recipient_id=payload.recipient_id,
                photo_id=payload.photo_id,
                charge_waived=False,
                created_at=to_db_datetime(created_at),
                updated_at=to_db_datetime(created_at),
            )
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="enqueued",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={
                    "task_type": payload.task_type,
                    "max_attempts": payload.max_attempts,
                    "cost": payload.cost,
                },
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TaskRecord).where(TaskRecord.task_id == task_id),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def select_eligible(
        self,
        *,
        now: datetime,
        max_age: timedelta,
        limit: int,
        exclude_ids: Iterable[str] = (),
    ) -> list[TaskView]:
        """Oldest-first tasks that may start an attempt at ``now``."""

        if limit <= 0:
            return []
        now_db = to_db_datetime(now)
        statement = (
            select(TaskRecord)
            .where(
                col(TaskRecord.status).in_([status.value for status in SELECTABLE_STATUSES]),
                or_(
                    col(TaskRecord.status) == TaskStatus.PENDING.value,
                    col(TaskRecord.next_eligible_at).is_(None),
                    col(TaskRecord.next_eligible_at) <= now_db,
                ),
                col(TaskRecord.created_at) >= to_db_datetime(now - max_age),
                col(TaskRecord.attempt_count) < col(TaskRecord.max_attempts),
            )
            .order_by(col(TaskRecord.created_at).asc(), col(TaskRecord.task_id).asc())
            .limit(limit)
        )
        excluded = list(exclude_ids)
        if excluded:
            statement = statement.where(col(TaskRecord.task_id).not_in(excluded))
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def persist(
        self,
        task: TaskView,
        *,
        expected_status: TaskStatus | None = None,
        event_type: str | None = None,
        details: dict[str, object] | None = None,
    ) -> bool:
        """Write the full task record in one transaction.

        With ``expected_status`` the update only applies while the stored row
        still has that status; ``False`` means another writer got there first.
        """

        with Session(self.engine) as session:
            statement = sa_update(TaskRecord).where(col(TaskRecord.task_id) == task.task_id)
            if expected_status is not None:
                statement = statement.where(col(TaskRecord.status) == expected_status.value)
            result = session.exec(statement.values(**_to_row_values(task)))
            if result.rowcount != 1:
                session.rollback()
                return False
            if event_type is not None:
                self._add_event(
                    session=session,
                    task_id=task.task_id,
                    event_type=event_type,
                    status_from=expected_status,
                    status_to=task.status,
                    details=details or {},
                )
            session.commit()
            return True

    def apply_transition(self, transition: Transition) -> bool:
        """Persist a state-machine transition guarded by its source status."""

        return self.persist(
            transition.task,
            expected_status=transition.status_from,
            event_type=transition.event_type,
            details=transition.details,
        )

    def mark_charged(self, *, task_id: str, charged_at: datetime, reference_id: str) -> bool:
        """Set the persisted charged marker once; later calls return ``False``."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRecord)
                .where(
                    col(TaskRecord.task_id) == task_id,
                    col(TaskRecord.status) == TaskStatus.COMPLETED.value,
                    col(TaskRecord.charged_at).is_(None),
                    col(TaskRecord.charge_waived) == False,  # noqa: E712
                )
                .values(
                    charged_at=to_db_datetime(charged_at),
                    updated_at=to_db_datetime(charged_at),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="charged",
                status_from=TaskStatus.COMPLETED,
                status_to=TaskStatus.COMPLETED,
                details={"reference_id": reference_id},
            )
            session.commit()
            return True

    def resubmit_task(
        self,
        *,
        task_id: str,
        extra_attempts: int,
        now: datetime | None = None,
    ) -> TaskView:
        """Manual operator resubmission for failed/blocked tasks."""

        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        transition = resubmit(task, now=now or utc_now(), extra_attempts=extra_attempts)
        if not self.apply_transition(transition):
            raise TaskStateError(
                "Task state changed concurrently while resubmitting; "
                f"please retry command (task_id={task_id}).",
            )
        return transition.task

    def recover_stale_processing(
        self,
        *,
        stale_after: timedelta,
        now: datetime | None = None,
    ) -> list[TaskView]:
        """Resolve tasks stuck in processing since before ``now - stale_after``."""

        current = now or utc_now()
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRecord)
                .where(
                    col(TaskRecord.status) == TaskStatus.PROCESSING.value,
                    col(TaskRecord.started_at) <= to_db_datetime(current - stale_after),
                )
                .order_by(col(TaskRecord.started_at).asc()),
            ).all()
            stale = [_to_task_view(row) for row in rows]

        recovered: list[TaskView] = []
        for task in stale:
            transition = recover_interrupted(task, now=current)
            if self.persist(
                transition.task,
                expected_status=TaskStatus.PROCESSING,
                event_type="recovered",
                details=transition.details,
            ):
                recovered.append(transition.task)
        return recovered

    def cleanup_terminal(self, *, older_than: timedelta, now: datetime | None = None) -> int:
        """Delete terminal tasks not updated since ``now - older_than``."""

        cutoff = to_db_datetime((now or utc_now()) - older_than)
        terminal = [status.value for status in TERMINAL_STATUSES]
        with Session(self.engine) as session:
            task_ids = list(
                session.exec(
                    select(TaskRecord.task_id).where(
                        col(TaskRecord.status).in_(terminal),
                        col(TaskRecord.updated_at) < cutoff,
                    ),
                ).all(),
            )
            if not task_ids:
                return 0
            session.exec(
                sa_delete(TaskEvent).where(col(TaskEvent.task_id).in_(task_ids)),
            )
            result = session.exec(
                sa_delete(TaskRecord).where(
                    col(TaskRecord.task_id).in_(task_ids),
                    col(TaskRecord.status).in_(terminal),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def count_by_status(self) -> dict[TaskStatus, int]:
        counts = dict.fromkeys(TaskStatus, 0)
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRecord.status, func.count()).group_by(TaskRecord.status),
            ).all()
        for status, count in rows:
            counts[TaskStatus(status)] = int(count)
        return counts

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = (
                select(TaskRecord).order_by(col(TaskRecord.created_at).desc()).limit(limit)
            )
            if status is not None:
                statement = statement.where(TaskRecord.status == status.value)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task details with event stream."""

        with Session(self.engine) as session:
            task = session.exec(
                select(TaskRecord).where(TaskRecord.task_id == task_id),
            ).one_or_none()
            if task is None:
                return None

            event_rows = session.exec(
                select(TaskEvent)
                .where(TaskEvent.task_id == task_id)
                .order_by(col(TaskEvent.created_at).asc(), col(TaskEvent.id).asc()),
            ).all()
            view = _to_task_view(task)

        events: list[TaskEventView] = []
        for row in event_rows:
            details: dict[str, Any] = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=TaskStatus(row.status_from) if row.status_from else None,
                    status_to=TaskStatus(row.status_to) if row.status_to else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return TaskDetails(task=view, events=events)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True, default=str)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _optional_db(value: datetime | None) -> datetime | None:
    return to_db_datetime(value) if value is not None else None


def _to_row_values(task: TaskView) -> dict[str, Any]:
    return {
        "task_type": task.task_type,
        "payload_json": json.dumps(task.payload, ensure_ascii=False, sort_keys=True),
        "status": task.status.value,
        "attempt_count": task.attempt_count,
        "max_attempts": task.max_attempts,
        "cost": task.cost,
        "user_id": task.user_id,
        "recipient_id": task.recipient_id,
        "photo_id": task.photo_id,
        "next_eligible_at": _optional_db(task.next_eligible_at),
        "started_at": _optional_db(task.started_at),
        "completed_at": _optional_db(task.completed_at),
        "result_locator": task.result_locator,
        "error_kind": task.error_kind.value if task.error_kind is not None else None,
        "error_message": task.error_message,
        "error_detail": task.error_detail,
        "charged_at": _optional_db(task.charged_at),
        "charge_waived": task.charge_waived,
        "created_at": to_db_datetime(task.created_at),
        "updated_at": to_db_datetime(task.updated_at),
    }


def _to_task_view(row: TaskRecord) -> TaskView:
    payload = json.loads(row.payload_json) if row.payload_json else {}
    return TaskView(
        task_id=row.task_id,
        task_type=row.task_type,
        payload=payload if isinstance(payload, dict) else {},
        status=TaskStatus(row.status),
        attempt_count=row.attempt_count,
        max_attempts=row.max_attempts,
        cost=row.cost,
        user_id=row.user_id,
        recipient_id=row.recipient_id,
        photo_id=row.photo_id,
        next_eligible_at=optional_utc(row.next_eligible_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        result_locator=row.result_locator,
        error_kind=ErrorKind(row.error_kind) if row.error_kind is not None else None,
        error_message=row.error_message,
        error_detail=row.error_detail,
        charged_at=optional_utc(row.charged_at),
        charge_waived=bool(row.charge_waived),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
