"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from doubles import RESTORE_PAYLOAD, FrozenClock, RecordingLedger, RecordingNotifier

from photo_jobs.queue.models import TaskCreate, TaskView
from photo_jobs.queue.repository import TaskRepository


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[TaskRepository]:
    repo = TaskRepository(tmp_path / "queue.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def ledger() -> RecordingLedger:
    return RecordingLedger(balances={"user-1": 100.0})


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def submit(repository: TaskRepository, clock: FrozenClock) -> Callable[..., TaskView]:
    """Insert a pending restore task created at the current frozen time."""

    def _submit(**overrides: Any) -> TaskView:
        values: dict[str, Any] = {
            "task_type": "restore",
            "payload": dict(RESTORE_PAYLOAD),
            "cost": 10.0,
            "max_attempts": 3,
            "user_id": "user-1",
            "recipient_id": "chat-1",
        }
        values.update(overrides)
        return repository.create_task(TaskCreate(**values), now=clock())

    return _submit
