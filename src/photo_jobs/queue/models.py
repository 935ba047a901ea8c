"""Domain models for the background task queue."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    PENDING_RETRY = "pending_retry"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.BLOCKED})
SELECTABLE_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.PENDING_RETRY})


class TaskType(str, Enum):
    """Closed set of work kinds; each one has exactly one handler."""

    RESTORE = "restore"
    STYLIZE = "stylize"
    ERA_STYLE = "era_style"
    POET_STYLE = "poet_style"
    GENERATE = "generate"


class ErrorKind(str, Enum):
    """Normalized failure classes used by the retry policy."""

    TRANSIENT = "transient"
    POLICY_BLOCK = "policy_block"
    PROGRAMMER = "programmer"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for submitting a task."""

    task_type: str
    payload: dict[str, Any]
    cost: float = 0.0
    max_attempts: int = 3
    user_id: str | None = None
    recipient_id: str | None = None
    photo_id: str | None = None
    task_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Full task record as read from, and written back to, the store."""

    task_id: str
    task_type: str
    payload: dict[str, Any]
    status: TaskStatus
    attempt_count: int
    max_attempts: int
    cost: float
    user_id: str | None
    recipient_id: str | None
    photo_id: str | None
    next_eligible_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    result_locator: str | None
    error_kind: ErrorKind | None
    error_message: str | None
    error_detail: str | None
    charged_at: datetime | None
    charge_waived: bool
    created_at: datetime
    updated_at: datetime

    @property
    def debit_eligible(self) -> bool:
        """Whether a successful completion of this task should be charged."""

        return (
            self.status == TaskStatus.COMPLETED
            and self.charged_at is None
            and not self.charge_waived
            and self.cost > 0
        )

    def evolve(self, **changes: Any) -> TaskView:
        return replace(self, **changes)


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream."""

    task: TaskView
    events: list[TaskEventView]


@dataclass(slots=True)
class SchedulerStats:
    """Read-only snapshot of scheduler occupancy for monitoring."""

    is_processing_tick: bool
    in_flight: int
    max_concurrent: int
    tick_interval_ms: int

    def to_dict(self) -> dict[str, object]:
        return {
            "isProcessingTick": self.is_processing_tick,
            "inFlight": self.in_flight,
            "maxConcurrent": self.max_concurrent,
            "tickIntervalMs": self.tick_interval_ms,
        }


class TaskNotFoundError(RuntimeError):
    """Raised when an operator mutation targets an unknown task id."""


class TaskStateError(RuntimeError):
    """Raised when an operator mutation is not allowed from the current status."""
