"""Handler interface implemented by external processing services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from photo_jobs.queue.models import ErrorKind
from photo_jobs.queue.payloads import TaskPayload


@dataclass(slots=True, frozen=True)
class HandlerResult:
    """Outcome of one handler call."""

    success: bool
    result_locator: str | None = None
    error_kind: ErrorKind | None = None
    error_detail: str | None = None

    @classmethod
    def ok(cls, result_locator: str) -> HandlerResult:
        return cls(success=True, result_locator=result_locator)

    @classmethod
    def failure(cls, detail: str, *, error_kind: ErrorKind | None = None) -> HandlerResult:
        return cls(success=False, error_kind=error_kind, error_detail=detail)


class TaskHandler(Protocol):
    """Protocol implemented by processing backends."""

    def execute(self, payload: TaskPayload) -> HandlerResult:
        """Run one attempt and report success with a result locator or an error."""
