"""In-process admission control for concurrently executing tasks."""

from __future__ import annotations

import threading


class ConcurrencyGate:
    """Bounded set of admitted task ids.

    Admission and release are atomic with respect to each other; a task id
    can hold at most one slot at a time.
    """

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._max_concurrent = max_concurrent
        self._admitted: set[str] = set()
        self._lock = threading.Lock()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def try_admit(self, task_id: str) -> bool:
        with self._lock:
            if task_id in self._admitted or len(self._admitted) >= self._max_concurrent:
                return False
            self._admitted.add(task_id)
            return True

    def release(self, task_id: str) -> None:
        # Releasing an id that holds no slot is a no-op.
        with self._lock:
            self._admitted.discard(task_id)

    def in_flight(self) -> int:
        with self._lock:
            return len(self._admitted)

    def free_capacity(self) -> int:
        with self._lock:
            return self._max_concurrent - len(self._admitted)

    def admitted_ids(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._admitted)
