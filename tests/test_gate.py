from __future__ import annotations

import threading

import allure
import pytest

from photo_jobs.queue.gate import ConcurrencyGate

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Concurrency Gate"),
]


def test_gate_rejects_beyond_capacity_and_duplicate_ids() -> None:
    gate = ConcurrencyGate(2)

    assert gate.try_admit("a") is True
    assert gate.try_admit("a") is False
    assert gate.try_admit("b") is True
    assert gate.try_admit("c") is False
    assert gate.in_flight() == 2
    assert gate.free_capacity() == 0
    assert gate.admitted_ids() == frozenset({"a", "b"})


def test_release_frees_slot_and_unknown_release_is_noop() -> None:
    gate = ConcurrencyGate(1)
    assert gate.try_admit("a")

    gate.release("missing")
    assert gate.in_flight() == 1

    gate.release("a")
    assert gate.in_flight() == 0
    assert gate.try_admit("b")


def test_gate_requires_positive_capacity() -> None:
    with pytest.raises(ValueError, match="max_concurrent"):
        ConcurrencyGate(0)


def test_concurrent_admission_never_exceeds_capacity() -> None:
    gate = ConcurrencyGate(3)
    start = threading.Event()
    admitted: list[str] = []
    admitted_lock = threading.Lock()
    peak = 0

    def _worker(worker_id: int) -> None:
        nonlocal peak
        start.wait(timeout=5)
        for round_no in range(200):
            task_id = f"w{worker_id}-{round_no}"
            if gate.try_admit(task_id):
                with admitted_lock:
                    admitted.append(task_id)
                    peak = max(peak, gate.in_flight())
                gate.release(task_id)

    threads = [threading.Thread(target=_worker, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    start.set()
    for thread in threads:
        thread.join(timeout=10)

    assert admitted
    assert peak <= 3
    assert gate.in_flight() == 0
