"""Interval-driven scheduler loop with bounded concurrent execution."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from photo_jobs.queue.executor import TaskExecutor
from photo_jobs.queue.gate import ConcurrencyGate
from photo_jobs.queue.models import SchedulerStats, TaskView
from photo_jobs.queue.repository import TaskRepository
from photo_jobs.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL_SECONDS = 30.0
DEFAULT_MAX_TASK_AGE = timedelta(hours=24)
DEFAULT_CLEANUP_INTERVAL_SECONDS = 3600.0
DEFAULT_TERMINAL_TASK_TTL = timedelta(hours=24)
DEFAULT_STATS_LOG_INTERVAL_SECONDS = 60.0


class TaskScheduler:
    """Selects eligible tasks on every tick and runs each admitted one in its own thread.

    The loop never waits for executions. Ticks do not overlap: a tick that
    starts while another is still selecting returns immediately.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskRepository,
        executor: TaskExecutor,
        gate: ConcurrencyGate,
        tick_interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS,
        max_task_age: timedelta = DEFAULT_MAX_TASK_AGE,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        terminal_task_ttl: timedelta = DEFAULT_TERMINAL_TASK_TTL,
        stats_log_interval_seconds: float = DEFAULT_STATS_LOG_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.executor = executor
        self.gate = gate
        self.tick_interval_seconds = tick_interval_seconds
        self.max_task_age = max_task_age
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.terminal_task_ttl = terminal_task_ttl
        self.stats_log_interval_seconds = stats_log_interval_seconds
        self.clock = clock
        self.monotonic = monotonic
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: set[threading.Thread] = set()
        self._threads_lock = threading.Lock()
        self._last_cleanup_at: float | None = None
        self._last_stats_at: float | None = None

    def tick(self) -> int:
        """Run one selection pass. Returns the number of executions launched."""

        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous tick is still selecting, skipping")
            return 0
        try:
            free = self.gate.free_capacity()
            if free <= 0:
                logger.debug("All %s execution slots busy", self.gate.max_concurrent)
                return 0
            try:
                candidates = self.repository.select_eligible(
                    now=self.clock(),
                    max_age=self.max_task_age,
                    limit=free,
                    exclude_ids=self.gate.admitted_ids(),
                )
            except SQLAlchemyError:
                logger.exception("Selecting eligible tasks failed, skipping tick")
                return 0

            launched = 0
            for task in candidates:
                if not self.gate.try_admit(task.task_id):
                    logger.debug("Task %s not admitted", task.task_id)
                    continue
                self._launch(task)
                launched += 1
            if launched:
                logger.info("Launched %s task(s), %s in flight", launched, self.gate.in_flight())
            return launched
        finally:
            self._tick_lock.release()

    def run_once(self, *, timeout: float | None = None) -> int:
        """One tick, then wait for the executions it launched."""

        launched = self.tick()
        self.wait_idle(timeout=timeout)
        return launched

    def run_forever(self) -> None:
        """Tick on the interval until :meth:`stop` or SIGINT/SIGTERM."""

        logger.info(
            "Scheduler started: interval=%ss, max_concurrent=%s",
            self.tick_interval_seconds,
            self.gate.max_concurrent,
        )
        with self._signal_handlers():
            while not self._stop_event.is_set():
                self.tick()
                self._maybe_cleanup()
                self._maybe_log_stats()
                self._stop_event.wait(self.tick_interval_seconds)
        logger.info("Scheduler stopped with %s task(s) still in flight", self.gate.in_flight())

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Join running executions. Returns ``False`` if the timeout expired first."""

        deadline = None if timeout is None else self.monotonic() + timeout
        while True:
            with self._threads_lock:
                pending = list(self._threads)
            if not pending:
                return True
            for thread in pending:
                remaining = None if deadline is None else max(0.0, deadline - self.monotonic())
                thread.join(remaining)
                if deadline is not None and self.monotonic() >= deadline:
                    with self._threads_lock:
                        return not self._threads

    def stats(self) -> SchedulerStats:
        return SchedulerStats(
            is_processing_tick=self._tick_lock.locked(),
            in_flight=self.gate.in_flight(),
            max_concurrent=self.gate.max_concurrent,
            tick_interval_ms=int(self.tick_interval_seconds * 1000),
        )

    def cleanup(self) -> int:
        """Delete terminal tasks older than the configured TTL."""

        try:
            removed = self.repository.cleanup_terminal(
                older_than=self.terminal_task_ttl,
                now=self.clock(),
            )
        except SQLAlchemyError:
            logger.exception("Terminal task cleanup failed")
            return 0
        if removed:
            logger.info("Removed %s terminal task(s)", removed)
        return removed

    def _launch(self, task: TaskView) -> None:
        thread = threading.Thread(
            target=self._run_admitted,
            args=(task,),
            name=f"task-{task.task_id[:8]}",
            daemon=True,
        )
        try:
            with self._threads_lock:
                thread.start()
                self._threads.add(thread)
        except RuntimeError:
            logger.exception("Could not start thread for task %s", task.task_id)
            self.gate.release(task.task_id)

    def _run_admitted(self, task: TaskView) -> None:
        try:
            self.executor.execute(task)
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error executing task %s", task.task_id)
        finally:
            self.gate.release(task.task_id)
            with self._threads_lock:
                self._threads.discard(threading.current_thread())

    def _maybe_cleanup(self) -> None:
        now = self.monotonic()
        if self._last_cleanup_at is not None and (
            now - self._last_cleanup_at < self.cleanup_interval_seconds
        ):
            return
        self._last_cleanup_at = now
        self.cleanup()

    def _maybe_log_stats(self) -> None:
        now = self.monotonic()
        if self._last_stats_at is not None and (
            now - self._last_stats_at < self.stats_log_interval_seconds
        ):
            return
        self._last_stats_at = now
        logger.info("Scheduler stats: %s", self.stats().to_dict())

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, stopping scheduler", name)
            self.stop()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
