"""Worker pool for concurrent transfers.

This module provides:
- WorkerPool: Bounded pool of threads advancing different records
- WorkerTask: A queued record to process
- PoolState: Lifecycle of the pool

Each record is processed by at most one thread at a time; a record
already queued or running is not queued again.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto

from backupferry.client.transfer.types import CancelCheck, TransferOutcome

logger = logging.getLogger(__name__)

ProcessFunc = Callable[[str, CancelCheck], "TransferOutcome | None"]


class PoolState(Enum):
    """State of the worker pool."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()


@dataclass
class WorkerTask:
    """A record queued for processing.

    Attributes:
        record_id: Record to advance.
        on_done: Callback with the outcome (None if the record was skipped).
    """

    record_id: str
    on_done: Callable[[TransferOutcome | None], None] | None = None
    cancel_requested: bool = field(default=False)

    def request_cancel(self) -> None:
        """Request cancellation of this task."""
        self.cancel_requested = True


class WorkerPool:
    """Pool of threads processing transfer records.

    Usage:
        pool = WorkerPool(worker.process, max_workers=2)
        pool.start()
        pool.submit(record.id, on_done=callback)
        pool.wait()
        pool.stop()
    """

    def __init__(self, process: ProcessFunc, max_workers: int = 2) -> None:
        """Initialize the worker pool.

        Args:
            process: Function processing one record id with a cancel check.
            max_workers: Maximum concurrent transfers.
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._process = process
        self._max_workers = max_workers

        self._pool_state = PoolState.STOPPED
        self._lock = threading.Lock()
        self._stop_event = threading.Event()

        self._task_queue: queue.Queue[WorkerTask | None] = queue.Queue()
        # Record ids queued or running
        self._pending: dict[str, WorkerTask] = {}
        self._workers: list[threading.Thread] = []

        self._completed_count = 0
        self._error_count = 0

    @property
    def state(self) -> PoolState:
        """Get current pool state."""
        return self._pool_state

    @property
    def pending_count(self) -> int:
        """Number of records queued or running."""
        with self._lock:
            return len(self._pending)

    @property
    def completed_count(self) -> int:
        """Number of tasks that ended without failure."""
        return self._completed_count

    @property
    def error_count(self) -> int:
        """Number of tasks that ended with a failure."""
        return self._error_count

    def start(self) -> None:
        """Start the worker threads."""
        with self._lock:
            if self._pool_state != PoolState.STOPPED:
                logger.warning("Worker pool already running")
                return

            self._pool_state = PoolState.RUNNING
            self._stop_event.clear()
            for i in range(self._max_workers):
                thread = threading.Thread(
                    target=self._worker_loop,
                    name=f"TransferPool-{i}",
                    daemon=True,
                )
                thread.start()
                self._workers.append(thread)

            logger.info(f"Worker pool started with {self._max_workers} workers")

    def stop(self, timeout: float = 30.0) -> None:
        """Stop the pool, cancelling running transfers between chunks.

        Args:
            timeout: Maximum time to wait for workers to finish.
        """
        with self._lock:
            if self._pool_state != PoolState.RUNNING:
                return

            self._pool_state = PoolState.STOPPING
            self._stop_event.set()
            logger.info("Worker pool stopping...")

            for task in self._pending.values():
                task.request_cancel()

            for _ in self._workers:
                self._task_queue.put(None)

        for worker in self._workers:
            worker.join(timeout=timeout / len(self._workers))

        with self._lock:
            self._pool_state = PoolState.STOPPED
            self._workers.clear()
            self._pending.clear()
            # Drop tasks that never started
            while not self._task_queue.empty():
                self._task_queue.get_nowait()
                self._task_queue.task_done()
            logger.info("Worker pool stopped")

    def submit(
        self,
        record_id: str,
        on_done: Callable[[TransferOutcome | None], None] | None = None,
    ) -> bool:
        """Queue a record for processing.

        Returns:
            True if queued, False if the pool is not running or the record
            is already queued or running.
        """
        with self._lock:
            if self._pool_state != PoolState.RUNNING:
                logger.warning("Cannot submit task: pool not running")
                return False
            if record_id in self._pending:
                logger.debug(f"Transfer {record_id} already queued")
                return False
            task = WorkerTask(record_id=record_id, on_done=on_done)
            self._pending[record_id] = task

        self._task_queue.put(task)
        logger.debug(f"Task submitted: {record_id}")
        return True

    def cancel(self, record_id: str) -> bool:
        """Request cancellation of a queued or running record.

        Returns:
            True if cancellation was requested.
        """
        with self._lock:
            task = self._pending.get(record_id)
            if task:
                task.request_cancel()
                logger.info(f"Cancellation requested for: {record_id}")
                return True
            return False

    def wait(self) -> None:
        """Block until every submitted task has been processed."""
        self._task_queue.join()

    def _worker_loop(self) -> None:
        """Main loop for worker threads."""
        while True:
            try:
                task = self._task_queue.get(timeout=1.0)
            except queue.Empty:
                if self._pool_state != PoolState.RUNNING:
                    break
                continue

            if task is None:
                # Poison pill - stop worker
                self._task_queue.task_done()
                break

            try:
                self._process_task(task)
            finally:
                self._task_queue.task_done()

    def _process_task(self, task: WorkerTask) -> None:
        """Process a single task; failures never leave the thread."""

        def cancel_check() -> bool:
            return task.cancel_requested or self._stop_event.is_set()

        outcome: TransferOutcome | None = None
        try:
            if cancel_check():
                return
            outcome = self._process(task.record_id, cancel_check)
            with self._lock:
                if outcome is not None and not outcome.ok and not outcome.cancelled:
                    self._error_count += 1
                else:
                    self._completed_count += 1
        except Exception:
            with self._lock:
                self._error_count += 1
            logger.exception(f"Task error: {task.record_id}")
        finally:
            with self._lock:
                self._pending.pop(task.record_id, None)

        if task.on_done:
            try:
                task.on_done(outcome)
            except Exception:
                logger.exception(f"Completion callback failed for {task.record_id}")
