# services/task_runner.py
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from services.progress_tracker import CANCELLED_LABEL, DONE_LABEL, ProgressReporter
from tasks.base_task import BaseTask

logger = logging.getLogger(__name__)


class RunnerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    CANCEL_REQUESTED = "CANCEL_REQUESTED"


@dataclass(frozen=True)
class TaskFailure:
    task_name: str
    position: int
    step_id: Optional[int]
    error: str


class TaskRunner:
    """
    Runs an ordered list of tasks on a single background thread.

    Tasks that have no steps or are already finished are skipped. Progress is
    reported as (label, 1-based position, number of tasks, percent) after
    every step, followed by a final "Done" event. Cancellation is cooperative:
    it is observed before and after each step, never in the middle of one.
    A task whose step raises is recorded in `failures` and the chain moves on
    to the next task.
    """

    def __init__(self, tasks: Sequence[BaseTask], reporter: Optional[ProgressReporter] = None):
        self._tasks: Tuple[BaseTask, ...] = tuple(tasks)
        self._reporter = reporter
        self._worker: Optional[threading.Thread] = None
        self._cancel_event = threading.Event()
        self._lock = threading.Lock()
        self.failures: List[TaskFailure] = []

    @property
    def tasks(self) -> Tuple[BaseTask, ...]:
        return self._tasks

    @property
    def state(self) -> RunnerState:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                return RunnerState.IDLE
            if self._cancel_event.is_set():
                return RunnerState.CANCEL_REQUESTED
            return RunnerState.RUNNING

    def is_running(self) -> bool:
        return self.state != RunnerState.IDLE

    # ------------------------------------------------------------
    # Control
    # ------------------------------------------------------------
    def start(self) -> None:
        # At most one worker: wait for the previous run and reset its state
        self.finalize()
        self.failures = []

        total = len(self._tasks)
        index = self._next_runnable(0)
        if index is None:
            logger.info("Nothing to run, every task is empty or finished")
            self._report(DONE_LABEL, total, total, 100)
            return

        with self._lock:
            self._worker = threading.Thread(
                target=self._run, args=(index,), name="task-runner", daemon=True
            )
            self._worker.start()

    def cancel(self) -> bool:
        """Request cancellation of the active run. Returns False when idle."""
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                self._cancel_event.set()
                logger.info("Cancellation requested")
                return True
        return False

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to `timeout` seconds; True once no worker is running."""
        with self._lock:
            worker = self._worker
        if worker is not None:
            worker.join(timeout)
            return not worker.is_alive()
        return True

    def finalize(self) -> None:
        """Wait for the worker to exit and reset. Call before shutdown."""
        with self._lock:
            worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join()
        with self._lock:
            self._worker = None
            self._cancel_event.clear()

    # ------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------
    def _run(self, index: Optional[int]) -> None:
        total = len(self._tasks)
        while index is not None:
            if not self._run_task(self._tasks[index], index + 1, total):
                return
            index = self._next_runnable(index + 1)

        logger.info("Task chain completed")
        self._report(DONE_LABEL, total, total, 100)

    def _run_task(self, task: BaseTask, position: int, total: int) -> bool:
        """Run every step of one task. Returns False when the run was cancelled."""
        try:
            steps = task.num_steps()
        except Exception as e:
            self._record_failure(task, position, None, e)
            return True

        logger.info(f"Starting '{task.name}' ({position}/{total}), {steps} steps")
        percent = 0
        for step_id in range(steps):
            if self._cancel_event.is_set():
                self._acknowledge_cancel(position, total, percent)
                return False

            try:
                task.do_step(step_id, self._cancel_event)
            except Exception as e:
                self._record_failure(task, position, step_id, e)
                if self._cancel_event.is_set():
                    self._acknowledge_cancel(position, total, percent)
                    return False
                return True

            percent = 100 * (step_id + 1) // steps
            if self._cancel_event.is_set():
                self._acknowledge_cancel(position, total, percent)
                return False
            self._report(task.name, position, total, percent)

        return True

    def _next_runnable(self, index: int) -> Optional[int]:
        while index < len(self._tasks):
            task = self._tasks[index]
            try:
                if task.num_steps() > 0 and not task.finished():
                    return index
                logger.info(f"Skipping '{task.name}': nothing left to do")
            except Exception as e:
                self._record_failure(task, index + 1, None, e)
            index += 1
        return None

    def _acknowledge_cancel(self, position: int, total: int, percent: int) -> None:
        logger.info(f"Task chain cancelled at task {position}/{total} ({percent}%)")
        self._report(CANCELLED_LABEL, position, total, percent)
        self._cancel_event.clear()

    def _record_failure(self, task: BaseTask, position: int, step_id: Optional[int], error: Exception) -> None:
        logger.error(
            f"Task '{task.name}' failed at step {step_id}: {error}; continuing with the next task",
            exc_info=True,
        )
        self.failures.append(TaskFailure(task.name, position, step_id, str(error)))

    def _report(self, label: str, current_index: int, total_count: int, percent: int) -> None:
        if self._reporter is None:
            return
        try:
            self._reporter.report(label, current_index, total_count, percent)
        except Exception as e:
            logger.warning(f"Progress reporter raised: {e}", exc_info=True)
