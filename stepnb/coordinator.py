"""
ExecutionCoordinator: runs notebook cells one output at a time.

The coordinator is a stepper, not a thread. The host calls ``step()`` once
per update cycle; each step pulls one value from the runner, converts it to an
output and appends it to the running cell. Between steps the host is free to
redraw. Stopping is cooperative: ``stop()`` asks the runner to unwind and the
next step acknowledges it.

States::

    IDLE --execute_cell/execute_all--> RUNNING(i)
    RUNNING(i) --runner exhausted--> RUNNING(next) (execute all) or IDLE
    RUNNING(i) --error--> IDLE
    RUNNING(i) --stop()--> CANCELLING --step()--> IDLE
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from stepnb.errors import ExecutionFailure, InvariantViolation
from stepnb.kernel import Delay, Runner
from stepnb.notebook import CellType, Notebook
from stepnb.outputs import ErrorOutput, ExecuteResultOutput, error_from_exception, output_from_object
from stepnb.session import Session

logger = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    """Execution state of the coordinator."""
    IDLE = "idle"
    RUNNING = "running"
    CANCELLING = "cancelling"


class ExecutionCoordinator:
    """
    Drives a Runner over the cells of one notebook.

    Args:
        notebook: Document whose cells are run
        session: Cursor state; ``session.running`` mirrors the running cell
        runner: Code-execution engine
        clock: Monotonic clock used for Delay markers
        sleep: Blocking sleep used by run_until_idle()
    """

    def __init__(
        self,
        notebook: Notebook,
        session: Session,
        runner: Runner,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.notebook = notebook
        self.session = session
        self.runner = runner
        self.state = CoordinatorState.IDLE
        self.execution_count = 0
        self.last_failure: Optional[ExecutionFailure] = None
        self._clock = clock
        self._sleep = sleep
        self._steps: Optional[Iterator[Any]] = None
        self._run_all = False
        self._clear_on_start = False
        self._resume_at = 0.0

    @property
    def running_index(self) -> int:
        return self.session.running

    @property
    def is_running(self) -> bool:
        return self.state != CoordinatorState.IDLE

    @property
    def needs_redraw(self) -> bool:
        """Polled by the host once per update cycle."""
        return self.is_running

    def _runnable(self, index: int) -> bool:
        if index < 0 or index >= len(self.notebook.cells):
            return False
        return self.notebook.cells[index].type == CellType.CODE

    def _next_runnable(self, start: int) -> Optional[int]:
        for index in range(max(0, start), len(self.notebook.cells)):
            if self._runnable(index):
                return index
        return None

    def execute_cell(self, index: int, clear: bool = False) -> bool:
        """
        Start running one cell.

        Args:
            index: Cell to run
            clear: Clear the cell's previous outputs first

        Returns:
            False if a run is active or the cell is not a code cell
        """
        if self.state != CoordinatorState.IDLE:
            logger.debug("Ignoring run of cell %d: cell %d is running", index, self.running_index)
            return False
        if not self._runnable(index):
            logger.debug("Ignoring run of cell %d: not a code cell", index)
            return False

        with self.session.writer(f"execute cell {index}"):
            self._run_all = False
            self._start(index, clear)
        return True

    def execute_all(self, start: int = 0, clear: bool = False) -> bool:
        """
        Start running every code cell from ``start`` in document order.

        The run stops at the first cell that fails.

        Returns:
            False if a run is active or there is no code cell to run
        """
        if self.state != CoordinatorState.IDLE:
            logger.debug("Ignoring run all: cell %d is running", self.running_index)
            return False
        index = self._next_runnable(start)
        if index is None:
            return False

        with self.session.writer("execute all"):
            self._run_all = True
            self._clear_on_start = clear
            self._start(index, clear)
        return True

    def _start(self, index: int, clear: bool):
        cell = self.notebook.get_cell(index)
        if clear:
            cell.clear_outputs()
        self.execution_count += 1
        cell.execution_count = self.execution_count
        self.session.running = index
        self.state = CoordinatorState.RUNNING
        self._resume_at = 0.0
        self.last_failure = None
        logger.debug("Running cell %d [%d]", index, self.execution_count)

        try:
            self._steps = iter(self.runner.run(cell.text))
        except Exception as exc:
            self._fail(index, exc)

    def stop(self) -> bool:
        """
        Ask the running cell to stop.

        Outputs already appended are kept. The stop is acknowledged by the
        next ``step()``.

        Returns:
            False if nothing is running
        """
        if self.state != CoordinatorState.RUNNING:
            return False
        self.state = CoordinatorState.CANCELLING
        stop = getattr(self.runner, "stop", None)
        if callable(stop):
            stop()
        logger.debug("Stop requested for cell %d", self.running_index)
        return True

    def step(self) -> bool:
        """
        Advance execution by one produced value.

        Returns:
            True while a run is still active
        """
        if self.state == CoordinatorState.IDLE:
            return False

        with self.session.writer(f"execute cell {self.running_index}"):
            if self.state == CoordinatorState.CANCELLING:
                logger.debug("Cell %d cancelled", self.running_index)
                self._finish()
                return False

            if self._clock() < self._resume_at:
                return True

            index = self.running_index
            try:
                value = next(self._steps)
                if isinstance(value, Delay):
                    self._resume_at = self._clock() + max(0.0, value.seconds)
                    return True
                output = output_from_object(value)
                if output is None:
                    return True
                self._append(index, output)
            except StopIteration:
                self._advance()
                return self.is_running
            except InvariantViolation:
                raise
            except Exception as exc:
                self._fail(index, exc)
                return False

            if isinstance(output, ErrorOutput):
                logger.debug("Cell %d reported %s", index, output.ename)
                self._finish()
                return False
            return True

    def run_until_idle(self, max_steps: Optional[int] = None) -> int:
        """
        Step until the run finishes, sleeping through Delay markers.

        Returns:
            Number of steps taken
        """
        steps = 0
        while self.is_running:
            if max_steps is not None and steps >= max_steps:
                break
            remaining = self._resume_at - self._clock()
            if self.state == CoordinatorState.RUNNING and remaining > 0:
                self._sleep(remaining)
            self.step()
            steps += 1
        return steps

    def _append(self, index: int, output):
        cell = self.notebook.get_cell(index)
        if isinstance(output, ExecuteResultOutput) and output.execution_count != cell.execution_count:
            output = output.model_copy(update={"execution_count": cell.execution_count})
        cell.outputs.append(output)

    def _fail(self, index: int, exc: Exception):
        self.last_failure = ExecutionFailure(index, exc)
        logger.debug("%s", self.last_failure)
        self._append(index, error_from_exception(exc))
        self._finish()

    def _advance(self):
        if self._run_all:
            index = self._next_runnable(self.running_index + 1)
            if index is not None:
                self._close_steps()
                self._start(index, self._clear_on_start)
                return
        self._finish()

    def _close_steps(self):
        close = getattr(self._steps, "close", None)
        if callable(close):
            close()
        self._steps = None

    def _finish(self):
        self._close_steps()
        self.session.running = -1
        self.state = CoordinatorState.IDLE
        self._run_all = False
        self._resume_at = 0.0
