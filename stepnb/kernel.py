"""
NotebookKernel: persistent IPython shell that runs a cell step by step.

A cell is split into its top-level statements and each one is run through
the shell with ``run_cell``. Each call to ``next()`` on the iterator returned
by ``run()`` executes statements until one produces output, then yields those
outputs one by one. Between statements the kernel checks its stop flag, so a
stop request takes effect at the next statement boundary.

Stream writes, rich displays and ``sleep()`` markers all land in one sink in
the order the code produced them.
"""

import ast
import io
import logging
import re
from contextlib import contextmanager, redirect_stderr, redirect_stdout
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Protocol

from IPython.core.displayhook import DisplayHook
from IPython.core.displaypub import DisplayPublisher
from IPython.core.interactiveshell import InteractiveShell
from IPython.display import publish_display_data
from traitlets import Type

from stepnb.outputs import (
    DisplayDataOutput,
    ErrorOutput,
    ExecuteResultOutput,
    StreamOutput,
    bundle_to_entries,
    entries_to_bundle,
    error_from_exception,
    output_from_object,
    stream,
)

logger = logging.getLogger(__name__)

CELL_FILENAME = "<cell>"

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


class Runner(Protocol):
    """The code-execution engine driven by the ExecutionCoordinator."""

    def run(self, source: str) -> Iterator[Any]:
        """Start running source; the iterator yields produced values lazily."""
        ...

    def stop(self) -> None:
        """Ask the running code to stop at its next checkpoint."""
        ...

    def reset(self) -> None:
        """Drop all state kept between runs."""
        ...


@dataclass(frozen=True)
class Delay:
    """Yielded by a runner to pause the coordinator for a number of seconds."""
    seconds: float


@dataclass
class ExecutionResult:
    """Result of executing a whole cell in one go."""
    success: bool
    outputs: list = field(default_factory=list)
    execution_count: int = 0
    error: Optional[str] = None


class _OutputSink:
    """Outputs and Delay markers in production order."""

    def __init__(self):
        self.items: list = []

    def write(self, name: str, text: str):
        if not text:
            return
        last = self.items[-1] if self.items else None
        # consecutive writes to one stream form one output
        if isinstance(last, StreamOutput) and last.name == name:
            self.items[-1] = stream(name, last.content + text)
        else:
            self.items.append(stream(name, text))

    def display(self, data: dict, metadata: Optional[dict] = None):
        self.items.append(DisplayDataOutput(
            data=bundle_to_entries(data),
            metadata=dict(metadata or {}),
        ))

    def delay(self, seconds: float):
        self.items.append(Delay(seconds))

    def drain(self) -> list:
        items, self.items = self.items, []
        return items


class _SinkStream(io.TextIOBase):
    """Text stream that writes into an output sink."""

    def __init__(self, sink: _OutputSink, stream_name: str):
        super().__init__()
        self._sink = sink
        self.stream_name = stream_name

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        self._sink.write(self.stream_name, text)
        return len(text)


class _SinkDisplayPublisher(DisplayPublisher):
    """Sends display() calls to the running cell's sink instead of stdout."""

    sink: Optional[_OutputSink] = None

    def publish(self, data, metadata=None, *args, **kwargs):
        if self.sink is None:
            return super().publish(data, metadata, *args, **kwargs)
        self.sink.display(data, metadata)

    def clear_output(self, wait=False):
        # Outputs already handed to the coordinator belong to the cell.
        if self.sink is None:
            super().clear_output(wait)


class _QuietDisplayHook(DisplayHook):
    """
    Display hook that keeps IPython's result bookkeeping but prints nothing.

    History (``_``, ``Out``) and the trailing-semicolon rule are handled by
    the base class; the kernel reads the value from ``ExecutionResult.result``.
    """

    def write_output_prompt(self):
        pass

    def write_format_data(self, format_dict, md_dict=None):
        pass


class _KernelShell(InteractiveShell):
    """InteractiveShell whose displays and tracebacks are collected, not printed."""

    displayhook_class = Type(_QuietDisplayHook)
    display_pub_class = Type(_SinkDisplayPublisher)

    _traceback_lines: tuple = ()

    def _showtraceback(self, etype, evalue, stb):
        self._traceback_lines = tuple(
            _ANSI_ESCAPE.sub("", line).rstrip()
            for chunk in stb
            for line in chunk.split("\n")
        )

    def pop_traceback(self) -> list[str]:
        """Return the last formatted traceback and forget it."""
        lines = list(self._traceback_lines)
        self._traceback_lines = ()
        while lines and not lines[-1]:
            lines.pop()
        return lines


def split_statements(source: str) -> list[str]:
    """
    Split Python source into one chunk per top-level statement.

    Statements sharing a line stay in one chunk. Comments and blank lines
    belong to the statement after them.

    Raises:
        SyntaxError: If the source does not parse
    """
    nodes = ast.parse(source, filename=CELL_FILENAME).body
    lines = source.split("\n")
    chunks = []
    start = 0
    for node in nodes:
        if node.end_lineno <= start:
            continue
        chunks.append("\n".join(lines[start:node.end_lineno]))
        start = node.end_lineno
    return chunks


class NotebookKernel:
    """
    Persistent IPython kernel that maintains execution state.

    This kernel wraps IPython's InteractiveShell to provide:
    - Persistent namespace across cell executions
    - Statement-by-statement execution with cooperative stop
    - Output capture (stdout, stderr, rich display, final expression)
      in the order the code produced it

    Two helpers are placed in the user namespace: ``show(obj)`` displays a
    value in the running cell's output, and ``sleep(seconds)`` pauses the
    cell at that point without blocking the host.

    The shell is a process-wide singleton, so no other InteractiveShell may
    have been created before the first kernel.
    """

    def __init__(self):
        """Initialize the kernel with a fresh IPython shell."""
        self.ip = _KernelShell.instance()
        self.execution_count = 0
        self._stop_requested = False
        self._sink = _OutputSink()
        self._setup_namespace()

    def _setup_namespace(self):
        """Set up the initial namespace with the runtime helpers."""
        self.ip.push(
            {"__notebook__": True, "show": self.show, "sleep": self.sleep},
            interactive=False,
        )

    @staticmethod
    def show(obj: Any):
        """Display a value in the running cell's output."""
        output = output_from_object(obj)
        if output is None:
            return
        if isinstance(output, (DisplayDataOutput, ExecuteResultOutput)):
            publish_display_data(
                data=entries_to_bundle(output.data),
                metadata=output.metadata,
            )
        elif isinstance(output, ErrorOutput):
            publish_display_data(data={"text/plain": f"{output.ename}: {output.evalue}"})
        else:
            publish_display_data(data={"text/plain": output.content})

    def sleep(self, seconds: float):
        """Pause the running cell for ``seconds`` once its earlier outputs are shown."""
        self._sink.delay(seconds)

    def stop(self):
        """Request the running cell to stop before its next statement."""
        self._stop_requested = True

    @contextmanager
    def _capturing(self):
        publisher = self.ip.display_pub
        publisher.sink = self._sink
        try:
            with redirect_stdout(_SinkStream(self._sink, "stdout")), \
                    redirect_stderr(_SinkStream(self._sink, "stderr")):
                yield
        finally:
            publisher.sink = None

    def _error_output(self, error: BaseException) -> ErrorOutput:
        lines = self.ip.pop_traceback()
        if not lines:
            return error_from_exception(error)
        return ErrorOutput(ename=type(error).__name__, evalue=str(error), traceback=lines)

    def _result_output(self, value: Any) -> ExecuteResultOutput:
        data, metadata = self.ip.display_formatter.format(value)
        return ExecuteResultOutput(
            execution_count=self.execution_count,
            data=bundle_to_entries(data),
            metadata=dict(metadata or {}),
        )

    def run(self, source: str) -> Iterator[Any]:
        """
        Run a cell, yielding outputs as statements produce them.

        Yields StreamOutput, DisplayDataOutput and ExecuteResultOutput values,
        Delay markers for ``sleep()`` calls, and at most one ErrorOutput,
        after which the iterator ends.

        Args:
            source: Python source of the cell
        """
        self.execution_count += 1
        self._stop_requested = False
        self._sink.drain()
        self.ip.pop_traceback()

        try:
            # Turns %magics and !shell lines into plain Python first.
            transformed = self.ip.transform_cell(source)
            chunks = split_statements(transformed)
        except SyntaxError as exc:
            yield error_from_exception(exc)
            return

        self.ip.history_manager.store_inputs(self.ip.execution_count, transformed, source)
        try:
            for position, chunk in enumerate(chunks):
                if self._stop_requested:
                    logger.debug("Stop requested before statement %d", position)
                    return

                last = position == len(chunks) - 1
                with self._capturing():
                    result = self.ip.run_cell(chunk, silent=not last)

                yield from self._sink.drain()

                error = result.error_before_exec or result.error_in_exec
                if error is not None:
                    yield self._error_output(error)
                    return

                if last and result.result is not None:
                    yield self._result_output(result.result)
        finally:
            self.ip.execution_count += 1

    def execute(self, source: str) -> ExecutionResult:
        """
        Run a whole cell without stepping.

        Args:
            source: Python code to execute

        Returns:
            ExecutionResult with outputs and status
        """
        outputs = []
        error = None
        for item in self.run(source):
            if isinstance(item, Delay):
                continue
            outputs.append(item)
            if isinstance(item, ErrorOutput):
                error = f"{item.ename}: {item.evalue}"

        return ExecutionResult(
            success=error is None,
            outputs=outputs,
            execution_count=self.execution_count,
            error=error,
        )

    def reset(self):
        """Reset the kernel to a clean state."""
        self.ip.reset()
        self.execution_count = 0
        self._stop_requested = False
        self._sink.drain()
        self._setup_namespace()

    def get_variable(self, name: str) -> Any:
        """Get a variable from the namespace."""
        return self.ip.user_ns.get(name)

    def set_variable(self, name: str, value: Any):
        """Set a variable in the namespace."""
        self.ip.user_ns[name] = value

    def get_defined_names(self) -> list[str]:
        """Get list of user-defined names in namespace."""
        return [
            k for k in self.ip.user_ns.keys()
            if not k.startswith("_") and k not in self.ip.user_ns_hidden
        ]
