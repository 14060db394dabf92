"""Pytest fixtures shared across all test modules."""

import pytest

from stepnb import Cell, CellType, Notebook, NotebookKernel, Session


class ScriptedRunner:
    """Runner that yields a fixed script of values for each source string."""

    def __init__(self, scripts=None, default=()):
        self.scripts = dict(scripts or {})
        self.default = list(default)
        self.sources = []
        self.stop_calls = 0
        self.closed = 0

    @staticmethod
    def raising(exc: BaseException) -> BaseException:
        """Mark an exception so run() raises it instead of yielding it."""
        exc._raise = True
        return exc

    def run(self, source):
        self.sources.append(source)
        items = self.scripts.get(source, self.default)
        try:
            for item in items:
                if isinstance(item, BaseException) and getattr(item, "_raise", False):
                    raise item
                yield item
        finally:
            self.closed += 1

    def stop(self):
        self.stop_calls += 1

    def reset(self):
        self.sources.clear()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


@pytest.fixture
def session():
    return Session()


@pytest.fixture
def three_cells():
    """Notebook with code "a", markdown "b", code "c"."""
    nb = Notebook.new()
    nb.cells = [
        Cell.from_text("a", type=CellType.CODE),
        Cell.from_text("b", type=CellType.MARKDOWN),
        Cell.from_text("c", type=CellType.CODE),
    ]
    return nb


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kernel():
    """Fresh IPython kernel; the shell is a process-wide singleton."""
    k = NotebookKernel()
    k.reset()
    yield k
    k.reset()


@pytest.fixture
def scripted_runner():
    """The ScriptedRunner class; call it with scripts to build a runner."""
    return ScriptedRunner
