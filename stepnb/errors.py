"""
Error taxonomy for stepnb.
"""

from typing import Optional


class NotebookError(Exception):
    """Base class for all stepnb errors."""


class MalformedDocument(NotebookError, ValueError):
    """A serialized notebook violates the nbformat v4 structure."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class InvalidOperation(NotebookError):
    """An editing operation's precondition failed.

    Editing operations never raise this; it is the reason attached to an
    unchanged EditResult.
    """


class ExecutionFailure(NotebookError):
    """The runner reported an error while executing a cell."""

    def __init__(self, cell_index: int, error: BaseException):
        self.cell_index = cell_index
        self.error = error
        super().__init__(f"Cell {cell_index} failed: {type(error).__name__}: {error}")


class InvariantViolation(NotebookError, AssertionError):
    """Internal programming error. Fatal, never recovered."""
