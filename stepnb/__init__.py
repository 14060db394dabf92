"""
stepnb: an nbformat v4 notebook core with step-wise cell execution.

This package provides:
- A validated in-memory notebook model (cells, outputs, edit buffers)
- Lossless nbformat v4 JSON load/save
- Undoable editing operations over a notebook and its session cursor
- An execution coordinator that runs cells one output at a time
"""

from stepnb.coordinator import CoordinatorState, ExecutionCoordinator
from stepnb.errors import (
    ExecutionFailure,
    InvalidOperation,
    InvariantViolation,
    MalformedDocument,
    NotebookError,
)
from stepnb.kernel import Delay, ExecutionResult, NotebookKernel, Runner
from stepnb.notebook import Cell, CellType, Notebook
from stepnb.outputs import (
    DisplayDataOutput,
    ErrorOutput,
    ExecuteResultOutput,
    MimeEntry,
    Output,
    StreamOutput,
)
from stepnb.session import Session
from stepnb.workspace import Workspace

__version__ = "0.1.0"
__all__ = [
    "Cell",
    "CellType",
    "CoordinatorState",
    "Delay",
    "DisplayDataOutput",
    "ErrorOutput",
    "ExecuteResultOutput",
    "ExecutionCoordinator",
    "ExecutionFailure",
    "ExecutionResult",
    "InvalidOperation",
    "InvariantViolation",
    "MalformedDocument",
    "MimeEntry",
    "Notebook",
    "NotebookError",
    "NotebookKernel",
    "Output",
    "Runner",
    "Session",
    "StreamOutput",
    "Workspace",
]
