"""
Notebook: in-memory document model for nbformat v4 notebooks.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from stepnb.config import load_settings
from stepnb.errors import InvariantViolation
from stepnb.outputs import Output, split_lines


class CellType(str, Enum):
    """Type of notebook cell."""
    MARKDOWN = "markdown"
    CODE = "code"
    RAW = "raw"


class Cell(BaseModel):
    """
    A single notebook cell.

    ``source`` is the persisted form: a list of lines with their line endings.
    While a cell is being edited interactively the text lives in an edit
    buffer, a single string that is written back to ``source`` by
    ``commit_edit()``.
    """
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    type: CellType = CellType.CODE
    source: list[str] = Field(default_factory=list)
    execution_count: Optional[int] = None
    outputs: list[Output] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    attachments: Optional[dict[str, Any]] = None
    id: Optional[str] = None

    _edit_buffer: Optional[str] = PrivateAttr(default=None)

    @model_validator(mode="after")
    def _check_type_fields(self) -> "Cell":
        if self.type != CellType.CODE and self.outputs:
            raise ValueError(f"{self.type.value} cells cannot carry outputs")
        if self.type != CellType.CODE and self.execution_count is not None:
            raise ValueError(f"{self.type.value} cells have no execution count")
        return self

    @classmethod
    def from_text(cls, text: str = "", type: CellType = CellType.CODE, **kwargs) -> "Cell":
        """Create a cell from a single source string."""
        return cls(type=type, source=split_lines(text), **kwargs)

    @property
    def text(self) -> str:
        """The cell source as one string."""
        return "".join(self.source)

    # Edit buffer

    @property
    def is_editing(self) -> bool:
        return self._edit_buffer is not None

    @property
    def edit_buffer(self) -> str:
        """Current edit text; the committed source when no edit is open."""
        if self._edit_buffer is None:
            return self.text
        return self._edit_buffer

    @edit_buffer.setter
    def edit_buffer(self, value: str):
        self._edit_buffer = value

    def begin_edit(self) -> str:
        """Open an edit, loading the buffer from the source."""
        self._edit_buffer = self.text
        return self._edit_buffer

    def commit_edit(self) -> bool:
        """
        Write the edit buffer back to the source and close the edit.

        Returns:
            True if the source changed
        """
        if self._edit_buffer is None:
            return False
        new_source = split_lines(self._edit_buffer)
        self._edit_buffer = None
        if new_source == self.source:
            return False
        self.source = new_source
        return True

    def cancel_edit(self):
        """Drop the edit buffer without touching the source."""
        self._edit_buffer = None

    def set_text(self, text: str):
        """Replace the source, keeping any open edit buffer in sync."""
        self.source = split_lines(text)
        if self._edit_buffer is not None:
            self._edit_buffer = text

    def clear_outputs(self):
        """Remove all outputs and reset the execution count."""
        self.outputs = []
        self.execution_count = None


class Notebook(BaseModel):
    """
    An nbformat v4 notebook.

    The order of ``cells`` is the document order.
    """
    model_config = ConfigDict(extra="forbid")

    nbformat: int = 4
    nbformat_minor: int = 2
    metadata: dict[str, Any] = Field(default_factory=dict)
    cells: list[Cell] = Field(default_factory=list)

    @classmethod
    def new(cls, nbformat_minor: Optional[int] = None) -> "Notebook":
        """Create a new empty notebook."""
        if nbformat_minor is None:
            nbformat_minor = load_settings().nbformat_minor
        return cls(nbformat_minor=nbformat_minor)

    @classmethod
    def new_with_code_cell(cls, nbformat_minor: Optional[int] = None) -> "Notebook":
        """Create a new notebook holding one empty code cell."""
        nb = cls.new(nbformat_minor)
        nb.cells.append(Cell(type=CellType.CODE))
        return nb

    def get_cell(self, index: int) -> Cell:
        """
        Get a cell by index.

        Raises:
            InvariantViolation: If index is out of range
        """
        if index < 0 or index >= len(self.cells):
            raise InvariantViolation(
                f"Cell index {index} out of range (0-{len(self.cells) - 1})"
            )
        return self.cells[index]

    def clear_outputs(self) -> int:
        """
        Clear outputs of every cell.

        Returns:
            Number of cells that had outputs or an execution count
        """
        cleared = 0
        for cell in self.cells:
            if cell.outputs or cell.execution_count is not None:
                cleared += 1
            cell.clear_outputs()
        return cleared

    def snapshot(self) -> list[Cell]:
        """Deep copy of the cell list."""
        return [cell.model_copy(deep=True) for cell in self.cells]

    def to_dict(self) -> dict:
        """Convert to an nbformat v4 dictionary."""
        from stepnb import codec
        return codec.encode(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Notebook":
        """Create from an nbformat v4 dictionary."""
        from stepnb import codec
        return codec.decode(data)

    def save(self, path: Path, validate: Optional[bool] = None):
        """
        Save notebook to an .ipynb file.

        Args:
            path: Path to save to
            validate: Check the nbformat schema first (default from settings)
        """
        from stepnb import codec
        codec.save(self, path, validate=validate)

    @classmethod
    def load(cls, path: Path) -> "Notebook":
        """Load notebook from an .ipynb file."""
        from stepnb import codec
        return codec.load(path)
