"""
Session: cursor state for one open notebook.

The session is not part of the document. It records which cell is selected,
which cell is running (-1 when idle), whether the selected cell is in edit
mode, and who is currently writing to the document.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional

from stepnb.errors import InvariantViolation


@dataclass
class Session:
    """Selection, running cell and writer ownership for a notebook."""
    selected: int = 0
    running: int = -1
    edit_mode: bool = False
    # Set when cell text changed in a way that invalidates cached highlighting.
    force_syntax_refresh: bool = False
    _writer: Optional[str] = field(default=None, repr=False, compare=False)

    @property
    def busy(self) -> bool:
        """True while a cell is running; structural edits must wait."""
        return self.running >= 0

    @property
    def writer_name(self) -> Optional[str]:
        return self._writer

    @contextmanager
    def writer(self, name: str) -> Iterator["Session"]:
        """
        Claim exclusive write access to the document.

        Args:
            name: Label of the claiming operation, used in error messages

        Raises:
            InvariantViolation: If another writer already holds the document
        """
        if self._writer is not None:
            raise InvariantViolation(
                f"{name!r} cannot write: document is held by {self._writer!r}"
            )
        self._writer = name
        try:
            yield self
        finally:
            self._writer = None

    def clamp(self, cell_count: int):
        """Keep the selection inside [0, cell_count - 1] (0 when empty)."""
        self.selected = max(0, min(self.selected, cell_count - 1))

    def select(self, index: int, cell_count: int):
        self.selected = index
        self.clamp(cell_count)

    def select_next(self, cell_count: int):
        self.select(self.selected + 1, cell_count)

    def select_previous(self, cell_count: int):
        self.select(self.selected - 1, cell_count)

    def enter_edit_mode(self):
        self.edit_mode = True

    def enter_command_mode(self):
        self.edit_mode = False

    def consume_syntax_refresh(self) -> bool:
        """Return and reset the syntax refresh flag."""
        flag = self.force_syntax_refresh
        self.force_syntax_refresh = False
        return flag
