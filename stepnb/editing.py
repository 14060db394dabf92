"""
Editing operations over a notebook and its session cursor.

Every operation takes ``(notebook, session, ...)``, mutates both in place and
returns an EditResult. A failed precondition returns an unchanged result with
a reason instead of raising; the notebook and session are then untouched.

A changed result carries the undo label and a snapshot of the cell list from
before the mutation, so a host can record exactly one undo entry per
operation. The new cell list is assembled first and committed in a single
assignment.
"""

import re
from dataclasses import dataclass
from typing import Optional

from stepnb.errors import InvalidOperation
from stepnb.notebook import Cell, CellType, Notebook
from stepnb.session import Session

HEADER_PREFIX = re.compile(r"^#{1,5}[ \t]*")
MAX_HEADER_LEVEL = 5


@dataclass
class EditResult:
    """Outcome of an editing operation."""
    changed: bool
    label: str
    reason: Optional[str] = None
    before: Optional[list[Cell]] = None

    def __bool__(self) -> bool:
        return self.changed

    @property
    def error(self) -> Optional[InvalidOperation]:
        """The failed precondition as an InvalidOperation, if any."""
        if self.changed or self.reason is None:
            return None
        return InvalidOperation(f"{self.label}: {self.reason}")


def _unchanged(label: str, reason: str) -> EditResult:
    return EditResult(changed=False, label=label, reason=reason)


def _commit(notebook: Notebook, session: Session, label: str,
            cells: list[Cell], selected: int) -> EditResult:
    before = notebook.snapshot()
    notebook.cells = cells
    session.select(selected, len(cells))
    return EditResult(changed=True, label=label, before=before)


def _selected_cell(notebook: Notebook, session: Session) -> Optional[Cell]:
    if not notebook.cells:
        return None
    session.clamp(len(notebook.cells))
    return notebook.cells[session.selected]


# =============================================================================
# Structural operations
# =============================================================================

def insert_cell(notebook: Notebook, session: Session, index: int,
                cell_type: CellType = CellType.CODE) -> EditResult:
    """
    Insert a new empty cell at ``index``, select it and enter edit mode.

    Cells at ``index`` and after shift down by one. The index is clamped to
    ``[0, len(cells)]``.
    """
    label = "Add Cell"
    with session.writer(label):
        index = max(0, min(index, len(notebook.cells)))
        cells = list(notebook.cells)
        cells.insert(index, Cell(type=CellType(cell_type)))
        result = _commit(notebook, session, label, cells, index)
        session.enter_edit_mode()
        return result


def add_cell_above(notebook: Notebook, session: Session,
                   cell_type: CellType = CellType.CODE) -> EditResult:
    """Insert a new cell above the selection."""
    index = session.selected if notebook.cells else 0
    result = insert_cell(notebook, session, index, cell_type)
    result.label = "Add Cell Above"
    return result


def add_cell_below(notebook: Notebook, session: Session,
                   cell_type: CellType = CellType.CODE) -> EditResult:
    """Insert a new cell below the selection."""
    index = session.selected + 1 if notebook.cells else 0
    result = insert_cell(notebook, session, index, cell_type)
    result.label = "Add Cell Below"
    return result


def delete_cell(notebook: Notebook, session: Session) -> EditResult:
    """Delete the selected cell; the selection moves to the cell above."""
    label = "Delete Cell"
    with session.writer(label):
        if not notebook.cells:
            return _unchanged(label, "notebook has no cells")
        index = _clamped_selection(notebook, session)
        cells = list(notebook.cells)
        del cells[index]
        return _commit(notebook, session, label, cells, max(0, index - 1))


def move_cell_up(notebook: Notebook, session: Session) -> EditResult:
    """Swap the selected cell with the one above it."""
    label = "Move Cell Up"
    with session.writer(label):
        if not notebook.cells:
            return _unchanged(label, "notebook has no cells")
        index = _clamped_selection(notebook, session)
        if index == 0:
            return _unchanged(label, "cell is already first")
        cells = list(notebook.cells)
        cell = cells.pop(index)
        cells.insert(index - 1, cell)
        return _commit(notebook, session, label, cells, index - 1)


def move_cell_down(notebook: Notebook, session: Session) -> EditResult:
    """Swap the selected cell with the one below it."""
    label = "Move Cell Down"
    with session.writer(label):
        if not notebook.cells:
            return _unchanged(label, "notebook has no cells")
        index = _clamped_selection(notebook, session)
        if index == len(notebook.cells) - 1:
            return _unchanged(label, "cell is already last")
        cells = list(notebook.cells)
        cell = cells.pop(index)
        cells.insert(index + 1, cell)
        return _commit(notebook, session, label, cells, index + 1)


def split_cell(notebook: Notebook, session: Session, offset: int) -> EditResult:
    """
    Split the selected cell at a caret offset into its text.

    Text before the caret stays in the cell, minus one trailing newline. Text
    from the caret onward becomes a new cell of the same type directly below,
    which is selected. Outputs stay with the first cell.

    Args:
        notebook: Notebook to edit
        session: Session cursor
        offset: Caret position in the cell's edit text
    """
    label = "Split Cell"
    with session.writer(label):
        cell = _selected_cell(notebook, session)
        if cell is None:
            return _unchanged(label, "notebook has no cells")
        text = cell.edit_buffer
        if not text:
            return _unchanged(label, "cell is empty")
        if offset < 0 or offset > len(text):
            return _unchanged(label, f"offset {offset} outside 0-{len(text)}")

        first, second = text[:offset], text[offset:]
        if first.endswith("\n"):
            first = first[:-1]

        index = session.selected
        head = cell.model_copy(deep=True)
        head.cancel_edit()
        head.set_text(first)
        tail = Cell.from_text(second, type=cell.type)

        cells = list(notebook.cells)
        cells[index] = head
        cells.insert(index + 1, tail)
        return _commit(notebook, session, label, cells, index + 1)


def _merge(notebook: Notebook, session: Session, label: str,
           upper: int, selected: int) -> EditResult:
    top, bottom = notebook.cells[upper], notebook.cells[upper + 1]
    merged = top.model_copy(deep=True)
    merged.cancel_edit()
    merged.set_text(top.edit_buffer + "\n" + bottom.edit_buffer)

    cells = list(notebook.cells)
    cells[upper] = merged
    del cells[upper + 1]
    result = _commit(notebook, session, label, cells, selected)
    session.force_syntax_refresh = True
    return result


def merge_cell_below(notebook: Notebook, session: Session) -> EditResult:
    """Append the cell below to the selected cell, joined by a newline."""
    label = "Merge Cell Below"
    with session.writer(label):
        if not notebook.cells:
            return _unchanged(label, "notebook has no cells")
        index = _clamped_selection(notebook, session)
        if index == len(notebook.cells) - 1:
            return _unchanged(label, "cell is last")
        return _merge(notebook, session, label, index, index)


def merge_cell_above(notebook: Notebook, session: Session) -> EditResult:
    """Append the selected cell to the cell above, joined by a newline."""
    label = "Merge Cell Above"
    with session.writer(label):
        if not notebook.cells:
            return _unchanged(label, "notebook has no cells")
        index = _clamped_selection(notebook, session)
        if index == 0:
            return _unchanged(label, "cell is first")
        return _merge(notebook, session, label, index - 1, index - 1)


def _clamped_selection(notebook: Notebook, session: Session) -> int:
    session.clamp(len(notebook.cells))
    return session.selected


# =============================================================================
# Cell content operations
# =============================================================================

def retype_cell(notebook: Notebook, session: Session, cell_type: CellType,
                clear_outputs: bool = False) -> EditResult:
    """
    Change the selected cell's type.

    Only the type tag changes. Outputs are kept unless ``clear_outputs`` is
    set. Only code cells hold outputs, so retyping a cell with outputs to
    markdown or raw needs ``clear_outputs=True``. The execution count is
    dropped when leaving code.
    """
    label = "Change Cell Type"
    cell_type = CellType(cell_type)
    with session.writer(label):
        cell = _selected_cell(notebook, session)
        if cell is None:
            return _unchanged(label, "notebook has no cells")
        if cell.type == cell_type:
            return _unchanged(label, f"cell is already {cell_type.value}")
        if cell_type != CellType.CODE and cell.outputs and not clear_outputs:
            return _unchanged(label, f"{cell_type.value} cells cannot hold outputs")

        update = {"type": cell_type}
        if clear_outputs:
            update["outputs"] = []
        if cell_type != CellType.CODE or clear_outputs:
            update["execution_count"] = None
        retyped = cell.model_copy(update=update, deep=True)

        cells = list(notebook.cells)
        cells[session.selected] = retyped
        return _commit(notebook, session, label, cells, session.selected)


def set_header_level(notebook: Notebook, session: Session, level: int) -> EditResult:
    """
    Make the first line of the selected markdown cell a header of ``level``.

    Any existing run of 1-5 leading hashes and the spaces after it is
    replaced by ``level`` hashes and a single space.
    """
    label = "Set Header Level"
    with session.writer(label):
        cell = _selected_cell(notebook, session)
        if cell is None:
            return _unchanged(label, "notebook has no cells")
        if cell.type != CellType.MARKDOWN:
            return _unchanged(label, "only markdown cells have headers")
        if not 1 <= level <= MAX_HEADER_LEVEL:
            return _unchanged(label, f"level must be 1-{MAX_HEADER_LEVEL}")
        if not cell.source:
            return _unchanged(label, "cell is empty")

        first_line = HEADER_PREFIX.sub("", cell.source[0])
        source = ["#" * level + " " + first_line] + cell.source[1:]
        if source == cell.source:
            return _unchanged(label, f"first line is already a level {level} header")

        updated = cell.model_copy(update={"source": source}, deep=True)
        updated.cancel_edit()
        cells = list(notebook.cells)
        cells[session.selected] = updated
        return _commit(notebook, session, label, cells, session.selected)


def set_cell_source(notebook: Notebook, session: Session, text: str) -> EditResult:
    """Replace the selected cell's source with ``text`` (an edit commit)."""
    label = "Edit Cell"
    with session.writer(label):
        cell = _selected_cell(notebook, session)
        if cell is None:
            return _unchanged(label, "notebook has no cells")
        if text == cell.text:
            cell.cancel_edit()
            return _unchanged(label, "no changes")

        updated = cell.model_copy(deep=True)
        updated.cancel_edit()
        updated.set_text(text)
        cells = list(notebook.cells)
        cells[session.selected] = updated
        return _commit(notebook, session, label, cells, session.selected)


def clear_cell_output(notebook: Notebook, session: Session) -> EditResult:
    """Clear the selected cell's outputs and execution count."""
    label = "Clear Output"
    with session.writer(label):
        cell = _selected_cell(notebook, session)
        if cell is None:
            return _unchanged(label, "notebook has no cells")
        if not cell.outputs and cell.execution_count is None:
            return _unchanged(label, "no outputs to clear")

        cleared = cell.model_copy(deep=True)
        cleared.clear_outputs()
        cells = list(notebook.cells)
        cells[session.selected] = cleared
        return _commit(notebook, session, label, cells, session.selected)


def clear_all_outputs(notebook: Notebook, session: Session) -> EditResult:
    """Clear outputs and execution counts of every cell."""
    label = "Clear All Output"
    with session.writer(label):
        if not any(c.outputs or c.execution_count is not None for c in notebook.cells):
            return _unchanged(label, "no outputs to clear")

        cells = []
        for cell in notebook.cells:
            cleared = cell.model_copy(deep=True)
            cleared.clear_outputs()
            cells.append(cleared)
        return _commit(notebook, session, label, cells, session.selected)
