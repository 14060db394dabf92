"""
Workspace: the open-document lifecycle.

A workspace holds at most one open notebook together with its file path,
session cursor and dirty flag. Switching documents always flushes unsaved
changes first, and nothing is loaded or saved while a cell is running.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from stepnb import codec
from stepnb.errors import InvalidOperation
from stepnb.notebook import Notebook
from stepnb.session import Session

logger = logging.getLogger(__name__)


class Workspace:
    """
    Owns the currently open notebook.

    Args:
        validate: Schema-check every save (default from settings)
    """

    def __init__(self, validate: Optional[bool] = None):
        self.notebook: Optional[Notebook] = None
        self.path: Optional[Path] = None
        self.session = Session()
        self.dirty = False
        self._validate = validate
        self._mtime = 0.0

    @property
    def is_open(self) -> bool:
        return self.notebook is not None

    @property
    def name(self) -> Optional[str]:
        return self.path.stem if self.path is not None else None

    def _require_open(self) -> Notebook:
        if self.notebook is None:
            raise InvalidOperation("no notebook is open")
        return self.notebook

    def _refresh_mtime(self):
        self._mtime = os.path.getmtime(self.path)

    def _reset_session(self):
        self.session.running = -1
        self.session.enter_command_mode()
        self.session.force_syntax_refresh = True
        self.session.select(0, len(self.notebook.cells))

    def _load(self, path: Path):
        with self.session.writer("load"):
            notebook = codec.load(path)
        self.notebook = notebook
        self.path = path
        self.dirty = False
        self._refresh_mtime()
        self._reset_session()
        logger.info("Loaded %s (%d cells)", path, len(notebook.cells))

    def create(self, path: Path) -> bool:
        """
        Write a new notebook with one empty code cell and open it.

        Returns:
            False if a cell is running
        """
        if self.session.busy:
            return False
        self.flush()
        path = Path(path)
        notebook = Notebook.new_with_code_cell()
        with self.session.writer("create"):
            codec.save(notebook, path, validate=self._validate)
        logger.info("Created %s", path)
        self._load(path)
        return True

    def open(self, path: Path) -> bool:
        """
        Load a notebook from disk, replacing the open one without saving it.

        Returns:
            False if a cell is running
        """
        if self.session.busy:
            return False
        self._load(Path(path))
        return True

    def mark_dirty(self):
        """Record that the open notebook has unsaved changes."""
        self._require_open()
        self.dirty = True

    def save(self, path: Optional[Path] = None):
        """
        Write the open notebook, optionally to a new path.

        Raises:
            InvalidOperation: If no notebook is open
        """
        notebook = self._require_open()
        if path is not None:
            self.path = Path(path)
        if self.path is None:
            raise InvalidOperation("notebook has no file path")

        with self.session.writer("save"):
            codec.save(notebook, self.path, validate=self._validate)
        self.dirty = False
        self._refresh_mtime()
        logger.info("Saved %s", self.path)

    def flush(self) -> bool:
        """Save the open notebook if it has unsaved changes."""
        if self.notebook is None or not self.dirty:
            return False
        self.save()
        return True

    def switch_to(self, path: Path) -> bool:
        """
        Open another notebook, saving unsaved changes to the current one first.

        Switching to the notebook that is already open does nothing.

        Returns:
            False if a cell is running
        """
        if self.session.busy:
            logger.info("Not switching to %s while cell %d is running", path, self.session.running)
            return False
        path = Path(path)
        if self.path is not None and self.notebook is not None and path.resolve() == self.path.resolve():
            return True
        self.flush()
        self._load(path)
        return True

    def revert(self) -> bool:
        """
        Reload the open notebook from disk, dropping unsaved changes.

        Returns:
            False if a cell is running
        """
        self._require_open()
        if self.session.busy:
            return False
        if self.dirty:
            logger.info("Discarding unsaved changes to %s", self.path)
        self._load(self.path)
        return True

    def reload_if_changed(self) -> bool:
        """
        Reload the notebook if its file was modified externally.

        A notebook with unsaved changes is never replaced.

        Returns:
            True if the notebook was reloaded
        """
        if self.notebook is None or self.path is None:
            return False
        if self.dirty or self.session.busy:
            return False
        try:
            current_mtime = os.path.getmtime(self.path)
        except OSError:
            return False
        if current_mtime == self._mtime:
            return False
        logger.info("%s changed on disk, reloading", self.path)
        self._load(self.path)
        return True

    def close(self):
        """Flush unsaved changes and close the notebook."""
        if self.notebook is None:
            return
        self.flush()
        logger.info("Closed %s", self.path)
        self.notebook = None
        self.path = None
        self.dirty = False
        self._mtime = 0.0
        self.session.select(0, 0)
        self.session.enter_command_mode()
