from __future__ import annotations

import copy
import logging
from collections import deque
from typing import Deque, Optional

from roofedit.domain.measurement import Measurement

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class HistoryManager:
    """
    Bounded undo/redo stacks of measurement snapshots.

    The caller records the snapshot taken *before* each committed mutation.
    ``undo``/``redo`` take the current snapshot so it can be pushed onto the
    opposite stack. Stored snapshots are deep copies, so nothing reachable
    from the live model can alter history.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self._limit = limit
        self._undo: Deque[Measurement] = deque(maxlen=limit)
        self._redo: Deque[Measurement] = deque(maxlen=limit)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    def record(self, snapshot: Measurement) -> None:
        """Push a pre-mutation snapshot; the oldest entry is dropped past the limit."""
        self._undo.append(copy.deepcopy(snapshot))
        self._redo.clear()

    def undo(self, current: Measurement) -> Optional[Measurement]:
        """Return the previous snapshot, or None when there is nothing to undo."""
        if not self._undo:
            logger.debug("Nothing to undo")
            return None
        self._redo.append(copy.deepcopy(current))
        return self._undo.pop()

    def redo(self, current: Measurement) -> Optional[Measurement]:
        """Return the next snapshot, or None when there is nothing to redo."""
        if not self._redo:
            logger.debug("Nothing to redo")
            return None
        self._undo.append(copy.deepcopy(current))
        return self._redo.pop()

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
