#!/usr/bin/env python3
"""
History Module
Bounded undo/redo store of complete document snapshots
"""

import logging
from collections import deque
from typing import Optional

from .document import DocumentSnapshot

logger = logging.getLogger(__name__)


class HistoryManager:
    """Two bounded stacks of document snapshots

    Pushing past max_depth evicts the oldest undo entry; any push clears
    the redo stack.
    """

    def __init__(self, max_depth: int = 50):
        if max_depth < 1:
            raise ValueError(f"max_depth must be at least 1, got {max_depth}")
        self.max_depth = max_depth
        self._undo = deque(maxlen=max_depth)
        self._redo = deque(maxlen=max_depth)

    def push(self, snapshot: DocumentSnapshot):
        """Record the state before an operation"""
        if len(self._undo) == self.max_depth:
            logger.debug("History full, evicting oldest snapshot")
        self._undo.append(snapshot)
        self._redo.clear()

    def pop(self) -> Optional[DocumentSnapshot]:
        """Most recent snapshot, or None when empty"""
        return self._undo.pop() if self._undo else None

    def undo(self, current: DocumentSnapshot) -> Optional[DocumentSnapshot]:
        """Swap the current state for the previous one

        Args:
            current: Snapshot of the state being undone (kept for redo)

        Returns:
            DocumentSnapshot: State to restore, or None if nothing to undo
        """
        previous = self.pop()
        if previous is not None:
            self._redo.append(current)
        return previous

    def redo(self, current: DocumentSnapshot) -> Optional[DocumentSnapshot]:
        if not self._redo:
            return None
        self._undo.append(current)
        return self._redo.pop()

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    def clear(self):
        self._undo.clear()
        self._redo.clear()

    def __len__(self):
        return len(self._undo)
