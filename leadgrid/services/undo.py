from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

"""Undo/redo ledger for confirmed cell edits.

Only user edits that already reached the store are recorded. Applying an
entry goes through the regular cell upsert path; an entry whose apply fails
stays on the stack it came from.
"""

__all__ = [
    "UndoEntry",
    "LedgerResult",
    "UndoLedger",
    "ApplyFn",
]

logger = logging.getLogger(__name__)

ApplyFn = Callable[[str, str, str], Awaitable[object]]


@dataclass(frozen=True)
class UndoEntry:
    row_id: str
    column_id: str
    old_value: str
    new_value: str


class LedgerResult(Enum):
    DONE = "done"
    NOTHING = "nothing"
    FAILED = "failed"


class UndoLedger:
    # TODO: cap stack depth once a retention limit is configurable
    def __init__(self) -> None:
        self._undo: list[UndoEntry] = []
        self._redo: list[UndoEntry] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def record(self, entry: UndoEntry) -> None:
        """Push a confirmed edit. A new edit invalidates the redo history."""
        self._undo.append(entry)
        self._redo.clear()

    async def undo(self, apply: ApplyFn) -> LedgerResult:
        if not self._undo:
            return LedgerResult.NOTHING
        entry = self._undo.pop()
        try:
            await apply(entry.row_id, entry.column_id, entry.old_value)
        except Exception as e:
            logger.warning("undo failed for %s/%s: %s", entry.row_id, entry.column_id, e)
            self._undo.append(entry)
            return LedgerResult.FAILED
        self._redo.append(entry)
        return LedgerResult.DONE

    async def redo(self, apply: ApplyFn) -> LedgerResult:
        if not self._redo:
            return LedgerResult.NOTHING
        entry = self._redo.pop()
        try:
            await apply(entry.row_id, entry.column_id, entry.new_value)
        except Exception as e:
            logger.warning("redo failed for %s/%s: %s", entry.row_id, entry.column_id, e)
            self._redo.append(entry)
            return LedgerResult.FAILED
        self._undo.append(entry)
        return LedgerResult.DONE
