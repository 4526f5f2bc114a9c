from __future__ import annotations

from collections.abc import Iterable

from ..models.workspace import CellValue, GridRow, Row

"""Client-side cell cache keyed by (row_id, column_id).

Holds at most one entry per key. Optimistic writes go through upsert();
after a bulk job the session replaces the whole content with the store's
authoritative snapshot via reconcile().
"""

__all__ = [
    "UpsertCache",
]

CellKey = tuple[str, str]


class UpsertCache:
    def __init__(self, cells: Iterable[CellValue] = ()) -> None:
        self._cells: dict[CellKey, CellValue] = {}
        self.reconcile(cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __contains__(self, key: object) -> bool:
        return key in self._cells

    def upsert(self, row_id: str, column_id: str, value: str, cell_id: str = "") -> CellValue:
        """Insert or replace the entry for (row_id, column_id)."""
        key = (row_id, column_id)
        prev = self._cells.get(key)
        cell = CellValue(
            row_id=row_id,
            column_id=column_id,
            value=value,
            id=cell_id or (prev.id if prev is not None else ""),
        )
        self._cells[key] = cell
        return cell

    def get(self, row_id: str, column_id: str) -> CellValue | None:
        return self._cells.get((row_id, column_id))

    def remove(self, row_id: str, column_id: str) -> CellValue | None:
        return self._cells.pop((row_id, column_id), None)

    def cells(self) -> list[CellValue]:
        return list(self._cells.values())

    def project(self, rows: Iterable[Row]) -> list[GridRow]:
        """One GridRow per row, in the given order. Rows without cells are empty."""
        by_row: dict[str, dict[str, str]] = {}
        for cell in self._cells.values():
            by_row.setdefault(cell.row_id, {})[cell.column_id] = cell.value
        return [GridRow(row_id=r.id, values=dict(by_row.get(r.id, {}))) for r in rows]

    def reconcile(self, snapshot: Iterable[CellValue]) -> None:
        """Replace the content with `snapshot`; on duplicate keys the last one wins."""
        fresh: dict[CellKey, CellValue] = {}
        for cell in snapshot:
            fresh[(cell.row_id, cell.column_id)] = cell
        self._cells = fresh

    def discard_column(self, column_id: str) -> int:
        keys = [k for k in self._cells if k[1] == column_id]
        for k in keys:
            del self._cells[k]
        return len(keys)

    def discard_rows(self, row_ids: Iterable[str]) -> int:
        targets = set(row_ids)
        keys = [k for k in self._cells if k[0] in targets]
        for k in keys:
            del self._cells[k]
        return len(keys)
