from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from typing import Any

from ..db.operations import Delete, DeleteIn, Insert, Operation, Select, Update, Upsert, apply_operation
from ..db.store import CELL_CONFLICT_KEYS, Order, Store, StoreError
from ..logging.error_log import ErrorLogBuffer
from ..models.batch_result import BatchResult, ItemOutcome
from ..models.error_record import ErrorRecord
from ..models.workspace import (
    DEFAULT_COLUMN_WIDTH,
    DEFAULT_COLUMNS,
    EMAIL_STATUS_FIELD_KEY,
    CellValue,
    ColumnDefinition,
    GridRow,
    OutputType,
    Row,
    TableType,
    Workspace,
    derive_field_key,
    is_blank,
    is_protected_column,
)
from .batch import MetricsCallback, ProgressCallback, run_groups
from .cache import UpsertCache
from .debounce import KeyedDebouncer
from .undo import UndoEntry, UndoLedger

"""Workspace session.

Explicit application state for one client session: the known workspaces,
the active workspace with its columns and rows, the cell cache and the
debounced column-width writer. Every workspace / column / row / cell
operation goes through here; bulk jobs receive the session by reference.

Call `aclose()` when done so pending width writes reach the store.
"""

__all__ = [
    "WorkspaceSession",
    "NoActiveWorkspaceError",
    "WorkspaceNotFoundError",
    "ColumnNotFoundError",
    "ProtectedColumnError",
    "CellWriteError",
    "DEFAULT_INSERT_BATCH_SIZE",
    "WIDTH_DEBOUNCE_SECONDS",
]

logger = logging.getLogger(__name__)

DEFAULT_INSERT_BATCH_SIZE = 50
WIDTH_DEBOUNCE_SECONDS = 0.3


class NoActiveWorkspaceError(Exception):
    pass


class WorkspaceNotFoundError(LookupError):
    pass


class ColumnNotFoundError(LookupError):
    pass


class ProtectedColumnError(Exception):
    """Default columns of a table type can not be deleted."""


class CellWriteError(Exception):
    """A confirmed cell edit could not be persisted; the local value was reverted."""


class WorkspaceSession:
    def __init__(
        self,
        store: Store,
        *,
        insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
        width_debounce_seconds: float = WIDTH_DEBOUNCE_SECONDS,
    ) -> None:
        self.store = store
        self.insert_batch_size = insert_batch_size
        self.workspaces: list[Workspace] = []
        self.active: Workspace | None = None
        self.columns: list[ColumnDefinition] = []
        self.rows: list[Row] = []
        self.cache = UpsertCache()
        self._widths = KeyedDebouncer(width_debounce_seconds, self._persist_width)

    # -- lookups ---------------------------------------------------------
    @property
    def workspace(self) -> Workspace:
        if self.active is None:
            raise NoActiveWorkspaceError("no active workspace")
        return self.active

    def grid_rows(self) -> list[GridRow]:
        return self.cache.project(self.rows)

    def get_column(self, column_id: str) -> ColumnDefinition:
        for col in self.columns:
            if col.id == column_id:
                return col
        raise ColumnNotFoundError(f"column not found: {column_id}")

    def column_by_field_key(self, field_key: str) -> ColumnDefinition | None:
        return next((c for c in self.columns if c.field_key == field_key), None)

    def column_by_name(self, name: str) -> ColumnDefinition | None:
        wanted = name.strip().lower()
        return next((c for c in self.columns if c.name.lower() == wanted), None)

    async def _apply(self, op: Operation) -> Any:
        return await apply_operation(self.store, op)

    # -- workspaces ------------------------------------------------------
    async def load_workspaces(self) -> list[Workspace]:
        records = await self._apply(Select("workspaces", order=Order("created_at")))
        self.workspaces = [Workspace.from_record(r) for r in records]
        return list(self.workspaces)

    def list_workspaces(self, table_type: TableType | None = None) -> list[Workspace]:
        if table_type is None:
            return list(self.workspaces)
        return [w for w in self.workspaces if w.table_type is table_type]

    async def create_workspace(self, table_type: TableType, name: str = "Untitled") -> Workspace:
        """Create a workspace seeded with the table type's default columns and activate it."""
        (record,) = await self._apply(
            Insert("workspaces", ({"name": name, "table_type": table_type.value},))
        )
        ws = Workspace.from_record(record)
        await self._apply(Insert(
            "column_definitions",
            tuple(
                {
                    "workspace_id": ws.id,
                    "name": dc.name,
                    "field_key": dc.field_key,
                    "position": i,
                    "width": DEFAULT_COLUMN_WIDTH,
                    "is_ai_column": False,
                }
                for i, dc in enumerate(DEFAULT_COLUMNS[table_type])
            ),
        ))
        logger.info(f"created workspace {ws.id} ({table_type.value})")
        await self.load_workspaces()
        await self.select_workspace(ws.id)
        return ws

    async def select_workspace(self, workspace_id: str) -> Workspace:
        ws = next((w for w in self.workspaces if w.id == workspace_id), None)
        if ws is None:
            await self.load_workspaces()
            ws = next((w for w in self.workspaces if w.id == workspace_id), None)
        if ws is None:
            raise WorkspaceNotFoundError(f"workspace not found: {workspace_id}")
        await self._widths.flush()
        self.active = ws
        await self.refresh()
        return ws

    async def rename_workspace(self, workspace_id: str, name: str) -> None:
        await self._apply(Update("workspaces", {"name": name}, {"id": workspace_id}))
        self.workspaces = [replace(w, name=name) if w.id == workspace_id else w for w in self.workspaces]
        if self.active is not None and self.active.id == workspace_id:
            self.active = replace(self.active, name=name)

    async def refresh(self) -> None:
        """Reload columns, rows and cells of the active workspace from the store."""
        ws = self.workspace
        col_records = await self._apply(
            Select("column_definitions", {"workspace_id": ws.id}, Order("position"))
        )
        row_records = await self._apply(Select("rows", {"workspace_id": ws.id}, Order("created_at")))
        cell_records = await self.store.get_all_cell_values_for_workspace(ws.id)
        self.columns = [ColumnDefinition.from_record(r) for r in col_records]
        self.rows = [Row.from_record(r) for r in row_records]
        self.cache.reconcile(CellValue.from_record(r) for r in cell_records)
        logger.debug(
            "refreshed %s: %d columns, %d rows, %d cells",
            ws.id, len(self.columns), len(self.rows), len(self.cache),
        )

    # -- columns ---------------------------------------------------------
    def _next_position(self) -> int:
        return max((c.position for c in self.columns), default=-1) + 1

    async def _insert_column(self, data: dict[str, Any]) -> ColumnDefinition:
        (record,) = await self._apply(Insert("column_definitions", (data,)))
        col = ColumnDefinition.from_record(record)
        self.columns.append(col)
        return col

    async def add_column(self, name: str) -> ColumnDefinition:
        ws = self.workspace
        name = name.strip()
        if not name:
            raise ValueError("column name must not be blank")
        return await self._insert_column(
            {
                "workspace_id": ws.id,
                "name": name,
                "field_key": derive_field_key(name),
                "position": self._next_position(),
                "width": DEFAULT_COLUMN_WIDTH,
                "is_ai_column": False,
            }
        )

    async def add_ai_column(
        self, name: str, prompt: str, output_type: OutputType = OutputType.TEXT
    ) -> ColumnDefinition:
        ws = self.workspace
        name = name.strip()
        if not name:
            raise ValueError("column name must not be blank")
        if is_blank(prompt):
            raise ValueError(f"AI column '{name}' requires a prompt")
        return await self._insert_column(
            {
                "workspace_id": ws.id,
                "name": name,
                "field_key": derive_field_key(name),
                "position": self._next_position(),
                "width": DEFAULT_COLUMN_WIDTH,
                "is_ai_column": True,
                "ai_prompt": prompt,
                "output_type": output_type.value,
            }
        )

    def update_column_width(self, column_id: str, width: int) -> None:
        """Apply a width locally now and persist it debounced (last value per column wins)."""
        col = self.get_column(column_id)
        self.columns = [replace(c, width=width) if c.id == col.id else c for c in self.columns]
        self._widths.schedule(column_id, width)

    async def _persist_width(self, column_id: Any, width: Any) -> None:
        await self._apply(Update("column_definitions", {"width": width}, {"id": column_id}))

    async def delete_column(self, column_id: str) -> None:
        """Delete a column and its cells (cells first).

        Raises:
            ProtectedColumnError: the column is one of the table type's defaults
        """
        ws = self.workspace
        col = self.get_column(column_id)
        if is_protected_column(col.field_key, ws.table_type):
            raise ProtectedColumnError(f"column '{col.name}' is protected")
        await self._apply(Delete("cell_values", {"column_id": col.id}))
        await self._apply(Delete("column_definitions", {"id": col.id}))
        self.cache.discard_column(col.id)
        self.columns = [c for c in self.columns if c.id != col.id]
        logger.info(f"deleted column {col.name}")

    # -- rows ------------------------------------------------------------
    async def add_row(self) -> Row:
        (record,) = await self._apply(Insert("rows", ({"workspace_id": self.workspace.id},)))
        row = Row.from_record(record)
        self.rows.append(row)
        return row

    def manual_entry_columns(self) -> list[ColumnDefinition]:
        """Default columns offered for single-row entry (Email Status is verification-owned)."""
        ws = self.workspace
        keys = [dc.field_key for dc in DEFAULT_COLUMNS[ws.table_type] if dc.field_key != EMAIL_STATUS_FIELD_KEY]
        return [c for key in keys if (c := self.column_by_field_key(key)) is not None]

    async def add_single_row(
        self,
        default_values: Mapping[str, str],
        extra_values: Mapping[str, str] | None = None,
    ) -> Row:
        """Add one manually entered row.

        `default_values` is keyed by default-column field key; `extra_values`
        by column name (missing columns are created). Blank values are skipped.
        """
        row = await self.add_row()
        cells: list[dict[str, Any]] = []
        for col in self.manual_entry_columns():
            value = default_values.get(col.field_key)
            if not is_blank(value):
                cells.append({"row_id": row.id, "column_id": col.id, "value": value.strip()})
        for name, value in (extra_values or {}).items():
            if is_blank(name) or is_blank(value):
                continue
            col = self.column_by_name(name) or await self.add_column(name)
            cells.append({"row_id": row.id, "column_id": col.id, "value": value.strip()})
        if cells:
            await self._apply(Insert("cell_values", tuple(cells)))
        await self.refresh()
        return row

    async def delete_rows(self, row_ids: Sequence[str]) -> int:
        """Delete rows and their cells (cells first). Returns the number of rows removed."""
        if not row_ids:
            return 0
        ids = list(dict.fromkeys(row_ids))
        await self._apply(DeleteIn("cell_values", "row_id", tuple(ids)))
        removed = await self._apply(DeleteIn("rows", "id", tuple(ids)))
        self.cache.discard_rows(ids)
        gone = set(ids)
        self.rows = [r for r in self.rows if r.id not in gone]
        return len(removed)

    # -- cells -----------------------------------------------------------
    async def upsert_cell_value(self, row_id: str, column_id: str, value: str) -> CellValue:
        """Persist a cell value, then mirror it in the cache."""
        record = await self._apply(Upsert(
            "cell_values",
            {"row_id": row_id, "column_id": column_id, "value": value},
            CELL_CONFLICT_KEYS,
        ))
        return self.cache.upsert(row_id, column_id, value, cell_id=str(record.get("id") or ""))

    async def edit_cell(
        self, row_id: str, column_id: str, new_value: str, ledger: UndoLedger | None = None
    ) -> UndoEntry | None:
        """Confirmed user edit: optimistic local write, then store.

        Returns the recorded entry, or None when the value did not change.

        Raises:
            CellWriteError: the store rejected the write (local value reverted,
                ledger untouched)
        """
        prior = self.cache.get(row_id, column_id)
        old_value = prior.value if prior is not None else ""
        if old_value == new_value:
            return None
        self.cache.upsert(row_id, column_id, new_value)
        try:
            await self._apply(Upsert(
                "cell_values",
                {"row_id": row_id, "column_id": column_id, "value": new_value},
                CELL_CONFLICT_KEYS,
            ))
        except Exception as e:
            if prior is None:
                self.cache.remove(row_id, column_id)
            else:
                self.cache.upsert(row_id, column_id, prior.value, cell_id=prior.id)
            raise CellWriteError(f"could not save cell {row_id}/{column_id}: {e}") from e
        entry = UndoEntry(row_id=row_id, column_id=column_id, old_value=old_value, new_value=new_value)
        if ledger is not None:
            ledger.record(entry)
        return entry

    async def bulk_insert(
        self,
        records: Sequence[Mapping[str, Any]],
        column_map: Mapping[str, str],
        *,
        job: str = "import",
        batch_size: int | None = None,
        on_progress: ProgressCallback | None = None,
        metrics_callback: MetricsCallback | None = None,
        error_log: ErrorLogBuffer | None = None,
    ) -> BatchResult:
        """Insert one row per record plus its non-blank mapped cells.

        `column_map` maps record keys to column ids; when several keys share
        a column the last non-blank one in map order is written. Each group is one row
        insert followed by one cell insert; when the cell insert fails the
        group's new rows are deleted again and every item of the group fails.
        The session is refreshed from the store afterwards.
        """
        ws = self.workspace

        async def insert_group(group: Sequence[Mapping[str, Any]]) -> list[str]:
            new_rows = await self._apply(Insert("rows", tuple({"workspace_id": ws.id} for _ in group)))
            if len(new_rows) != len(group):
                raise StoreError(f"expected {len(group)} new rows, got {len(new_rows)}")
            row_ids = [str(r["id"]) for r in new_rows]
            # 複数ラベルが同じ列に対応する場合は後勝ち ((row, column) ごとに 1 セル)
            cells: dict[tuple[str, str], dict[str, str]] = {}
            for row_id, record in zip(row_ids, group):
                for key, column_id in column_map.items():
                    if not is_blank(record.get(key)):
                        cells[(row_id, column_id)] = {
                            "row_id": row_id, "column_id": column_id, "value": str(record[key])
                        }
            if cells:
                try:
                    await self._apply(Insert("cell_values", tuple(cells.values())))
                except Exception:
                    await self._discard_new_rows(row_ids)
                    raise
            return row_ids

        result = await run_groups(
            records,
            insert_group,
            batch_size=batch_size or self.insert_batch_size,
            on_progress=on_progress,
            metrics_callback=metrics_callback,
        )
        if error_log is not None:
            _log_failures(error_log, job, result.failures)
        await self.refresh()
        return result

    async def _discard_new_rows(self, row_ids: list[str]) -> None:
        try:
            await self._apply(DeleteIn("rows", "id", tuple(row_ids)))
        except Exception as e:
            logger.warning("could not remove %d rows of a failed group: %s", len(row_ids), e)

    # -- lifecycle -------------------------------------------------------
    async def aclose(self) -> None:
        await self._widths.flush()


def _log_failures(error_log: ErrorLogBuffer, job: str, failures: Iterable[ItemOutcome]) -> None:
    for outcome in failures:
        assert outcome.error is not None
        error_log.append(ErrorRecord.from_exception(job, None, None, outcome.error))
