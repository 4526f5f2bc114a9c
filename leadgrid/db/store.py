from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

"""Persistence store contract + in-memory implementation.

The workspace engine only talks to the store through this narrow async
operation set. `InMemoryStore` backs the unit tests and the offline CLI mode
(DISABLE_DB_CONNECT=1); `leadgrid.db.postgres.PostgresStore` is the live one.

Both stores return plain dict records (the row as stored, including generated
`id` / `created_at`).
"""

__all__ = [
    "TABLES",
    "CELL_CONFLICT_KEYS",
    "Order",
    "Store",
    "StoreError",
    "InMemoryStore",
]

TABLES = ("workspaces", "column_definitions", "rows", "cell_values")
CELL_CONFLICT_KEYS = ("row_id", "column_id")

Record = dict[str, Any]


class StoreError(Exception):
    """Raised by a store when an operation is rejected or fails."""


@dataclass(frozen=True)
class Order:
    column: str
    ascending: bool = True


class Store(Protocol):
    async def select(
        self, table: str, filters: Mapping[str, Any] | None = None, order: Order | None = None
    ) -> list[Record]: ...

    async def select_in(self, table: str, column: str, values: Sequence[Any]) -> list[Record]: ...

    async def insert_one(self, table: str, data: Mapping[str, Any]) -> Record: ...

    async def insert_many(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[Record]: ...

    async def update(
        self, table: str, data: Mapping[str, Any], match: Mapping[str, Any]
    ) -> list[Record]: ...

    async def upsert_one(
        self, table: str, data: Mapping[str, Any], conflict_keys: Sequence[str]
    ) -> Record: ...

    async def delete_matching(self, table: str, match: Mapping[str, Any]) -> list[Record]: ...

    async def delete_in(self, table: str, column: str, values: Sequence[Any]) -> list[Record]: ...

    async def get_all_cell_values_for_workspace(self, workspace_id: str) -> list[Record]: ...


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise StoreError(f"unknown table: {table}")


class InMemoryStore:
    """Dict-backed store with the same observable semantics as PostgresStore.

    - generated uuid ids and strictly increasing created_at values
    - upsert-on-conflict keyed by the declared conflict columns
    - select() returns at most `row_cap` records per request, like a hosted
      REST store; get_all_cell_values_for_workspace pages around it
    - `fail_on(action, table, data)` lets tests inject failures
    """

    def __init__(
        self,
        *,
        row_cap: int = 1000,
        select_in_chunk_size: int = 500,
        fail_on: Callable[[str, str, Mapping[str, Any]], bool] | None = None,
    ) -> None:
        self._tables: dict[str, list[Record]] = {t: [] for t in TABLES}
        self._tick = 0
        self._epoch = datetime(2024, 1, 1, tzinfo=UTC)
        self.row_cap = row_cap
        self.select_in_chunk_size = select_in_chunk_size
        self.fail_on = fail_on
        self.calls: list[tuple[str, str]] = []  # (action, table) 呼び出し履歴

    # -- helpers -------------------------------------------------------
    def _now(self) -> str:
        self._tick += 1
        return (self._epoch + timedelta(microseconds=self._tick)).isoformat()

    async def _enter(self, action: str, table: str, data: Mapping[str, Any] | None = None) -> None:
        _check_table(table)
        self.calls.append((action, table))
        await asyncio.sleep(0)  # suspension point, like a network round trip
        if self.fail_on is not None and self.fail_on(action, table, data or {}):
            raise StoreError(f"injected failure: {action} {table}")

    @staticmethod
    def _matches(record: Record, match: Mapping[str, Any]) -> bool:
        return all(record.get(k) == v for k, v in match.items())

    def _new_record(self, table: str, data: Mapping[str, Any]) -> Record:
        record = dict(data)
        record.setdefault("id", str(uuid.uuid4()))
        record.setdefault("created_at", self._now())
        self._tables[table].append(record)
        return dict(record)

    def dump(self, table: str) -> list[Record]:
        """Synchronous snapshot of a table, for assertions."""
        return [dict(r) for r in self._tables[table]]

    # -- Store protocol --------------------------------------------------
    async def select(
        self, table: str, filters: Mapping[str, Any] | None = None, order: Order | None = None
    ) -> list[Record]:
        out: list[Record] = []
        offset = 0
        while True:
            page = await self._select_page(table, filters, order, offset=offset, limit=self.row_cap)
            out.extend(page)
            if len(page) < self.row_cap:
                return out
            offset += len(page)

    async def _select_page(
        self,
        table: str,
        filters: Mapping[str, Any] | None,
        order: Order | None,
        *,
        offset: int,
        limit: int,
    ) -> list[Record]:
        await self._enter("select", table, filters)
        found = [dict(r) for r in self._tables[table] if self._matches(r, filters or {})]
        if order is not None:
            found.sort(key=lambda r: (r.get(order.column) is None, r.get(order.column)),
                       reverse=not order.ascending)
        return found[offset:offset + min(limit, self.row_cap)]

    async def select_in(self, table: str, column: str, values: Sequence[Any]) -> list[Record]:
        if not values:
            return []
        out: list[Record] = []
        for i in range(0, len(values), self.select_in_chunk_size):
            chunk = set(values[i:i + self.select_in_chunk_size])
            offset = 0
            while True:
                await self._enter("select_in", table, {column: sorted(chunk)})
                matched = [r for r in self._tables[table] if r.get(column) in chunk]
                page = [dict(r) for r in matched[offset:offset + self.row_cap]]
                out.extend(page)
                if len(page) < self.row_cap:
                    break
                offset += len(page)
        return out

    async def insert_one(self, table: str, data: Mapping[str, Any]) -> Record:
        rows = await self.insert_many(table, [data])
        return rows[0]

    async def insert_many(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[Record]:
        if not rows:
            return []
        await self._enter("insert", table, {"rows": list(rows)})
        if table == "cell_values":
            # 一意制約 (row_id, column_id) を DB と同様に検査
            seen = {(r["row_id"], r["column_id"]) for r in self._tables[table]}
            for r in rows:
                key = (r["row_id"], r["column_id"])
                if key in seen:
                    raise StoreError(f"duplicate key value violates unique constraint: {key}")
                seen.add(key)
        return [self._new_record(table, r) for r in rows]

    async def update(
        self, table: str, data: Mapping[str, Any], match: Mapping[str, Any]
    ) -> list[Record]:
        await self._enter("update", table, data)
        updated = []
        for r in self._tables[table]:
            if self._matches(r, match):
                r.update(data)
                updated.append(dict(r))
        return updated

    async def upsert_one(
        self, table: str, data: Mapping[str, Any], conflict_keys: Sequence[str]
    ) -> Record:
        await self._enter("upsert", table, data)
        key = {k: data[k] for k in conflict_keys}
        for r in self._tables[table]:
            if self._matches(r, key):
                r.update({k: v for k, v in data.items() if k != "id"})
                return dict(r)
        return self._new_record(table, data)

    async def delete_matching(self, table: str, match: Mapping[str, Any]) -> list[Record]:
        await self._enter("delete", table, match)
        kept, removed = [], []
        for r in self._tables[table]:
            (removed if self._matches(r, match) else kept).append(r)
        self._tables[table] = kept
        return removed

    async def delete_in(self, table: str, column: str, values: Sequence[Any]) -> list[Record]:
        await self._enter("delete", table, {column: list(values)})
        targets = set(values)
        kept, removed = [], []
        for r in self._tables[table]:
            (removed if r.get(column) in targets else kept).append(r)
        self._tables[table] = kept
        return removed

    async def get_all_cell_values_for_workspace(self, workspace_id: str) -> list[Record]:
        rows = await self.select("rows", {"workspace_id": workspace_id}, Order("created_at"))
        return await self.select_in("cell_values", "row_id", [r["id"] for r in rows])
