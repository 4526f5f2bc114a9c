from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any, TypeVar

import psycopg2
from psycopg2 import sql
from psycopg2.extras import RealDictCursor

from .batch_insert import BatchInsertError, batch_insert
from .store import TABLES, Order, StoreError

"""PostgreSQL-backed store (psycopg2).

psycopg2 is blocking, so every operation runs in a worker thread via
asyncio.to_thread. A connection-level lock serialises statements; the event
loop stays free to interleave other in-flight provider calls meanwhile.

The connection runs in autocommit mode: each store operation is its own
transaction, matching the per-request semantics of the engine.
"""

__all__ = [
    "SCHEMA_SQL",
    "PostgresStore",
    "connect",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS workspaces (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    name text NOT NULL,
    table_type text NOT NULL CHECK (table_type IN ('people', 'companies')),
    created_at timestamptz NOT NULL DEFAULT clock_timestamp()
);
CREATE TABLE IF NOT EXISTS column_definitions (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    workspace_id uuid NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    name text NOT NULL,
    field_key text NOT NULL,
    position integer NOT NULL,
    width integer NOT NULL DEFAULT 200,
    is_ai_column boolean NOT NULL DEFAULT false,
    ai_prompt text,
    output_type text CHECK (output_type IN ('text', 'number', 'boolean')),
    created_at timestamptz NOT NULL DEFAULT clock_timestamp(),
    UNIQUE (workspace_id, position)
);
CREATE TABLE IF NOT EXISTS rows (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    workspace_id uuid NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
    created_at timestamptz NOT NULL DEFAULT clock_timestamp()
);
CREATE TABLE IF NOT EXISTS cell_values (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    row_id uuid NOT NULL REFERENCES rows(id) ON DELETE CASCADE,
    column_id uuid NOT NULL REFERENCES column_definitions(id) ON DELETE CASCADE,
    value text NOT NULL,
    created_at timestamptz NOT NULL DEFAULT clock_timestamp(),
    UNIQUE (row_id, column_id)
);
"""


@contextmanager
def connect(dsn: str):  # pragma: no cover (thin wrapper; needs a live server)
    try:
        conn = psycopg2.connect(dsn)
    except psycopg2.Error as e:
        raise StoreError(f"could not connect to database: {e}") from e
    conn.autocommit = True
    try:
        yield conn
    finally:
        conn.close()


def _is_uuid_column(column: str) -> bool:
    return column == "id" or column.endswith("_id")


def _normalize(record: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in record.items():
        if isinstance(v, datetime):
            out[k] = v.isoformat()
        elif _is_uuid_column(k):
            out[k] = None if v is None else str(v)
        else:
            out[k] = v
    return out


def _where(match: Mapping[str, Any]) -> tuple[sql.Composable, list[Any]]:
    if not match:
        return sql.SQL(""), []
    clauses = [sql.SQL("{} = %s").format(sql.Identifier(k)) for k in match]
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), list(match.values())


def _any(column: str) -> sql.Composed:
    """`column = ANY(%s)`; the list parameter is sent as text[], so id columns need a uuid[] cast."""
    cast = "::uuid[]" if _is_uuid_column(column) else ""
    return sql.SQL("{} = ANY(%s" + cast + ")").format(sql.Identifier(column))


class PostgresStore:
    def __init__(
        self,
        conn: Any,
        *,
        page_size: int = 1000,
        select_in_chunk_size: int = 500,
    ) -> None:
        self._conn = conn
        self._lock = threading.Lock()
        self.page_size = page_size
        self.select_in_chunk_size = select_in_chunk_size

    async def _run(self, fn: Callable[[Any], T]) -> T:
        def work() -> T:
            with self._lock:
                with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
                    try:
                        return fn(cur)
                    except (psycopg2.Error, BatchInsertError) as e:
                        raise StoreError(str(e)) from e
        return await asyncio.to_thread(work)

    @staticmethod
    def _check(table: str) -> sql.Identifier:
        if table not in TABLES:
            raise StoreError(f"unknown table: {table}")
        return sql.Identifier(table)

    async def ensure_schema(self) -> None:
        def fn(cur: Any) -> None:
            cur.execute(SCHEMA_SQL)
        await self._run(fn)
        logger.debug("schema ensured")

    async def select(
        self, table: str, filters: Mapping[str, Any] | None = None, order: Order | None = None
    ) -> list[dict[str, Any]]:
        ident = self._check(table)
        where, params = _where(filters or {})
        query = sql.SQL("SELECT * FROM {}").format(ident) + where
        if order is not None:
            query += sql.SQL(" ORDER BY {} {}").format(
                sql.Identifier(order.column), sql.SQL("ASC" if order.ascending else "DESC")
            )

        def fn(cur: Any) -> list[dict[str, Any]]:
            cur.execute(query, params)
            return [_normalize(r) for r in cur.fetchall()]
        return await self._run(fn)

    async def select_in(self, table: str, column: str, values: Sequence[Any]) -> list[dict[str, Any]]:
        if not values:
            return []
        ident = self._check(table)
        query = sql.SQL("SELECT * FROM {} WHERE {}").format(ident, _any(column))
        out: list[dict[str, Any]] = []
        for i in range(0, len(values), self.select_in_chunk_size):
            chunk = [str(v) for v in values[i:i + self.select_in_chunk_size]]

            def fn(cur: Any, chunk: list[str] = chunk) -> list[dict[str, Any]]:
                cur.execute(query, (chunk,))
                return [_normalize(r) for r in cur.fetchall()]
            out.extend(await self._run(fn))
        return out

    async def insert_one(self, table: str, data: Mapping[str, Any]) -> dict[str, Any]:
        rows = await self.insert_many(table, [data])
        return rows[0]

    async def insert_many(
        self, table: str, rows: Sequence[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        if not rows:
            return []
        self._check(table)
        columns = list(rows[0].keys())
        values = [[r.get(c) for c in columns] for r in rows]

        def fn(cur: Any) -> list[dict[str, Any]]:
            result = batch_insert(
                cur, table, columns, values, returning=True, page_size=self.page_size
            )
            return [_normalize(r) for r in result.returned_values or []]
        return await self._run(fn)

    async def update(
        self, table: str, data: Mapping[str, Any], match: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        ident = self._check(table)
        sets = sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(k)) for k in data)
        where, params = _where(match)
        query = sql.SQL("UPDATE {} SET ").format(ident) + sets + where + sql.SQL(" RETURNING *")

        def fn(cur: Any) -> list[dict[str, Any]]:
            cur.execute(query, list(data.values()) + params)
            return [_normalize(r) for r in cur.fetchall()]
        return await self._run(fn)

    async def upsert_one(
        self, table: str, data: Mapping[str, Any], conflict_keys: Sequence[str]
    ) -> dict[str, Any]:
        ident = self._check(table)
        columns = list(data.keys())
        updates = [c for c in columns if c not in conflict_keys and c != "id"]
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) DO UPDATE SET {} RETURNING *").format(
            ident,
            sql.SQL(",").join(sql.Identifier(c) for c in columns),
            sql.SQL(",").join(sql.Placeholder() for _ in columns),
            sql.SQL(",").join(sql.Identifier(c) for c in conflict_keys),
            sql.SQL(",").join(
                sql.SQL("{0} = EXCLUDED.{0}").format(sql.Identifier(c)) for c in updates
            ),
        )

        def fn(cur: Any) -> dict[str, Any]:
            cur.execute(query, list(data.values()))
            return _normalize(cur.fetchone())
        return await self._run(fn)

    async def delete_matching(self, table: str, match: Mapping[str, Any]) -> list[dict[str, Any]]:
        ident = self._check(table)
        where, params = _where(match)
        if not params:
            raise StoreError("refusing to delete without a match filter")
        query = sql.SQL("DELETE FROM {}").format(ident) + where + sql.SQL(" RETURNING *")

        def fn(cur: Any) -> list[dict[str, Any]]:
            cur.execute(query, params)
            return [_normalize(r) for r in cur.fetchall()]
        return await self._run(fn)

    async def delete_in(self, table: str, column: str, values: Sequence[Any]) -> list[dict[str, Any]]:
        if not values:
            return []
        ident = self._check(table)
        query = sql.SQL("DELETE FROM {} WHERE {} RETURNING *").format(ident, _any(column))
        out: list[dict[str, Any]] = []
        for i in range(0, len(values), self.select_in_chunk_size):
            chunk = [str(v) for v in values[i:i + self.select_in_chunk_size]]

            def fn(cur: Any, chunk: list[str] = chunk) -> list[dict[str, Any]]:
                cur.execute(query, (chunk,))
                return [_normalize(r) for r in cur.fetchall()]
            out.extend(await self._run(fn))
        return out

    async def get_all_cell_values_for_workspace(self, workspace_id: str) -> list[dict[str, Any]]:
        """All cells of a workspace, keyset-paged by id in `page_size` pages."""
        query = sql.SQL(
            "SELECT c.* FROM cell_values c JOIN rows r ON r.id = c.row_id "
            "WHERE r.workspace_id = %s::uuid AND (%s::uuid IS NULL OR c.id > %s::uuid) "
            "ORDER BY c.id LIMIT %s"
        )
        out: list[dict[str, Any]] = []
        last_id: str | None = None
        while True:
            def fn(cur: Any, last_id: str | None = last_id) -> list[dict[str, Any]]:
                cur.execute(query, (workspace_id, last_id, last_id, self.page_size))
                return [_normalize(r) for r in cur.fetchall()]
            page = await self._run(fn)
            out.extend(page)
            if len(page) < self.page_size:
                return out
            last_id = page[-1]["id"]
