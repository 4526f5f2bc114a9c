from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from psycopg2 import sql
from psycopg2.extras import execute_values

"""Multi-row INSERT helper for the PostgreSQL store.

One `execute_values` statement per call (paged by `page_size`). With
`returning=True` the generated rows come back in insertion order so that
callers can pair new row ids with their source records.
"""


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class InsertMetrics:
    """Timing for a single batch insert statement."""
    row_count: int
    elapsed_seconds: float
    start_time: float
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[dict[str, Any]] | None = None


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: bool = False,
    page_size: int = 1000,
    metrics_callback: Callable[[InsertMetrics], None] | None = None,
) -> InsertResult:
    """Perform a batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor (RealDictCursor when returning=True)
    table: target table name (quoted as an identifier)
    columns: inserted columns, in the order of each row sequence
    rows: row value sequences
    returning: append `RETURNING *` and fetch all generated rows
    page_size: execute_values page size
    metrics_callback: receives InsertMetrics once the statement ran.
        Not invoked for empty `rows` (returns early).
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    base_sql = sql.SQL("INSERT INTO {table} ({cols}) VALUES %s").format(
        table=sql.Identifier(table),
        cols=sql.SQL(",").join(sql.Identifier(c) for c in columns),
    )
    if returning:
        base_sql = base_sql + sql.SQL(" RETURNING *")

    start_time = time.time()
    returned = None
    try:
        # fetch=True は全ページ分の RETURNING 行を集約して返す
        result = execute_values(cursor, base_sql, rows_list, page_size=page_size, fetch=returning)
        if returning:
            returned = [dict(r) for r in result or []]
    except Exception as e:
        raise BatchInsertError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                InsertMetrics(
                    row_count=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows_list), returned_values=returned)
