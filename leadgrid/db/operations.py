from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, assert_never

from .store import TABLES, Order, Store

"""Tagged store operations.

An `action`-tagged payload (as sent by a thin client) is parsed once into one
of the variants below; `apply_operation` dispatches with one branch per
variant. Unknown actions and missing fields are rejected at parse time.
"""

__all__ = [
    "OperationError",
    "Select",
    "SelectIn",
    "Insert",
    "Update",
    "Upsert",
    "Delete",
    "DeleteIn",
    "Operation",
    "parse_operation",
    "apply_operation",
]


class OperationError(Exception):
    pass


@dataclass(frozen=True)
class Select:
    table: str
    filters: dict[str, Any] = field(default_factory=dict)
    order: Order | None = None


@dataclass(frozen=True)
class SelectIn:
    table: str
    column: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class Insert:
    table: str
    rows: tuple[dict[str, Any], ...]


@dataclass(frozen=True)
class Update:
    table: str
    data: dict[str, Any]
    match: dict[str, Any]


@dataclass(frozen=True)
class Upsert:
    table: str
    data: dict[str, Any]
    conflict_keys: tuple[str, ...]


@dataclass(frozen=True)
class Delete:
    table: str
    match: dict[str, Any]


@dataclass(frozen=True)
class DeleteIn:
    table: str
    column: str
    values: tuple[Any, ...]


Operation = Select | SelectIn | Insert | Update | Upsert | Delete | DeleteIn


def _require(payload: Mapping[str, Any], key: str) -> Any:
    if key not in payload or payload[key] is None:
        raise OperationError(f"missing field '{key}' for action '{payload.get('action')}'")
    return payload[key]


def _mapping(payload: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = _require(payload, key)
    if not isinstance(value, Mapping):
        raise OperationError(f"field '{key}' must be an object")
    return dict(value)


def parse_operation(payload: Mapping[str, Any]) -> Operation:
    """Build an operation variant from an `action`-tagged mapping.

    Raises:
        OperationError: unknown action/table or missing/ill-typed fields
    """
    action = payload.get("action")
    table = _require(payload, "table")
    if table not in TABLES:
        raise OperationError(f"unknown table: {table}")

    if action == "select":
        order = payload.get("order")
        return Select(
            table=table,
            filters=dict(payload.get("filters") or {}),
            order=Order(order["column"], order.get("ascending", True)) if order else None,
        )
    if action == "select_in":
        return SelectIn(
            table=table,
            column=_require(payload, "column"),
            values=tuple(_require(payload, "values")),
        )
    if action == "insert":
        data = _require(payload, "data")
        rows = data if isinstance(data, list) else [data]
        if not all(isinstance(r, Mapping) for r in rows):
            raise OperationError("field 'data' must be an object or a list of objects")
        return Insert(table=table, rows=tuple(dict(r) for r in rows))
    if action == "update":
        return Update(table=table, data=_mapping(payload, "data"), match=_mapping(payload, "match"))
    if action == "upsert":
        return Upsert(
            table=table,
            data=_mapping(payload, "data"),
            conflict_keys=tuple(_require(payload, "conflict_keys")),
        )
    if action == "delete":
        return Delete(table=table, match=_mapping(payload, "match"))
    if action == "delete_in":
        return DeleteIn(
            table=table,
            column=_require(payload, "column"),
            values=tuple(_require(payload, "values")),
        )
    raise OperationError(f"unknown action: {action}")


async def apply_operation(store: Store, op: Operation) -> Any:
    """Run `op` against `store`. Inserts always return a list of new records."""
    match op:
        case Select(table=table, filters=filters, order=order):
            return await store.select(table, filters, order)
        case SelectIn(table=table, column=column, values=values):
            return await store.select_in(table, column, list(values))
        case Insert(table=table, rows=(row,)):
            return [await store.insert_one(table, row)]
        case Insert(table=table, rows=rows):
            return await store.insert_many(table, list(rows))
        case Update(table=table, data=data, match=match):
            return await store.update(table, data, match)
        case Upsert(table=table, data=data, conflict_keys=keys):
            return await store.upsert_one(table, data, keys)
        case Delete(table=table, match=match):
            return await store.delete_matching(table, match)
        case DeleteIn(table=table, column=column, values=values):
            return await store.delete_in(table, column, list(values))
        case _:
            assert_never(op)
