from __future__ import annotations

import asyncio

import pytest

import leadgrid.services.session as session_module
from leadgrid.db.operations import (
    Delete,
    DeleteIn,
    Insert,
    OperationError,
    Select,
    SelectIn,
    Update,
    Upsert,
    apply_operation,
    parse_operation,
)
from leadgrid.db.store import InMemoryStore, Order


def test_parse_each_action():
    assert parse_operation({"action": "select", "table": "rows", "filters": {"workspace_id": "w"},
                            "order": {"column": "created_at"}}) == Select(
        "rows", {"workspace_id": "w"}, Order("created_at", True)
    )
    assert parse_operation({"action": "select_in", "table": "cell_values", "column": "row_id",
                            "values": ["a", "b"]}) == SelectIn("cell_values", "row_id", ("a", "b"))
    assert parse_operation({"action": "insert", "table": "rows", "data": {"workspace_id": "w"}}) == Insert(
        "rows", ({"workspace_id": "w"},)
    )
    assert parse_operation({"action": "update", "table": "column_definitions", "data": {"width": 250},
                            "match": {"id": "c"}}) == Update("column_definitions", {"width": 250}, {"id": "c"})
    assert parse_operation({"action": "upsert", "table": "cell_values", "data": {"value": "x"},
                            "conflict_keys": ["row_id", "column_id"]}) == Upsert(
        "cell_values", {"value": "x"}, ("row_id", "column_id")
    )
    assert parse_operation({"action": "delete", "table": "rows", "match": {"id": "r"}}) == Delete("rows", {"id": "r"})
    assert parse_operation({"action": "delete_in", "table": "rows", "column": "id",
                            "values": ["r1", "r2"]}) == DeleteIn("rows", "id", ("r1", "r2"))


@pytest.mark.parametrize(
    "payload",
    [
        {"action": "drop", "table": "rows"},
        {"action": "select", "table": "users"},
        {"action": "update", "table": "rows", "data": {"x": 1}},
        {"action": "delete", "table": "rows", "match": "id=1"},
        {"action": "insert", "table": "rows", "data": ["not a mapping"]},
        {"action": "select"},
        {"action": "delete_in", "table": "rows", "column": "id"},
    ],
)
def test_parse_rejects_invalid_payloads(payload):
    with pytest.raises(OperationError):
        parse_operation(payload)


def test_apply_dispatches_to_store():
    store = InMemoryStore()

    async def scenario():
        inserted = await apply_operation(
            store, parse_operation({"action": "insert", "table": "rows", "data": [{"workspace_id": "w"}] * 2})
        )
        row_id = inserted[0]["id"]
        await apply_operation(store, Upsert("cell_values", {"row_id": row_id, "column_id": "c", "value": "1"},
                                            ("row_id", "column_id")))
        await apply_operation(store, Update("cell_values", {"value": "2"}, {"row_id": row_id}))
        cells = await apply_operation(store, SelectIn("cell_values", "row_id", (row_id,)))
        cleared = await apply_operation(store, DeleteIn("cell_values", "row_id", (row_id,)))
        removed = await apply_operation(store, Delete("rows", {"workspace_id": "w"}))
        left = await apply_operation(store, Select("rows"))
        return cells, cleared, removed, left

    cells, cleared, removed, left = asyncio.run(scenario())
    assert [c["value"] for c in cells] == ["2"]
    assert [c["row_id"] for c in cleared] == [cells[0]["row_id"]]
    assert len(removed) == 2
    assert left == []
    assert [a for a, _ in store.calls] == [
        "insert", "upsert", "update", "select_in", "delete", "delete", "select"
    ]


def test_single_row_insert_returns_a_list():
    store = InMemoryStore()
    inserted = asyncio.run(apply_operation(store, Insert("workspaces", ({"name": "Leads", "table_type": "people"},))))
    assert len(inserted) == 1 and inserted[0]["name"] == "Leads"
    assert store.dump("workspaces") == inserted


def test_session_writes_go_through_operations(people_session, monkeypatch):
    seen: list[str] = []
    real_apply = session_module.apply_operation

    async def recording_apply(store, op):
        seen.append(type(op).__name__)
        return await real_apply(store, op)

    monkeypatch.setattr(session_module, "apply_operation", recording_apply)

    async def scenario():
        row = await people_session.add_row()
        email = people_session.column_by_field_key("email")
        await people_session.upsert_cell_value(row.id, email.id, "a@example.com")
        await people_session.delete_rows([row.id])

    asyncio.run(scenario())
    assert seen == ["Insert", "Upsert", "DeleteIn", "DeleteIn"]
