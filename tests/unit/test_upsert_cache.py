from __future__ import annotations

from leadgrid.models.workspace import CellValue, Row
from leadgrid.services.cache import UpsertCache


def _rows(*ids: str) -> list[Row]:
    return [Row(id=i, workspace_id="w") for i in ids]


def test_upsert_is_idempotent_per_key():
    cache = UpsertCache()
    cache.upsert("r1", "c1", "a")
    cache.upsert("r1", "c1", "a")
    cache.upsert("r1", "c1", "b")
    assert len(cache) == 1
    assert cache.get("r1", "c1").value == "b"


def test_upsert_keeps_known_cell_id():
    cache = UpsertCache([CellValue("r1", "c1", "a", id="cell-1")])
    cache.upsert("r1", "c1", "b")
    assert cache.get("r1", "c1").id == "cell-1"


def test_get_missing_is_none_not_empty_string():
    cache = UpsertCache()
    cache.upsert("r1", "c1", "")
    assert cache.get("r1", "c1").value == ""
    assert cache.get("r1", "c2") is None


def test_project_follows_row_order_and_includes_empty_rows():
    cache = UpsertCache()
    cache.upsert("r2", "c1", "x")
    cache.upsert("r1", "c1", "y")
    cache.upsert("r1", "c2", "z")
    cache.upsert("orphan", "c1", "ignored")

    grid = cache.project(_rows("r1", "r2", "r3"))

    assert [g.row_id for g in grid] == ["r1", "r2", "r3"]
    assert grid[0].values == {"c1": "y", "c2": "z"}
    assert grid[1].values == {"c1": "x"}
    assert grid[2].values == {}


def test_reconcile_replaces_content_last_duplicate_wins():
    cache = UpsertCache()
    cache.upsert("stale", "c1", "gone")
    cache.reconcile(
        [
            CellValue("r1", "c1", "first"),
            CellValue("r1", "c1", "second"),
            CellValue("r2", "c1", "other"),
        ]
    )
    assert len(cache) == 2
    assert cache.get("stale", "c1") is None
    assert cache.get("r1", "c1").value == "second"


def test_discard_column_and_rows():
    cache = UpsertCache()
    for r in ("r1", "r2"):
        for c in ("c1", "c2"):
            cache.upsert(r, c, f"{r}{c}")
    assert cache.discard_column("c2") == 2
    assert cache.discard_rows(["r1"]) == 1
    assert [(cv.row_id, cv.column_id) for cv in cache.cells()] == [("r2", "c1")]
