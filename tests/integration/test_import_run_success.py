from __future__ import annotations

import asyncio
import re
from pathlib import Path

from leadgrid.cli import main as cli_main
from leadgrid.db.store import InMemoryStore
from leadgrid.models.workspace import TableType
from leadgrid.services.importer import import_file
from leadgrid.services.session import WorkspaceSession
from leadgrid.services.undo import LedgerResult, UndoLedger

"""End-to-end import: CSV -> mapping -> rows/cells -> grid, then edit + undo."""


def test_cli_import_file_creates_workspace_and_succeeds(temp_workdir: Path, write_config, offline, contacts_csv, capsys):
    code = cli_main(["import-file", str(contacts_csv)])
    out = capsys.readouterr().out
    assert code == 0
    assert "INFO read 3 rows with 5 columns from contacts.csv" in out
    assert "INFO created 1 columns: Favourite Colour" in out
    assert re.search(r"^SUMMARY job=import total=3 succeeded=3 failed=0 elapsed_sec=\S+$", out, re.M)
    assert not list((temp_workdir / "logs").glob("errors-*.log"))


def test_cli_import_into_companies_workspace_requires_name_or_website(
    temp_workdir: Path, write_config, offline, capsys
):
    f = temp_workdir / "data" / "industries.csv"
    f.write_text("Industry,Notes\nSoftware,call back\n", encoding="utf-8")
    code = cli_main(["import-file", str(f), "--new-workspace", "companies"])
    out = capsys.readouterr().out
    assert code == 1
    assert 'ERROR import-file: Companies table requires at least "Company Name" or "Website"' in out


def test_cli_import_file_with_overrides(temp_workdir: Path, write_config, offline, contacts_csv, capsys):
    code = cli_main([
        "import-file", str(contacts_csv),
        "--map", "Favourite Colour=skip",
        "--map", "Company=Title",
    ])
    out = capsys.readouterr().out
    assert code == 0
    assert "created 1 columns" not in out
    assert "SUMMARY job=import total=3 succeeded=3" in out


def test_session_import_edit_undo_delete(contacts_csv: Path):
    store = InMemoryStore(row_cap=2, select_in_chunk_size=2)
    session = WorkspaceSession(store, insert_batch_size=2)
    ledger = UndoLedger()

    async def scenario():
        await session.create_workspace(TableType.PEOPLE, name="contacts")
        summary = await import_file(session, contacts_csv)
        email = session.column_by_field_key("email")
        grace = session.rows[2].id
        await session.edit_cell(grace, email.id, "grace@example.com", ledger)
        edited = session.grid_rows()[2].get(email.id)
        undone = await ledger.undo(session.upsert_cell_value)
        await session.refresh()
        after_undo = session.grid_rows()[2].get(email.id)
        removed = await session.delete_rows([session.rows[0].id])
        return summary, edited, undone, after_undo, removed

    summary, edited, undone, after_undo, removed = asyncio.run(scenario())
    assert summary.succeeded == 3 and summary.total_groups == 2
    assert edited == "grace@example.com"
    assert undone is LedgerResult.DONE
    assert after_undo == ""
    assert removed == 1
    assert len(session.rows) == 2
    # セルは行ごとに削除される
    assert {c["row_id"] for c in store.dump("cell_values")} <= {r.id for r in session.rows}
