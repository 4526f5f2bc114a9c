from __future__ import annotations

import json
import re
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import patch

from leadgrid.cli import main as cli_main
from leadgrid.db.store import InMemoryStore

"""Partial failure: one insert group fails, the other commits.

- rows of the failed group are removed again (no orphan rows)
- exit code 2 with SUMMARY failed > 0
- the error log holds one JSON line per failed item
"""


def _failing_store(stores: list[InMemoryStore]):
    def fail_grace(action, table, data):
        return (
            action == "insert"
            and table == "cell_values"
            and any(r.get("value") == "Grace" for r in data.get("rows", []))
        )

    @contextmanager
    def fake_open_store(cfg):
        store = InMemoryStore(fail_on=fail_grace)
        stores.append(store)
        yield store

    return fake_open_store


def test_partial_failure_exit_code_and_error_log(temp_workdir: Path, write_config, offline, contacts_csv, capsys):
    stores: list[InMemoryStore] = []
    with patch("leadgrid.cli._open_store", _failing_store(stores)):
        code = cli_main(["import-file", str(contacts_csv)])
    out = capsys.readouterr().out

    assert code == 2
    assert re.search(r"^SUMMARY job=import total=3 succeeded=2 failed=1 elapsed_sec=\S+$", out, re.M)

    [store] = stores
    assert len(store.dump("rows")) == 2
    assert len(store.dump("cell_values")) == 9

    logs = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    assert f"INFO error log: {Path('logs') / logs[0].name}" in out
    [line] = logs[0].read_text(encoding="utf-8").splitlines()
    record = json.loads(line)
    assert record["job"] == "import"
    assert record["row_id"] is None
    assert record["error_type"] == "STORE_ERROR"
    assert "injected failure" in record["message"]
