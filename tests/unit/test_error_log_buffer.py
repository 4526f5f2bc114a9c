from __future__ import annotations

import json
import re
from pathlib import Path

from leadgrid.logging.error_log import ErrorLogBuffer
from leadgrid.models.error_record import ErrorRecord


def test_flush_without_records_creates_no_file(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    assert buf.flush() is None
    assert not (tmp_path / "logs").exists()


def test_flush_writes_json_lines_and_clears(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    buf.append(ErrorRecord.create("import", None, None, "STORE_ERROR", "insert failed"))
    buf.append(ErrorRecord.create("enrich", "r1", "c1", "PROVIDER_ERROR", "perplexity: API error (500): boom"))
    buf.append(ErrorRecord.create("enrich", "r2", "c1", "PROVIDER_ERROR", "timeout"))
    assert buf.counts_by_type() == {"PROVIDER_ERROR": 2, "STORE_ERROR": 1}
    assert buf.path is None
    path = buf.flush()
    assert path is not None and path == buf.path and path.parent == tmp_path / "logs"
    assert buf.written == 3
    assert re.fullmatch(r"errors-\d{8}-\d{6}\.log", path.name)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["job"] for line in lines] == ["import", "enrich", "enrich"]
    assert buf.records == []

    # 同一実行内の追記は同じファイルへ
    buf.append(ErrorRecord.create("verify", "r2", "c2", "PROVIDER_ERROR", "x"))
    assert buf.flush() == path
    assert len(path.read_text(encoding="utf-8").splitlines()) == 4
