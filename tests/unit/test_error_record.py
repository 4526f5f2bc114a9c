from __future__ import annotations

import json

from leadgrid.db.store import StoreError
from leadgrid.models.error_record import ErrorRecord
from leadgrid.providers.errors import ProviderError


def test_from_exception_derives_upper_snake_type():
    rec = ErrorRecord.from_exception("enrich", "r1", "c1", ProviderError("anthropic", "overloaded", 529))
    assert rec.error_type == "PROVIDER_ERROR"
    assert rec.message == "anthropic: overloaded"
    assert rec.timestamp.endswith("Z")

    assert ErrorRecord.from_exception("import", None, None, StoreError("x")).error_type == "STORE_ERROR"
    assert ErrorRecord.from_exception("import", None, None, TimeoutError()).message == "TimeoutError"


def test_json_line_has_fixed_keys_and_keeps_non_ascii():
    rec = ErrorRecord.create("verify", "r", None, "PROVIDER_ERROR", "メール検証失敗")
    data = json.loads(rec.to_json_line())
    assert set(data) == {"timestamp", "job", "row_id", "column_id", "error_type", "message"}
    assert data["column_id"] is None
    assert "メール検証失敗" in rec.to_json_line()
