from __future__ import annotations

import json

import jsonschema
import pytest

from leadgrid.models.error_record import ErrorRecord
from leadgrid.providers.errors import ProviderError

"""Error log JSON Lines schema contract (fixed key set, no extra keys)."""

ERROR_LOG_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "required": ["timestamp", "job", "row_id", "column_id", "error_type", "message"],
    "properties": {
        "timestamp": {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$"},
        "job": {"type": "string"},
        "row_id": {"type": ["string", "null"]},
        "column_id": {"type": ["string", "null"]},
        "error_type": {"type": "string", "pattern": r"^[A-Z][A-Z0-9_]*$"},
        "message": {"type": "string"},
    },
}


def test_error_record_line_is_valid():
    rec = ErrorRecord.from_exception("verify", "r1", "c1", ProviderError("zerobounce", "timeout"))
    jsonschema.validate(json.loads(rec.to_json_line()), ERROR_LOG_SCHEMA)


def test_job_level_record_without_row_is_valid():
    rec = ErrorRecord.create("import", None, None, "STORE_ERROR", "insert failed")
    jsonschema.validate(json.loads(rec.to_json_line()), ERROR_LOG_SCHEMA)


def test_schema_rejects_extra_key():
    data = json.loads(ErrorRecord.create("import", None, None, "STORE_ERROR", "x").to_json_line())
    data["extra"] = "not allowed"
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(data, ERROR_LOG_SCHEMA)
