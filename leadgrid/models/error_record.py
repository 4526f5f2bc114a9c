from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for item-level failure logging.

One record per failed batch item (or per setup failure, with row_id=None).
Serialized as one JSON object per line; the key set is fixed.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        job: Bulk job that produced the error (import / enrich / verify / ...)
        row_id: Affected row id. None for job-level errors where no row applies
        column_id: Target column id, if any
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Error message from the store or provider
    """
    timestamp: str  # ISO8601 UTC
    job: str
    row_id: str | None  # 行不明の場合 None
    column_id: str | None
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(
        job: str,
        row_id: str | None,
        column_id: str | None,
        error_type: str,
        message: str,
    ) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            job=job,
            row_id=row_id,
            column_id=column_id,
            error_type=error_type,
            message=message,
        )

    @staticmethod
    def from_exception(
        job: str, row_id: str | None, column_id: str | None, error: BaseException
    ) -> ErrorRecord:
        """Build a record, deriving error_type from the exception class name."""
        return ErrorRecord.create(
            job=job,
            row_id=row_id,
            column_id=column_id,
            error_type=_upper_snake(type(error).__name__),
            message=str(error) or type(error).__name__,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)


def _upper_snake(name: str) -> str:
    out: list[str] = []
    for i, ch in enumerate(name):
        if ch.isupper() and i > 0 and not name[i - 1].isupper():
            out.append("_")
        out.append(ch.upper())
    return "".join(out)
