from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from leadgrid.models.error_record import ErrorRecord

"""Error log buffering for bulk jobs.

Item-level failures (one ErrorRecord per failed row or insert item) are
collected while a job runs and written once, as JSON Lines, to
`<logs_dir>/errors-YYYYMMDD-HHMMSS.log` (UTC, stamped at the first write).
A run without errors leaves no file behind.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """Per-run buffer of ErrorRecords.

    Used from the event loop thread only: workers finish before the job
    appends their failures, so append() and flush() never interleave.
    """

    def __init__(self, logs_dir: Path | None = None) -> None:
        self.logs_dir = logs_dir or LOGS_DIR
        self._pending: list[ErrorRecord] = []
        self._path: Path | None = None
        self._written = 0

    def _target(self) -> Path:
        # 1 実行 1 ファイル。複数回 flush しても同じファイルへ追記する
        if self._path is None:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._path = self.logs_dir / f"errors-{stamp}.log"
        return self._path

    @property
    def path(self) -> Path | None:
        """Log file of this run, or None while nothing has been written."""
        return self._path

    @property
    def records(self) -> list[ErrorRecord]:
        return list(self._pending)

    @property
    def written(self) -> int:
        return self._written

    def append(self, record: ErrorRecord) -> None:
        self._pending.append(record)

    def extend(self, records: Iterable[ErrorRecord]) -> None:
        self._pending.extend(records)

    def counts_by_type(self) -> dict[str, int]:
        """Pending records per error_type, most frequent first."""
        return dict(Counter(r.error_type for r in self._pending).most_common())

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._pending)

    def flush(self) -> Path | None:
        """Append pending records to the run's log file and clear them.

        Returns the file path, or None when nothing was pending.
        """
        if not self._pending:
            return None
        target = self._target()
        with target.open("a", encoding="utf-8") as f:
            f.writelines(r.to_json_line() + "\n" for r in self._pending)
        self._written += len(self._pending)
        self._pending.clear()
        return target
