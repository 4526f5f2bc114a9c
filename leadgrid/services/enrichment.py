from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

from ..logging.error_log import ErrorLogBuffer
from ..models.batch_result import BatchResult, BatchStatsAccumulator, JobSummary
from ..models.error_record import ErrorRecord
from ..models.workspace import (
    EMAIL_FIELD_KEY,
    EMAIL_STATUS_FIELD_KEY,
    ColumnDefinition,
    GridRow,
    OutputType,
    TableType,
    is_blank,
)
from ..providers.ai import EnrichmentRequest, TextGenerator
from ..providers.email_validation import ValidationResult
from .batch import ProgressCallback, run_batches
from .session import WorkspaceSession
from .summary import build_job_summary

"""Per-row enrichment jobs: AI column fill and email verification.

Both follow the same shape: pick the target rows from the current grid,
call an external provider once per row (DEFAULT_BATCH_SIZE rows in flight),
upsert the single returned value, then refresh the session from the store.
Setup problems raise EnrichmentSetupError before any row is touched; row
failures are counted and logged, never raised.
"""

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "EnrichmentSetupError",
    "EmailValidator",
    "select_enrichment_rows",
    "select_verification_rows",
    "build_row_context",
    "run_ai_enrichment",
    "run_email_verification",
]

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
EMAIL_STATUS_COLUMN_NAME = "Email Status"


class EnrichmentSetupError(Exception):
    """The job can not start (wrong column, missing email column, ...)."""


class EmailValidator(Protocol):
    async def validate(self, email: str) -> ValidationResult: ...


def select_enrichment_rows(
    grid_rows: Sequence[GridRow],
    column: ColumnDefinition,
    limit: int | None = None,
    skip_existing: bool = True,
) -> list[GridRow]:
    """First `limit` rows in display order, minus rows already filled when skip_existing."""
    subset = list(grid_rows if limit is None else grid_rows[:limit])
    if skip_existing:
        subset = [r for r in subset if is_blank(r.get(column.id))]
    return subset


def select_verification_rows(
    grid_rows: Sequence[GridRow],
    email_column: ColumnDefinition,
    status_column: ColumnDefinition | None,
    *,
    selected_row_ids: Sequence[str] | None = None,
    limit: int | None = None,
    skip_verified: bool = True,
) -> list[GridRow]:
    """Explicit selection (kept in display order) or the first `limit` rows,
    then rows with an email, then, if asked and the status column exists,
    rows without a status yet.
    """
    if selected_row_ids:
        wanted = set(selected_row_ids)
        pool = [r for r in grid_rows if r.row_id in wanted]
    else:
        pool = list(grid_rows if limit is None else grid_rows[:limit])
    pool = [r for r in pool if not is_blank(r.get(email_column.id))]
    if skip_verified and status_column is not None:
        pool = [r for r in pool if is_blank(r.get(status_column.id))]
    return pool


def build_row_context(grid_row: GridRow, columns: Sequence[ColumnDefinition]) -> dict[str, str]:
    context: dict[str, str] = {}
    for col in columns:
        value = grid_row.get(col.id)
        if not col.is_ai_column and not is_blank(value):
            context[col.name] = value
    return context


def _log_failures(
    error_log: ErrorLogBuffer | None,
    job: str,
    rows: Sequence[GridRow],
    column_id: str,
    result: BatchResult,
) -> None:
    for outcome in result.failures:
        assert outcome.error is not None
        logger.debug("%s failed for row %s: %s", job, rows[outcome.index].row_id, outcome.error)
        if error_log is not None:
            error_log.append(
                ErrorRecord.from_exception(job, rows[outcome.index].row_id, column_id, outcome.error)
            )


async def run_ai_enrichment(
    session: WorkspaceSession,
    column_id: str,
    generator: TextGenerator,
    *,
    limit: int | None = None,
    skip_existing: bool = True,
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_progress: ProgressCallback | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> JobSummary:
    """Fill an AI column for the selected rows.

    Raises:
        EnrichmentSetupError: target is not an AI column of the active workspace
    """
    ws = session.workspace
    column = next((c for c in session.columns if c.id == column_id), None)
    if column is None:
        raise EnrichmentSetupError(f"column not found: {column_id}")
    if not column.is_ai_column or column.ai_prompt is None:
        raise EnrichmentSetupError(f"column '{column.name}' is not an AI column")

    rows = select_enrichment_rows(session.grid_rows(), column, limit, skip_existing)
    columns = list(session.columns)
    output_type = column.output_type or OutputType.TEXT
    prompt = column.ai_prompt
    logger.info(f"enriching {len(rows)} rows of column '{column.name}'")

    async def enrich(row: GridRow) -> str:
        request = EnrichmentRequest(
            prompt=prompt,
            output_type=output_type,
            context=build_row_context(row, columns),
            table_type=ws.table_type,
        )
        value = await generator.generate(request)
        await session.upsert_cell_value(row.row_id, column.id, value)
        return value

    return await _run_job("enrich", session, rows, column.id, enrich, batch_size, on_progress, error_log)


async def run_email_verification(
    session: WorkspaceSession,
    validator: EmailValidator,
    *,
    selected_row_ids: Sequence[str] | None = None,
    limit: int | None = None,
    skip_verified: bool = True,
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_progress: ProgressCallback | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> JobSummary:
    """Verify emails and write the status into the Email Status column.

    The status column is created first if the workspace has none.

    Raises:
        EnrichmentSetupError: not a people workspace, no Email column, or the
            status column could not be created
    """
    ws = session.workspace
    if ws.table_type is not TableType.PEOPLE:
        raise EnrichmentSetupError("email verification requires a people workspace")
    email_col = session.column_by_field_key(EMAIL_FIELD_KEY)
    if email_col is None:
        raise EnrichmentSetupError("workspace has no Email column")
    status_col = session.column_by_field_key(EMAIL_STATUS_FIELD_KEY)

    rows = select_verification_rows(
        session.grid_rows(),
        email_col,
        status_col,
        selected_row_ids=selected_row_ids,
        limit=limit,
        skip_verified=skip_verified,
    )
    if not rows:
        return JobSummary(job="verify", total=0, succeeded=0, failed=0)

    if status_col is None:
        try:
            status_col = await session.add_column(EMAIL_STATUS_COLUMN_NAME)
        except Exception as e:
            raise EnrichmentSetupError(f"failed to create {EMAIL_STATUS_COLUMN_NAME} column: {e}") from e
    status_id = status_col.id
    logger.info(f"verifying {len(rows)} emails")

    async def verify(row: GridRow) -> str:
        email = (row.get(email_col.id) or "").strip()
        result = await validator.validate(email)
        value = result.as_cell_value()
        await session.upsert_cell_value(row.row_id, status_id, value)
        return value

    return await _run_job("verify", session, rows, status_id, verify, batch_size, on_progress, error_log)


async def _run_job(
    job: str,
    session: WorkspaceSession,
    rows: Sequence[GridRow],
    column_id: str,
    worker: Callable[[GridRow], Awaitable[str]],
    batch_size: int,
    on_progress: ProgressCallback | None,
    error_log: ErrorLogBuffer | None,
) -> JobSummary:
    stats = BatchStatsAccumulator()
    started = time.perf_counter()
    result = await run_batches(
        rows,
        worker,
        batch_size=batch_size,
        on_progress=on_progress,
        metrics_callback=stats.add,
    )
    elapsed = time.perf_counter() - started
    _log_failures(error_log, job, rows, column_id, result)
    await session.refresh()
    summary = build_job_summary(job, result, elapsed, stats)
    logger.info(summary.message)
    return summary
