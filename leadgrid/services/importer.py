from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

from ..logging.error_log import ErrorLogBuffer
from ..models.batch_result import BatchStatsAccumulator, JobSummary
from ..models.workspace import is_blank
from ..providers.contacts import CONTACT_FIELD_LABELS
from ..readers.tabular import read_tabular_file
from .batch import ProgressCallback
from .column_mapper import (
    ColumnResolver,
    MappingDecision,
    MappingValidationError,
    auto_map,
    validate_companies_mapping,
)
from .session import WorkspaceSession
from .summary import build_job_summary

"""Bulk import into the active workspace.

Flow for both sources (tabular file, saved contact list):
1. propose a mapping label -> decision with the fuzzy mapper
2. apply caller overrides and validate (companies need Company Name or Website)
3. resolve every create-new label to a column id, once, before any write
4. insert rows + cells in groups via WorkspaceSession.bulk_insert
"""

__all__ = [
    "ContactSource",
    "plan_mapping",
    "import_records",
    "import_file",
    "import_contact_list",
    "contact_records",
]

logger = logging.getLogger(__name__)


class ContactSource(Protocol):
    async def fetch_contacts(self, list_id: str) -> list[dict[str, str]]: ...


def plan_mapping(
    session: WorkspaceSession,
    labels: Sequence[str],
    overrides: Mapping[str, MappingDecision] | None = None,
) -> dict[str, MappingDecision]:
    """Auto-map `labels` against the active workspace and apply overrides.

    Raises:
        MappingValidationError: an override names an unknown label, or the
            result is not acceptable for the table type
    """
    mapping = auto_map(labels, session.columns)
    for label, decision in (overrides or {}).items():
        if label not in mapping:
            raise MappingValidationError(f"unknown field in mapping override: {label}")
        mapping[label] = decision
    validate_companies_mapping(session.workspace.table_type, mapping, session.columns)
    return mapping


async def import_records(
    session: WorkspaceSession,
    records: Sequence[Mapping[str, str]],
    mapping: Mapping[str, MappingDecision],
    *,
    batch_size: int | None = None,
    on_progress: ProgressCallback | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> JobSummary:
    """Resolve `mapping` and insert `records` (keyed by mapping label)."""
    resolver = ColumnResolver(session.add_column)
    column_map = await resolver.resolve(mapping)
    if resolver.created:
        logger.info(f"created {len(resolver.created)} columns: {', '.join(resolver.created)}")

    stats = BatchStatsAccumulator()
    started = time.perf_counter()
    result = await session.bulk_insert(
        records,
        column_map,
        job="import",
        batch_size=batch_size,
        on_progress=on_progress,
        metrics_callback=stats.add,
        error_log=error_log,
    )
    summary = build_job_summary("import", result, time.perf_counter() - started, stats)
    logger.info(summary.message)
    return summary


async def import_file(
    session: WorkspaceSession,
    path: Path,
    *,
    overrides: Mapping[str, MappingDecision] | None = None,
    batch_size: int | None = None,
    on_progress: ProgressCallback | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> JobSummary:
    """Import a .csv / .xlsx file into the active workspace.

    Raises:
        TabularReadError: the file can not be read
        MappingValidationError: see plan_mapping
        ColumnCreationError: a new column could not be created
    """
    data = read_tabular_file(path)
    logger.info(f"read {len(data)} rows with {len(data.headers)} columns from {path.name}")
    mapping = plan_mapping(session, data.headers, overrides)
    return await import_records(
        session, data.rows, mapping, batch_size=batch_size, on_progress=on_progress, error_log=error_log
    )


def contact_records(contacts: Sequence[Mapping[str, str]]) -> tuple[list[str], list[dict[str, str]]]:
    """Relabel contacts by display label, keeping only fields some contact has.

    Returns (labels, records).
    """
    fields = [
        f for f in CONTACT_FIELD_LABELS
        if any(not is_blank(c.get(f)) for c in contacts)
    ]
    labels = [CONTACT_FIELD_LABELS[f] for f in fields]
    records = [{CONTACT_FIELD_LABELS[f]: c.get(f, "") for f in fields} for c in contacts]
    return labels, records


async def import_contact_list(
    session: WorkspaceSession,
    source: ContactSource,
    list_id: str,
    *,
    overrides: Mapping[str, MappingDecision] | None = None,
    batch_size: int | None = None,
    on_progress: ProgressCallback | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> JobSummary:
    """Import every contact of a saved list into the active workspace.

    Raises:
        ProviderError: the list could not be fetched
        MappingValidationError: see plan_mapping
    """
    contacts = await source.fetch_contacts(list_id)
    labels, records = contact_records(contacts)
    logger.info(f"fetched {len(records)} contacts from list {list_id}")
    mapping = plan_mapping(session, labels, overrides)
    return await import_records(
        session, records, mapping, batch_size=batch_size, on_progress=on_progress, error_log=error_log
    )
