"""Domain models for the leadgrid workspace engine.

Entities mirror the persisted workspace tables; result models carry batch
outcomes, progress and job summaries.
"""

from .batch_result import BatchProgress, BatchResult, ItemOutcome, JobSummary
from .error_record import ErrorRecord
from .workspace import (
    CellValue,
    ColumnDefinition,
    GridRow,
    OutputType,
    Row,
    TableType,
    Workspace,
    is_blank,
)

__all__ = [
    # Workspace entities
    "Workspace",
    "ColumnDefinition",
    "Row",
    "CellValue",
    "GridRow",
    "TableType",
    "OutputType",
    "is_blank",
    # Batch results
    "ItemOutcome",
    "BatchProgress",
    "BatchResult",
    "JobSummary",
    "ErrorRecord",
]
