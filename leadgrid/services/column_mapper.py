from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from ..models.workspace import ColumnDefinition, TableType

"""Fuzzy mapping of incoming field labels (CSV headers, contact fields) to
workspace columns.

Matching is on normalized labels (lowercase, only [a-z0-9] kept): the first
column, in the given column order, whose normalized name equals, contains,
or is contained by the normalized label wins. Anything unmatched is proposed
as a new column. The caller may override any decision before import; the
reviewed mapping is then resolved to concrete column ids exactly once by
ColumnResolver, before any row is written.
"""

__all__ = [
    "MapToColumn",
    "MappingAction",
    "CREATE_NEW",
    "SKIP",
    "MappingDecision",
    "MappingValidationError",
    "ColumnCreationError",
    "normalize_label",
    "map_column",
    "auto_map",
    "validate_companies_mapping",
    "ColumnResolver",
]

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


class MappingValidationError(Exception):
    """Reviewed mapping is not acceptable for the target workspace."""


class ColumnCreationError(Exception):
    """A column required by the mapping could not be created."""


@dataclass(frozen=True)
class MapToColumn:
    column_id: str


class MappingAction(Enum):
    CREATE_NEW = "create_new"
    SKIP = "skip"


CREATE_NEW = MappingAction.CREATE_NEW
SKIP = MappingAction.SKIP

MappingDecision = MapToColumn | MappingAction


def normalize_label(label: str) -> str:
    return _NON_ALNUM.sub("", label.lower())


def map_column(label: str, columns: Sequence[ColumnDefinition]) -> MappingDecision:
    """Propose a decision for one label.

    >>> from leadgrid.models.workspace import ColumnDefinition
    >>> cols = [ColumnDefinition(id="c1", workspace_id="w", name="Company Name", field_key="company_name", position=0)]
    >>> map_column("Company", cols)
    MapToColumn(column_id='c1')
    >>> map_column("???", cols)
    <MappingAction.CREATE_NEW: 'create_new'>
    """
    normalized = normalize_label(label)
    if not normalized:
        # 空文字はあらゆる列名に含まれてしまうため照合しない
        return CREATE_NEW
    for col in columns:
        col_norm = normalize_label(col.name)
        if not col_norm:
            continue
        if col_norm == normalized or normalized in col_norm or col_norm in normalized:
            return MapToColumn(col.id)
    return CREATE_NEW


def auto_map(labels: Iterable[str], columns: Sequence[ColumnDefinition]) -> dict[str, MappingDecision]:
    return {label: map_column(label, columns) for label in labels}


def validate_companies_mapping(
    table_type: TableType,
    mapping: Mapping[str, MappingDecision],
    columns: Sequence[ColumnDefinition],
) -> None:
    """A companies import must map a "Company Name" or "Website" column.

    Either an existing column whose name contains one of them, or a
    create-new label that does.

    Raises:
        MappingValidationError: neither is mapped
    """
    if table_type is not TableType.COMPANIES:
        return
    keys = ("company name", "website")
    mapped_ids = {d.column_id for d in mapping.values() if isinstance(d, MapToColumn)}
    for col in columns:
        if col.id in mapped_ids and any(k in col.name.lower() for k in keys):
            return
    for label, decision in mapping.items():
        if decision is CREATE_NEW and any(k in label.lower() for k in keys):
            return
    raise MappingValidationError(
        'Companies table requires at least "Company Name" or "Website" to be mapped.'
    )


class ColumnResolver:
    """Resolve a reviewed mapping to column ids.

    `create_column(label)` is awaited at most once per label; later lookups of
    the same label reuse the memoized id. Skipped labels are absent from the
    result.
    """

    def __init__(self, create_column: Callable[[str], Awaitable[ColumnDefinition]]) -> None:
        self._create_column = create_column
        self._created: dict[str, str] = {}

    @property
    def created(self) -> dict[str, str]:
        return dict(self._created)

    async def _column_for(self, label: str) -> str:
        if label not in self._created:
            try:
                col = await self._create_column(label)
            except Exception as e:
                raise ColumnCreationError(f"could not create column '{label}': {e}") from e
            self._created[label] = col.id
            logger.debug("created column %s for label %r", col.id, label)
        return self._created[label]

    async def resolve(self, mapping: Mapping[str, MappingDecision]) -> dict[str, str]:
        """Return {label: column_id} for every non-skipped label.

        Raises:
            ColumnCreationError: a create-new column could not be created
        """
        resolved: dict[str, str] = {}
        for label, decision in mapping.items():
            if isinstance(decision, MapToColumn):
                resolved[label] = decision.column_id
            elif decision is CREATE_NEW:
                resolved[label] = await self._column_for(label)
            elif decision is SKIP:
                continue
            else:  # pragma: no cover
                raise TypeError(f"unsupported mapping decision: {decision!r}")
        return resolved
