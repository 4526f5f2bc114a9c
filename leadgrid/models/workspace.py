from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

"""Workspace domain models.

Workspace / ColumnDefinition / Row / CellValue mirror the persisted tables
(`workspaces`, `column_definitions`, `rows`, `cell_values`). GridRow is the
derived projection that every bulk operation reads from.

Blank handling is centralised in `is_blank()`; callers must not test
`None` / `""` themselves.
"""

__all__ = [
    "TableType",
    "OutputType",
    "Workspace",
    "ColumnDefinition",
    "Row",
    "CellValue",
    "GridRow",
    "DefaultColumn",
    "DEFAULT_COLUMNS",
    "DEFAULT_COLUMN_WIDTH",
    "EMAIL_FIELD_KEY",
    "EMAIL_STATUS_FIELD_KEY",
    "derive_field_key",
    "is_blank",
    "is_protected_column",
]

DEFAULT_COLUMN_WIDTH = 200
EMAIL_FIELD_KEY = "email"
EMAIL_STATUS_FIELD_KEY = "email_status"

_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")


class TableType(Enum):
    PEOPLE = "people"
    COMPANIES = "companies"


class OutputType(Enum):
    """Output constraint handed to the text-generation provider."""
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"


def is_blank(value: Any) -> bool:
    """True for None, empty string and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def derive_field_key(name: str) -> str:
    """Stable field key from a display name.

    >>> derive_field_key("LinkedIn URL")
    'linkedin_url'
    >>> derive_field_key("  E-Mail  Address! ")
    'e_mail_address'
    """
    return _NON_ALNUM_RUN.sub("_", name.lower()).strip("_")


@dataclass(frozen=True)
class DefaultColumn:
    name: str
    field_key: str


def _defaults(*names: str) -> tuple[DefaultColumn, ...]:
    return tuple(DefaultColumn(name=n, field_key=derive_field_key(n)) for n in names)


# テーブル種別ごとの既定列 (削除不可)
DEFAULT_COLUMNS: dict[TableType, tuple[DefaultColumn, ...]] = {
    TableType.PEOPLE: _defaults(
        "First Name", "Last Name", "Email", "Company", "Title", "LinkedIn URL", "Email Status"
    ),
    TableType.COMPANIES: _defaults(
        "Company Name", "Website", "Industry", "Employee Count", "Location", "Description"
    ),
}


def is_protected_column(field_key: str, table_type: TableType) -> bool:
    return any(dc.field_key == field_key for dc in DEFAULT_COLUMNS[table_type])


@dataclass(frozen=True)
class Workspace:
    id: str
    name: str
    table_type: TableType
    created_at: str

    @staticmethod
    def from_record(record: dict[str, Any]) -> Workspace:
        return Workspace(
            id=str(record["id"]),
            name=record["name"],
            table_type=TableType(record["table_type"]),
            created_at=str(record.get("created_at") or ""),
        )


@dataclass(frozen=True)
class ColumnDefinition:
    """Column of a workspace.

    AI columns carry a prompt and an output type; plain columns carry neither.
    """
    id: str
    workspace_id: str
    name: str
    field_key: str
    position: int
    width: int = DEFAULT_COLUMN_WIDTH
    is_ai_column: bool = False
    ai_prompt: str | None = None
    output_type: OutputType | None = None
    created_at: str = ""

    def __post_init__(self) -> None:
        if self.is_ai_column:
            if is_blank(self.ai_prompt):
                raise ValueError(f"AI column '{self.name}' requires a prompt")
            if self.output_type is None:
                object.__setattr__(self, "output_type", OutputType.TEXT)
        elif self.ai_prompt is not None or self.output_type is not None:
            raise ValueError(f"column '{self.name}' is not an AI column but has a prompt/output type")

    @staticmethod
    def from_record(record: dict[str, Any]) -> ColumnDefinition:
        output_type = record.get("output_type")
        is_ai = bool(record.get("is_ai_column"))
        return ColumnDefinition(
            id=str(record["id"]),
            workspace_id=str(record["workspace_id"]),
            name=record["name"],
            field_key=record.get("field_key") or derive_field_key(record["name"]),
            position=int(record["position"]),
            width=int(record.get("width") or DEFAULT_COLUMN_WIDTH),
            is_ai_column=is_ai,
            ai_prompt=record.get("ai_prompt") if is_ai else None,
            output_type=OutputType(output_type) if is_ai and output_type else None,
            created_at=str(record.get("created_at") or ""),
        )


@dataclass(frozen=True)
class Row:
    id: str
    workspace_id: str
    created_at: str = ""

    @staticmethod
    def from_record(record: dict[str, Any]) -> Row:
        return Row(
            id=str(record["id"]),
            workspace_id=str(record["workspace_id"]),
            created_at=str(record.get("created_at") or ""),
        )


@dataclass(frozen=True)
class CellValue:
    row_id: str
    column_id: str
    value: str
    id: str = ""  # 楽観的更新直後は空

    @staticmethod
    def from_record(record: dict[str, Any]) -> CellValue:
        return CellValue(
            row_id=str(record["row_id"]),
            column_id=str(record["column_id"]),
            value="" if record.get("value") is None else str(record["value"]),
            id=str(record.get("id") or ""),
        )


@dataclass
class GridRow:
    """Flattened view of one row: column id -> value."""
    row_id: str
    values: dict[str, str] = field(default_factory=dict)

    def get(self, column_id: str) -> str | None:
        return self.values.get(column_id)
