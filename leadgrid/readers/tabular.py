from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd
from pandas.errors import EmptyDataError, ParserError

"""Tabular file reader for imports (.csv / .xlsx).

First line is the header. Every cell is read as a string with pandas' NA
parsing switched off, so literal values like "NA" or "null" survive as text.
Fully empty lines are dropped; remaining missing cells become "".
"""

__all__ = [
    "SUPPORTED_SUFFIXES",
    "TabularData",
    "TabularReadError",
    "read_tabular_file",
]

SUPPORTED_SUFFIXES = (".csv", ".xlsx")


class TabularReadError(Exception):
    """File missing, unsupported, unparsable or without a header."""


@dataclass
class TabularData:
    headers: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)  # ヘッダ名 -> 値

    def __len__(self) -> int:
        return len(self.rows)


def _read_frame(path: Path) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
    # 先頭シートのみ対象
    return pd.read_excel(path, sheet_name=0, dtype=str, keep_default_na=False, engine="openpyxl")


def read_tabular_file(path: Path) -> TabularData:
    """Read a CSV or XLSX file into header names and string rows.

    Raises:
        TabularReadError: see class docstring
    """
    if not path.exists():
        raise TabularReadError(f"file not found: {path}")
    if path.suffix.lower() not in SUPPORTED_SUFFIXES:
        raise TabularReadError(f"unsupported file type: {path.suffix or path.name}")
    try:
        df = _read_frame(path)
    except EmptyDataError as e:
        raise TabularReadError(f"could not detect columns in {path.name}") from e
    except (ParserError, ValueError, OSError) as e:
        raise TabularReadError(f"failed to parse {path.name}: {e}") from e

    headers = [str(c).strip() for c in df.columns]
    if not headers or all(h == "" or h.startswith("Unnamed:") for h in headers):
        raise TabularReadError(f"could not detect columns in {path.name}")

    df = df.fillna("")
    rows: list[dict[str, str]] = []
    for values in df.itertuples(index=False, name=None):
        cells = ["" if v is None else str(v) for v in values]
        if all(c.strip() == "" for c in cells):
            continue
        rows.append(dict(zip(headers, cells, strict=False)))
    return TabularData(headers=headers, rows=rows)
