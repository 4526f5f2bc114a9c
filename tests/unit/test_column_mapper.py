from __future__ import annotations

import asyncio

import pytest

from leadgrid.models.workspace import ColumnDefinition, TableType
from leadgrid.services.column_mapper import (
    CREATE_NEW,
    SKIP,
    ColumnCreationError,
    ColumnResolver,
    MappingValidationError,
    MapToColumn,
    auto_map,
    map_column,
    normalize_label,
    validate_companies_mapping,
)


def _col(cid: str, name: str, position: int = 0) -> ColumnDefinition:
    return ColumnDefinition(id=cid, workspace_id="w", name=name, field_key=name.lower(), position=position)


PEOPLE = [
    _col("fn", "First Name", 0),
    _col("ln", "Last Name", 1),
    _col("em", "Email", 2),
    _col("co", "Company", 3),
]


def test_normalize_label():
    assert normalize_label("E-Mail Address") == "emailaddress"
    assert normalize_label("  LinkedIn URL ") == "linkedinurl"
    assert normalize_label("---") == ""


@pytest.mark.parametrize(
    "label,expected",
    [
        ("first name", MapToColumn("fn")),
        ("FIRST_NAME", MapToColumn("fn")),
        ("E-Mail Address", MapToColumn("em")),
        ("Company Name", MapToColumn("co")),
        ("Phone", CREATE_NEW),
    ],
)
def test_map_column(label, expected):
    assert map_column(label, PEOPLE) == expected


def test_map_column_is_deterministic_and_first_match_wins():
    cols = [_col("a", "Company"), _col("b", "Company Name")]
    assert map_column("Company Name", cols) == MapToColumn("a")
    assert map_column("Company Name", cols) == map_column("Company Name", cols)


def test_contained_label_matches_longer_column_name():
    cols = [_col("cn", "Company Name")]
    assert map_column("Company", cols) == MapToColumn("cn")


def test_empty_normalized_label_never_matches():
    assert map_column("???", PEOPLE) is CREATE_NEW
    assert map_column("", PEOPLE) is CREATE_NEW


def test_auto_map():
    mapping = auto_map(["Email", "Notes"], PEOPLE)
    assert mapping == {"Email": MapToColumn("em"), "Notes": CREATE_NEW}


def test_companies_mapping_requires_name_or_website():
    cols = [_col("cn", "Company Name"), _col("ws", "Website", 1), _col("ind", "Industry", 2)]
    with pytest.raises(MappingValidationError):
        validate_companies_mapping(TableType.COMPANIES, {"Sector": MapToColumn("ind")}, cols)
    validate_companies_mapping(TableType.COMPANIES, {"URL": MapToColumn("ws")}, cols)
    validate_companies_mapping(TableType.COMPANIES, {"Website (main)": CREATE_NEW}, cols)
    # skipped fields do not count
    with pytest.raises(MappingValidationError):
        validate_companies_mapping(TableType.COMPANIES, {"Company Name": SKIP}, cols)


def test_people_mapping_is_not_validated():
    validate_companies_mapping(TableType.PEOPLE, {}, PEOPLE)


def test_resolver_creates_each_new_label_once():
    created: list[str] = []

    async def create_column(label: str) -> ColumnDefinition:
        created.append(label)
        return _col(f"new-{len(created)}", label, 10 + len(created))

    resolver = ColumnResolver(create_column)

    async def scenario():
        first = await resolver.resolve({"Email": MapToColumn("em"), "Phone": CREATE_NEW, "Junk": SKIP})
        second = await resolver.resolve({"Phone": CREATE_NEW})
        return first, second

    first, second = asyncio.run(scenario())

    assert created == ["Phone"]
    assert first == {"Email": "em", "Phone": "new-1"}
    assert second == {"Phone": "new-1"}
    assert "Junk" not in first


def test_resolver_wraps_creation_failure():
    async def create_column(label: str) -> ColumnDefinition:
        raise RuntimeError("store down")

    with pytest.raises(ColumnCreationError):
        asyncio.run(ColumnResolver(create_column).resolve({"Phone": CREATE_NEW}))
