from __future__ import annotations

import asyncio
import typing

import pytest

from leadgrid.db.store import InMemoryStore
from leadgrid.logging.error_log import ErrorLogBuffer
from leadgrid.models.workspace import ColumnDefinition, GridRow, OutputType, TableType
from leadgrid.providers.ai import EnrichmentRequest
from leadgrid.providers.email_validation import ValidationResult
from leadgrid.providers.errors import ProviderError
from leadgrid.services import enrichment
from leadgrid.services.enrichment import (
    EnrichmentSetupError,
    build_row_context,
    run_ai_enrichment,
    run_email_verification,
    select_enrichment_rows,
    select_verification_rows,
)
from leadgrid.services.session import WorkspaceSession


class FakeGenerator:
    def __init__(self, answers: dict[str, str] | None = None, fail_for: set[str] = frozenset()) -> None:
        self.answers = answers or {}
        self.fail_for = fail_for
        self.requests: list[EnrichmentRequest] = []

    async def generate(self, request: EnrichmentRequest) -> str:
        self.requests.append(request)
        await asyncio.sleep(0)
        name = request.context.get("First Name", "")
        if name in self.fail_for:
            raise ProviderError("perplexity", "API error (500): boom", status_code=500)
        return self.answers.get(name, "N/A")


class FakeValidator:
    def __init__(self, statuses: dict[str, ValidationResult]) -> None:
        self.statuses = statuses
        self.seen: list[str] = []

    async def validate(self, email: str) -> ValidationResult:
        self.seen.append(email)
        if email not in self.statuses:
            raise ProviderError("zerobounce", "Invalid API Key")
        return self.statuses[email]


def _col(cid: str, name: str, **kw) -> ColumnDefinition:
    return ColumnDefinition(id=cid, workspace_id="w", name=name, field_key=name.lower(), position=0, **kw)


async def _seed(session: WorkspaceSession, people: list[dict[str, str]]) -> list[str]:
    row_ids = []
    for person in people:
        row = await session.add_row()
        for key, value in person.items():
            await session.upsert_cell_value(row.id, session.column_by_field_key(key).id, value)
        row_ids.append(row.id)
    return row_ids


def test_select_enrichment_rows_limit_then_skip_existing():
    col = _col("ai", "Seniority", is_ai_column=True, ai_prompt="How senior?")
    rows = [GridRow("r1", {"ai": "x"}), GridRow("r2"), GridRow("r3", {"ai": " "}), GridRow("r4")]
    assert [r.row_id for r in select_enrichment_rows(rows, col, limit=3)] == ["r2", "r3"]
    assert [r.row_id for r in select_enrichment_rows(rows, col, skip_existing=False)] == ["r1", "r2", "r3", "r4"]


def test_select_verification_rows_filters():
    email, status = _col("e", "Email"), _col("s", "Email Status")
    rows = [
        GridRow("r1", {"e": "a@x.io", "s": "valid"}),
        GridRow("r2", {"e": "b@x.io"}),
        GridRow("r3", {}),
        GridRow("r4", {"e": "d@x.io"}),
    ]
    assert [r.row_id for r in select_verification_rows(rows, email, status)] == ["r2", "r4"]
    assert [r.row_id for r in select_verification_rows(rows, email, status, skip_verified=False, limit=2)] == [
        "r1", "r2"
    ]
    picked = select_verification_rows(rows, email, status, selected_row_ids=["r4", "r1", "r3"], skip_verified=False)
    assert [r.row_id for r in picked] == ["r1", "r4"]
    assert [r.row_id for r in select_verification_rows(rows, email, None)] == ["r1", "r2", "r4"]


def test_build_row_context_skips_ai_and_blank_values():
    cols = [_col("a", "First Name"), _col("b", "Company"), _col("c", "Score", is_ai_column=True, ai_prompt="?")]
    ctx = build_row_context(GridRow("r", {"a": "Ada", "b": "  ", "c": "9"}), cols)
    assert ctx == {"First Name": "Ada"}


def test_ai_enrichment_fills_column_and_counts_failures(people_session, tmp_path):
    generator = FakeGenerator({"Ada": "Senior", "Alan": "Lead"}, fail_for={"Grace"})
    error_log = ErrorLogBuffer(tmp_path)

    async def scenario():
        await _seed(people_session, [{"first_name": "Ada"}, {"first_name": "Alan"}, {"first_name": "Grace"}])
        col = await people_session.add_ai_column("Seniority", "How senior?", OutputType.TEXT)
        summary = await run_ai_enrichment(people_session, col.id, generator, batch_size=2, error_log=error_log)
        return col, summary

    col, summary = asyncio.run(scenario())
    assert (summary.job, summary.total, summary.succeeded, summary.failed) == ("enrich", 3, 2, 1)
    assert summary.total_groups == 2
    values = [g.get(col.id) for g in people_session.grid_rows()]
    assert values == ["Senior", "Lead", None]
    assert generator.requests[0].context == {"First Name": "Ada"}
    assert generator.requests[0].table_type is TableType.PEOPLE
    [record] = error_log.records
    assert record.job == "enrich" and record.column_id == col.id
    assert record.row_id == people_session.rows[2].id
    assert record.error_type == "PROVIDER_ERROR"


def test_ai_enrichment_skips_filled_rows(people_session):
    generator = FakeGenerator({"Alan": "Lead"})

    async def scenario():
        ids = await _seed(people_session, [{"first_name": "Ada"}, {"first_name": "Alan"}])
        col = await people_session.add_ai_column("Seniority", "How senior?")
        await people_session.upsert_cell_value(ids[0], col.id, "Founder")
        return await run_ai_enrichment(people_session, col.id, generator)

    summary = asyncio.run(scenario())
    assert summary.total == 1
    assert [r.context["First Name"] for r in generator.requests] == ["Alan"]


def test_ai_enrichment_rejects_plain_or_unknown_column(people_session):
    email = people_session.column_by_field_key("email")
    with pytest.raises(EnrichmentSetupError):
        asyncio.run(run_ai_enrichment(people_session, email.id, FakeGenerator()))
    with pytest.raises(EnrichmentSetupError):
        asyncio.run(run_ai_enrichment(people_session, "nope", FakeGenerator()))


def test_verification_writes_status(people_session):
    validator = FakeValidator({
        "ada@example.com": ValidationResult("valid"),
        "alan@example.com": ValidationResult("invalid", "mailbox_not_found"),
    })

    async def scenario():
        await _seed(people_session, [
            {"email": " ada@example.com "},
            {"email": "alan@example.com"},
            {"first_name": "NoMail"},
        ])
        return await run_email_verification(people_session, validator)

    summary = asyncio.run(scenario())
    assert (summary.job, summary.total, summary.succeeded, summary.failed) == ("verify", 2, 2, 0)
    assert validator.seen == ["ada@example.com", "alan@example.com"]
    status = people_session.column_by_field_key("email_status")
    assert [g.get(status.id) for g in people_session.grid_rows()] == [
        "valid", "invalid (mailbox_not_found)", None
    ]


def test_verification_creates_missing_status_column():
    store = InMemoryStore()
    session = WorkspaceSession(store)
    validator = FakeValidator({"ada@example.com": ValidationResult("valid")})

    async def scenario():
        await session.create_workspace(TableType.PEOPLE)
        status = session.column_by_field_key("email_status")
        session.columns = [c for c in session.columns if c.id != status.id]
        await store.delete_matching("column_definitions", {"id": status.id})
        await _seed(session, [{"email": "ada@example.com"}])
        return await run_email_verification(session, validator)

    summary = asyncio.run(scenario())
    assert summary.succeeded == 1
    created = session.column_by_name("Email Status")
    assert created is not None
    assert session.grid_rows()[0].get(created.id) == "valid"


def test_verification_with_empty_pool_creates_nothing(people_session, store):
    before = len(store.dump("column_definitions"))
    summary = asyncio.run(run_email_verification(people_session, FakeValidator({})))
    assert (summary.total, summary.succeeded, summary.failed) == (0, 0, 0)
    assert len(store.dump("column_definitions")) == before


def test_verification_requires_people_workspace(companies_session):
    with pytest.raises(EnrichmentSetupError):
        asyncio.run(run_email_verification(companies_session, FakeValidator({})))


def test_verification_status_column_creation_failure():
    store = InMemoryStore(fail_on=lambda action, table, data: action == "insert" and table == "column_definitions"
                          and data.get("name") == "Email Status")
    session = WorkspaceSession(store)

    async def scenario():
        await session.create_workspace(TableType.PEOPLE)
        status = session.column_by_field_key("email_status")
        session.columns = [c for c in session.columns if c.id != status.id]
        await _seed(session, [{"email": "ada@example.com"}])
        await run_email_verification(session, FakeValidator({}))

    with pytest.raises(EnrichmentSetupError):
        asyncio.run(scenario())


def test_run_job_signature_is_typed():
    hints = typing.get_type_hints(enrichment._run_job)
    assert hints["session"] is WorkspaceSession
    assert hints["batch_size"] is int
    assert hints["job"] is str and hints["column_id"] is str
    assert set(hints) == {
        "job", "session", "rows", "column_id", "worker", "batch_size", "on_progress", "error_log", "return",
    }
