# Shared pytest fixtures
from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

import pytest

from leadgrid.db.store import InMemoryStore
from leadgrid.logging.init import reset_logging
from leadgrid.models.workspace import TableType
from leadgrid.services.session import WorkspaceSession


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
batching:
  enrichment_batch_size: 5
  insert_batch_size: 2
providers:
  default_model: sonar
error_log_dir: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "leadgrid.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def offline(monkeypatch):
    """In-memory store for the CLI; no provider keys from the host environment."""
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    for key in ("PERPLEXITY_API_KEY", "ANTHROPIC_API_KEY", "ZEROBOUNCE_API_KEY", "APOLLO_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    reset_logging()


@pytest.fixture()
def contacts_csv(temp_workdir: Path) -> Path:
    f = temp_workdir / "data" / "contacts.csv"
    f.write_text(
        "First Name,Last Name,E-Mail Address,Company,Favourite Colour\n"
        "Ada,Lovelace,ada@example.com,Analytical,green\n"
        "Alan,Turing,alan@example.com,Bletchley,\n"
        ",,,,\n"
        "Grace,Hopper,,Navy,NA\n",
        encoding="utf-8",
    )
    return f


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def people_session(store: InMemoryStore) -> WorkspaceSession:
    session = WorkspaceSession(store)
    asyncio.run(session.create_workspace(TableType.PEOPLE, name="Leads"))
    return session


@pytest.fixture()
def companies_session(store: InMemoryStore) -> WorkspaceSession:
    session = WorkspaceSession(store)
    asyncio.run(session.create_workspace(TableType.COMPANIES, name="Accounts"))
    return session
