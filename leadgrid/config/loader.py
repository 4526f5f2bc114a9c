from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from dotenv import load_dotenv
from jsonschema.exceptions import ValidationError

"""Config loader.

Responsibilities:
- Load YAML config (default: config/leadgrid.yml)
- Validate against the packaged JSON schema
- Apply defaults for batching and provider settings
- Pull secrets (API keys, DSN) from the environment, optionally seeded from .env
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/leadgrid.yml")

DEFAULT_ENRICHMENT_BATCH_SIZE = 5
DEFAULT_INSERT_BATCH_SIZE = 50
DEFAULT_SELECT_IN_CHUNK_SIZE = 500
DEFAULT_PAGE_SIZE = 1000
DEFAULT_MODEL = "sonar"
DEFAULT_TIMEOUT_SECONDS = 30.0


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None

    def resolve_dsn(self) -> str:
        """DSN with environment variables taking precedence over file values."""
        dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or self.dsn
        if dsn:
            return dsn
        host = os.getenv("PGHOST", self.host or "localhost")
        port = os.getenv("PGPORT", str(self.port) if self.port else "5432")
        user = os.getenv("PGUSER", self.user or "postgres")
        password = os.getenv("PGPASSWORD", self.password or "")
        database = os.getenv("PGDATABASE", self.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"
        return dsn


@dataclass(frozen=True)
class BatchingConfig:
    enrichment_batch_size: int = DEFAULT_ENRICHMENT_BATCH_SIZE  # AI / 検証 API 呼び出し
    insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE  # 行 + セル一括挿入
    select_in_chunk_size: int = DEFAULT_SELECT_IN_CHUNK_SIZE
    page_size: int = DEFAULT_PAGE_SIZE


@dataclass(frozen=True)
class ProviderSettings:
    default_model: str = DEFAULT_MODEL
    request_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    perplexity_base_url: str = "https://api.perplexity.ai"
    anthropic_base_url: str = "https://api.anthropic.com"
    zerobounce_base_url: str = "https://api.zerobounce.net/v2"
    apollo_base_url: str = "https://api.apollo.io/api/v1"
    perplexity_api_key: str | None = field(default=None, repr=False)
    anthropic_api_key: str | None = field(default=None, repr=False)
    zerobounce_api_key: str | None = field(default=None, repr=False)
    apollo_api_key: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class AppConfig:
    database: DatabaseConfig
    batching: BatchingConfig = field(default_factory=BatchingConfig)
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    error_log_dir: str = "./logs"


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the packaged JSON schema.

    Raises:
        ConfigError: schema file missing or unreadable, or data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_env_file(path: Path, override: bool = True) -> bool:
    """Load a .env file into os.environ. Returns True if the file existed."""
    if not path.exists():
        return False
    load_dotenv(dotenv_path=path, override=override)
    return True


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )

    b_raw = data.get("batching") or {}
    batching = BatchingConfig(
        enrichment_batch_size=b_raw.get("enrichment_batch_size", DEFAULT_ENRICHMENT_BATCH_SIZE),
        insert_batch_size=b_raw.get("insert_batch_size", DEFAULT_INSERT_BATCH_SIZE),
        select_in_chunk_size=b_raw.get("select_in_chunk_size", DEFAULT_SELECT_IN_CHUNK_SIZE),
        page_size=b_raw.get("page_size", DEFAULT_PAGE_SIZE),
    )

    p_raw = data.get("providers") or {}
    defaults = ProviderSettings()
    providers = ProviderSettings(
        default_model=p_raw.get("default_model", defaults.default_model),
        request_timeout_seconds=float(
            p_raw.get("request_timeout_seconds", defaults.request_timeout_seconds)
        ),
        perplexity_base_url=p_raw.get("perplexity_base_url", defaults.perplexity_base_url),
        anthropic_base_url=p_raw.get("anthropic_base_url", defaults.anthropic_base_url),
        zerobounce_base_url=p_raw.get("zerobounce_base_url", defaults.zerobounce_base_url),
        apollo_base_url=p_raw.get("apollo_base_url", defaults.apollo_base_url),
        perplexity_api_key=os.getenv("PERPLEXITY_API_KEY"),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
        zerobounce_api_key=os.getenv("ZEROBOUNCE_API_KEY"),
        apollo_api_key=os.getenv("APOLLO_API_KEY"),
    )

    return AppConfig(
        database=db,
        batching=batching,
        providers=providers,
        error_log_dir=data.get("error_log_dir", "./logs"),
    )
