from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from leadgrid.config.loader import AppConfig, ConfigError, load_config, load_env_file
from leadgrid.db.postgres import PostgresStore, connect
from leadgrid.db.store import InMemoryStore, Store, StoreError
from leadgrid.logging.error_log import ErrorLogBuffer
from leadgrid.logging.init import log_summary, setup_logging
from leadgrid.models.batch_result import JobSummary
from leadgrid.models.workspace import ColumnDefinition, OutputType, TableType
from leadgrid.providers import (
    ApolloClient,
    ProviderError,
    ZeroBounceClient,
    create_http_client,
    create_text_generator,
)
from leadgrid.readers.tabular import TabularReadError
from leadgrid.services.column_mapper import (
    CREATE_NEW,
    SKIP,
    ColumnCreationError,
    MappingDecision,
    MappingValidationError,
    MapToColumn,
)
from leadgrid.services.enrichment import (
    EnrichmentSetupError,
    run_ai_enrichment,
    run_email_verification,
)
from leadgrid.services.importer import import_contact_list, import_file
from leadgrid.services.progress import ProgressTracker
from leadgrid.services.session import (
    ColumnNotFoundError,
    ProtectedColumnError,
    WorkspaceNotFoundError,
    WorkspaceSession,
)
from leadgrid.services.summary import render_summary_line

"""Command-line entry point.

Exit codes:
- 0: every item succeeded (or nothing to do)
- 2: partial failure (some items failed; see the error log)
- 1: fatal / setup failure (config, DB, unknown workspace, invalid mapping, ...)

Bulk commands end with a SUMMARY line. Item errors go to
`<error_log_dir>/errors-YYYYMMDD-HHMMSS.log` as JSON Lines.
"""

__all__ = [
    "main",
    "EXIT_SUCCESS_ALL",
    "EXIT_PARTIAL_FAILURE",
    "EXIT_FATAL",
]

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/leadgrid.yml")

# 開始前に失敗したことを示す例外 (exit 1)
SETUP_ERRORS = (
    ConfigError,
    StoreError,
    ProviderError,
    TabularReadError,
    MappingValidationError,
    ColumnCreationError,
    EnrichmentSetupError,
    WorkspaceNotFoundError,
    ColumnNotFoundError,
    ProtectedColumnError,
    ValueError,
)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="leadgrid", description="Workspace grid engine for leads")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config YAML path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    c = sub.add_parser("create-workspace", help="Create a workspace with default columns")
    c.add_argument("--type", dest="table_type", choices=[t.value for t in TableType], default="people")
    c.add_argument("--name", default="Untitled")

    c = sub.add_parser("list-workspaces", help="List workspaces")
    c.add_argument("--type", dest="table_type", choices=[t.value for t in TableType])

    c = sub.add_parser("add-column", help="Add a plain column")
    c.add_argument("--workspace", required=True)
    c.add_argument("--name", required=True)

    c = sub.add_parser("add-ai-column", help="Add an AI column")
    c.add_argument("--workspace", required=True)
    c.add_argument("--name", required=True)
    c.add_argument("--prompt", required=True)
    c.add_argument("--output-type", choices=[t.value for t in OutputType], default="text")

    for name, target_help in (("import-file", "CSV / XLSX file"), ("import-list", "saved contact list id")):
        c = sub.add_parser(name, help=f"Import rows from a {target_help}")
        c.add_argument("source", help=target_help)
        target = c.add_mutually_exclusive_group()
        target.add_argument("--workspace", help="Import into this workspace")
        target.add_argument(
            "--new-workspace",
            dest="table_type",
            choices=[t.value for t in TableType],
            help="Create a workspace of this type and import into it",
        )
        c.add_argument(
            "--map",
            action="append",
            default=[],
            metavar="LABEL=TARGET",
            help="Override a mapping: TARGET is a column name or id, 'new' or 'skip'",
        )

    sub.add_parser("list-contact-lists", help="List saved contact lists")

    c = sub.add_parser("enrich", help="Run an AI column")
    c.add_argument("--workspace", required=True)
    c.add_argument("--column", required=True, help="AI column name or id")
    c.add_argument("--model", help="sonar | sonar-pro | claude-sonnet")
    c.add_argument("--limit", type=int, help="Only the first N rows")
    c.add_argument("--overwrite", action="store_true", help="Also re-run rows that already have a value")

    c = sub.add_parser("verify-emails", help="Verify email addresses")
    c.add_argument("--workspace", required=True)
    c.add_argument("--rows", nargs="+", help="Only these row ids")
    c.add_argument("--limit", type=int, help="Only the first N rows")
    c.add_argument("--reverify", action="store_true", help="Also re-check rows that already have a status")

    c = sub.add_parser("delete-column", help="Delete a non-default column and its values")
    c.add_argument("--workspace", required=True)
    c.add_argument("--column", required=True, help="Column name or id")

    c = sub.add_parser("delete-rows", help="Delete rows and their values")
    c.add_argument("--workspace", required=True)
    c.add_argument("row_ids", nargs="+")
    return p


@contextmanager
def _open_store(cfg: AppConfig) -> Iterator[Store]:
    """Yield the store for this run.

    DISABLE_DB_CONNECT=1 selects a throwaway in-memory store (tests, dry runs).
    """
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logging.getLogger("leadgrid").debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> in-memory store")
        yield InMemoryStore(
            row_cap=cfg.batching.page_size,
            select_in_chunk_size=cfg.batching.select_in_chunk_size,
        )
        return
    with connect(cfg.database.resolve_dsn()) as conn:  # pragma: no cover (needs a live server)
        yield PostgresStore(
            conn,
            page_size=cfg.batching.page_size,
            select_in_chunk_size=cfg.batching.select_in_chunk_size,
        )


def _resolve_column(session: WorkspaceSession, ref: str) -> ColumnDefinition:
    col = next((c for c in session.columns if c.id == ref), None) or session.column_by_name(ref)
    if col is None:
        raise ColumnNotFoundError(f"column not found: {ref}")
    return col


def _parse_overrides(session: WorkspaceSession, specs: Sequence[str]) -> dict[str, MappingDecision]:
    overrides: dict[str, MappingDecision] = {}
    for spec in specs:
        label, sep, target = spec.partition("=")
        if not sep or not label.strip():
            raise MappingValidationError(f"invalid mapping override: {spec!r} (expected LABEL=TARGET)")
        target = target.strip()
        if target.lower() == "skip":
            overrides[label.strip()] = SKIP
        elif target.lower() == "new":
            overrides[label.strip()] = CREATE_NEW
        else:
            try:
                overrides[label.strip()] = MapToColumn(_resolve_column(session, target).id)
            except ColumnNotFoundError as e:
                raise MappingValidationError(str(e)) from e
    return overrides


def _finish_job(summary: JobSummary, error_log: ErrorLogBuffer, started: float) -> int:
    logger = logging.getLogger("leadgrid")
    if summary.total_groups:
        logger.info(
            f"groups={summary.total_groups} avg_group_sec={summary.avg_group_seconds:.3f} "
            f"p95_group_sec={summary.p95_group_seconds:.3f}"
        )
    counts = error_log.counts_by_type()
    if counts:
        logger.warning("failures by type: " + " ".join(f"{k}={v}" for k, v in counts.items()))
    path = error_log.flush()
    if path is not None:
        logger.info(f"error log: {path}")
    # 表示する経過時間はセットアップを含む全体
    line = render_summary_line(
        JobSummary(
            job=summary.job,
            total=summary.total,
            succeeded=summary.succeeded,
            failed=summary.failed,
            elapsed_seconds=time.perf_counter() - started,
        )
    )
    log_summary(line[len("SUMMARY "):])
    return EXIT_PARTIAL_FAILURE if summary.partial_failure else EXIT_SUCCESS_ALL


async def _open_workspace(session: WorkspaceSession, args: argparse.Namespace, name: str) -> None:
    if getattr(args, "workspace", None):
        await session.select_workspace(args.workspace)
    else:
        await session.create_workspace(TableType(args.table_type or "people"), name=name)


async def _dispatch(args: argparse.Namespace, cfg: AppConfig, store: Store) -> int:
    logger = logging.getLogger("leadgrid")
    started = time.perf_counter()
    if isinstance(store, PostgresStore):  # pragma: no cover
        await store.ensure_schema()
    session = WorkspaceSession(store, insert_batch_size=cfg.batching.insert_batch_size)
    error_log = ErrorLogBuffer(Path(cfg.error_log_dir))
    try:
        await session.load_workspaces()
        cmd = args.command

        if cmd == "create-workspace":
            ws = await session.create_workspace(TableType(args.table_type), name=args.name)
            logger.info(f"workspace {ws.id} {ws.table_type.value} {ws.name}")
            return EXIT_SUCCESS_ALL

        if cmd == "list-workspaces":
            table_type = TableType(args.table_type) if args.table_type else None
            for ws in session.list_workspaces(table_type):
                logger.info(f"workspace {ws.id} {ws.table_type.value} {ws.name}")
            return EXIT_SUCCESS_ALL

        if cmd == "add-column":
            await session.select_workspace(args.workspace)
            col = await session.add_column(args.name)
            logger.info(f"column {col.id} {col.field_key} position={col.position}")
            return EXIT_SUCCESS_ALL

        if cmd == "add-ai-column":
            await session.select_workspace(args.workspace)
            col = await session.add_ai_column(args.name, args.prompt, OutputType(args.output_type))
            logger.info(f"column {col.id} {col.field_key} position={col.position} ai=true")
            return EXIT_SUCCESS_ALL

        if cmd == "delete-column":
            await session.select_workspace(args.workspace)
            await session.delete_column(_resolve_column(session, args.column).id)
            return EXIT_SUCCESS_ALL

        if cmd == "delete-rows":
            await session.select_workspace(args.workspace)
            removed = await session.delete_rows(args.row_ids)
            logger.info(f"deleted {removed} rows")
            return EXIT_SUCCESS_ALL

        async with create_http_client(cfg.providers) as client:
            if cmd == "list-contact-lists":
                apollo = ApolloClient(client, cfg.providers.apollo_api_key, base_url=cfg.providers.apollo_base_url)
                for cl in await apollo.list_contact_lists():
                    logger.info(f"list {cl.id} count={cl.count} {cl.name}")
                return EXIT_SUCCESS_ALL

            if cmd == "import-file":
                path = Path(args.source)
                await _open_workspace(session, args, name=path.stem)
                with ProgressTracker(description="Importing") as tracker:
                    summary = await import_file(
                        session,
                        path,
                        overrides=_parse_overrides(session, args.map),
                        on_progress=tracker.update_to,
                        error_log=error_log,
                    )
                    tracker.set_postfix(succeeded=summary.succeeded, failed=summary.failed)
                return _finish_job(summary, error_log, started)

            if cmd == "import-list":
                apollo = ApolloClient(client, cfg.providers.apollo_api_key, base_url=cfg.providers.apollo_base_url)
                await _open_workspace(session, args, name="Contact list import")
                with ProgressTracker(description="Importing") as tracker:
                    summary = await import_contact_list(
                        session,
                        apollo,
                        args.source,
                        overrides=_parse_overrides(session, args.map),
                        on_progress=tracker.update_to,
                        error_log=error_log,
                    )
                    tracker.set_postfix(succeeded=summary.succeeded, failed=summary.failed)
                return _finish_job(summary, error_log, started)

            if cmd == "enrich":
                await session.select_workspace(args.workspace)
                column = _resolve_column(session, args.column)
                generator = create_text_generator(args.model or cfg.providers.default_model, cfg.providers, client)
                with ProgressTracker(description="Enriching") as tracker:
                    summary = await run_ai_enrichment(
                        session,
                        column.id,
                        generator,
                        limit=args.limit,
                        skip_existing=not args.overwrite,
                        batch_size=cfg.batching.enrichment_batch_size,
                        on_progress=tracker.update_to,
                        error_log=error_log,
                    )
                    tracker.set_postfix(succeeded=summary.succeeded, failed=summary.failed)
                return _finish_job(summary, error_log, started)

            if cmd == "verify-emails":
                await session.select_workspace(args.workspace)
                validator = ZeroBounceClient(
                    client, cfg.providers.zerobounce_api_key, base_url=cfg.providers.zerobounce_base_url
                )
                with ProgressTracker(description="Verifying", unit="email") as tracker:
                    summary = await run_email_verification(
                        session,
                        validator,
                        selected_row_ids=args.rows,
                        limit=args.limit,
                        skip_verified=not args.reverify,
                        batch_size=cfg.batching.enrichment_batch_size,
                        on_progress=tracker.update_to,
                        error_log=error_log,
                    )
                    tracker.set_postfix(succeeded=summary.succeeded, failed=summary.failed)
                return _finish_job(summary, error_log, started)

        raise ValueError(f"unknown command: {cmd}")  # pragma: no cover
    finally:
        await session.aclose()


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None のときのみシステム引数を読む (テストの cli_main([]) 対策)
    if argv is None:
        argv = sys.argv[1:]
    args = _build_parser().parse_args(argv)
    if args.debug:
        setup_logging(debug=True)
        logger.debug("debug mode enabled")

    # .env を最優先で読み込む (DSN / API キー)
    load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        with _open_store(cfg) as store:
            return asyncio.run(_dispatch(args, cfg, store))
    except SETUP_ERRORS as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.error("interrupted")
        return EXIT_FATAL
    except Exception as e:  # pragma: no cover (unexpected; keep the exit code contract)
        logger.error(f"{args.command}: unexpected error: {e}")
        logger.debug("traceback", exc_info=True)
        return EXIT_FATAL
