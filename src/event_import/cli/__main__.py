from __future__ import annotations

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config, resolve_dsn, resolve_owner
from ..db.store import PostgresStore, Store, StoreError
from ..excel.reader import SpreadsheetReadError, read_records, write_template
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..logging.init import get_logger, log_summary, setup_logging
from ..models.config_models import ImportConfig
from ..services.committer import BatchCommitter
from ..services.pipeline import ImportPipeline, ImportPipelineError
from ..services.progress import CommitProgressBar
from ..services.snapshot import SnapshotLoadError
from ..services.strategies import ENTITIES, UnknownEntityError, get_strategy
from ..services.summary import render_summary_line

"""CLI entrypoint.

    event-import import ENTITY FILE [--config PATH] [--owner ID] [--dry-run] [--debug]
    event-import template ENTITY OUT

Exit codes: 0 every row succeeded, 2 at least one row failed, 1 fatal
(config, unreadable file, reference load or connection failure).
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True: .env の値で既存環境変数を上書き (接続情報を最優先化)。
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _open_store(dsn: str, config: ImportConfig) -> Store:
    # 同時 create 数 (chunk) 分の接続を確保
    maxconn = max(config.commit.max_workers or config.commit.chunk_size, 1)
    return PostgresStore.connect(dsn, maxconn=maxconn)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="event-import", description="Spreadsheet bulk import for event data")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Import a spreadsheet")
    imp.add_argument("entity", help=f"one of: {', '.join(ENTITIES)}")
    imp.add_argument("file", type=Path, help="Excel workbook (.xlsx)")
    imp.add_argument("--config", type=Path, default=None, help=f"config YAML (default {DEFAULT_CONFIG_PATH})")
    imp.add_argument("--owner", default=None, help="acting user id stamped on created records")
    imp.add_argument("--dry-run", action="store_true", help="Validate only; nothing is written")
    imp.add_argument("--debug", action="store_true", dest="debug_sub", help="Enable debug logging")

    tpl = sub.add_parser("template", help="Write a sample upload workbook")
    tpl.add_argument("entity", help=f"one of: {', '.join(ENTITIES)}")
    tpl.add_argument("out", type=Path, help="output .xlsx path")
    return p.parse_args(argv)


def _load_config(path: Path | None) -> ImportConfig:
    if path is not None:
        return load_config(path)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return ImportConfig()


def _template(args: argparse.Namespace) -> int:
    logger = get_logger()
    try:
        strategy = get_strategy(args.entity)
    except UnknownEntityError as e:
        logger.error(str(e))
        return EXIT_FATAL
    out = write_template(strategy, args.out)
    logger.info(f"template written: {out}")
    return EXIT_SUCCESS_ALL


def _import(args: argparse.Namespace) -> int:
    logger = get_logger()
    try:
        cfg = _load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    errors = ErrorLogBuffer(cfg.error_log_dir)
    file_name = args.file.name

    def fatal(message: str, error_type: str) -> int:
        logger.error(message)
        errors.append(ErrorRecord.create(file_name, args.entity, -1, error_type, message))
        path = errors.flush()
        if path is not None:
            logger.info(f"error log: {path}")
        return EXIT_FATAL

    try:
        strategy = get_strategy(args.entity)
    except UnknownEntityError as e:
        logger.error(str(e))
        return EXIT_FATAL

    try:
        records = read_records(args.file, cfg.sheet_name)
    except SpreadsheetReadError as e:
        return fatal(f"read: {e}", "FILE_ERROR")
    logger.info(f"Read {len(records)} rows from {args.file} (entity={strategy.entity})")

    try:
        dsn = resolve_dsn(cfg)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    owner = resolve_owner(cfg, args.owner)
    if owner is None:
        logger.warning("no owner configured; created records will not be scoped to a user")

    try:
        store = _open_store(dsn, cfg)
    except StoreError as e:
        return fatal(f"database: {e}", "CONNECTION_ERROR")

    committer = BatchCommitter(
        chunk_size=cfg.commit.chunk_size,
        pause_seconds=cfg.commit.pause_seconds,
        max_workers=cfg.commit.max_workers,
    )
    pipeline = ImportPipeline(store, strategy, committer=committer, owner=owner)
    try:
        with CommitProgressBar(len(records), description=strategy.entity) as bar:
            result = pipeline.run(records, dry_run=args.dry_run, on_progress=bar)
    except SnapshotLoadError as e:
        return fatal(f"reference data: {e}", "SNAPSHOT_LOAD_ERROR")
    except ImportPipelineError as e:
        return fatal(f"pipeline: {e}", "PIPELINE_ERROR")
    finally:
        close = getattr(store, "close", None)
        if callable(close):
            close()

    for message in result.errors:
        logger.error(message)
    if result.dry_run:
        logger.info(f"dry run: {result.succeeded} {strategy.label} row(s) would be created")
    elif result.partially_applied:
        logger.warning(f"partially applied: {result.succeeded} created, {result.failed} failed (no rollback)")

    errors.add_result(file_name, result)
    path = errors.flush()
    if path is not None:
        logger.info(f"error log: {path}")

    # log_summary が "SUMMARY " ラベルを付与する
    log_summary(render_summary_line(result).removeprefix("SUMMARY "))

    if result.failed > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    # None のときのみ sys.argv を読む ([] はそのまま使う)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    setup_logging(debug=args.debug or getattr(args, "debug_sub", False))
    _load_env_file(Path(".env"), override=True)

    if args.command == "template":
        return _template(args)
    return _import(args)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
