from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from ..config.loader import ConfigError, load_config
from ..config.manifest import load_manifest
from ..db import copy_import
from ..db.connection import db_connection
from ..db.errors import CsvImportError
from ..db.resilient_import import ResilientImporter
from ..db.schema import ensure_schema
from ..excel.converter import (
    ConversionError,
    NativeSheetConverter,
    build_sheet_converter,
    convert_and_replace,
)
from ..logging.error_log import DatabaseErrorLog, ErrorLogBuffer
from ..logging.init import enable_debug, log_summary, setup_logging
from ..models.config_models import IngestConfig
from ..models.data_source import DataSourceCode, UnknownDataSourceError
from ..models.run import CollectionRun, DataSourceFile, RunStatus
from ..models.upload import ChunkMetadata, UploadedFileMetadata
from ..services.context import IngestServices
from ..services.orchestrator import run_pipeline
from ..services.registry import build_pipeline
from ..services.sanitizer import RowSanitizer, SanitizerError
from ..services.summary import render_import_summary, render_run_summary
from ..uploads.chunk_store import ChunkStore
from ..uploads.errors import UploadError
from ..uploads.sweep import purge_expired
from ..uploads.validator import UploadValidator

"""CLI entrypoint.

    cobranza-ingest [--config PATH] [--debug] <command> ...

Exit codes:
    0  success
    1  fatal error (invalid input, stage failure, database unavailable)
    2  completed, but some rows were rejected and logged
"""

logger = logging.getLogger("cobranza_ingest.cli")

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_ROW_ERRORS = 2


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; its values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _print_json(data: dict[str, Any]) -> None:
    print(json.dumps(data, ensure_ascii=False, default=str))


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="cobranza-ingest", description="Collection notice file ingestion"
    )
    p.add_argument("--config", type=Path, default=None, help="YAML config (default config/ingest.yml)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    c = sub.add_parser("append-chunk", help="Store one chunk of an upload")
    c.add_argument("upload_id")
    c.add_argument("chunk_index", type=int)
    c.add_argument("total_chunks", type=int)
    c.add_argument("chunk_file", type=Path)
    c.add_argument("--original-name")
    c.add_argument("--size", type=int)
    c.add_argument("--mime")
    c.add_argument("--extension")

    c = sub.add_parser("discard-upload", help="Delete an upload (pending and completed)")
    c.add_argument("upload_id")

    c = sub.add_parser("sweep", help="Purge abandoned uploads")
    c.add_argument("--ttl", type=int, default=None, help="Minutes (default from config)")

    c = sub.add_parser("validate", help="Validate a stored upload")
    c.add_argument("path", help="Path relative to the storage root")
    c.add_argument("--original-name")
    c.add_argument("--size", type=int)
    c.add_argument("--mime")
    c.add_argument("--extension")
    c.add_argument("--require-extension")

    c = sub.add_parser("convert", help="Convert a workbook to CSV (one file per sheet)")
    c.add_argument("workbook", type=Path)
    c.add_argument("--output", type=Path, default=None)
    c.add_argument("--sheet", default=None)
    c.add_argument("--replace", action="store_true", help="Write <workbook>.csv and delete the workbook")

    c = sub.add_parser("sanitize", help="Write the staging-shaped CSV for a data source")
    c.add_argument("csv", type=Path)
    c.add_argument("--source", required=True)
    c.add_argument("--run-id", type=int, required=True)
    c.add_argument("--sheet", default="")

    c = sub.add_parser("import", help="Load a sanitized CSV into its staging table")
    c.add_argument("csv", type=Path)
    c.add_argument("--source", required=True)
    c.add_argument("--run-id", type=int, required=True)
    c.add_argument("--strategy", choices=("resilient", "copy"), default=None)

    c = sub.add_parser("run", help="Run the whole pipeline from a manifest")
    c.add_argument("manifest", type=Path)
    c.add_argument("--strategy", choices=("resilient", "copy"), default=None)

    sub.add_parser("init-db", help="Create staging and error log tables")
    sub.add_parser("converter-info", help="Show the native converter status")
    return p.parse_args(argv)


def _append_chunk(args: argparse.Namespace, cfg: IngestConfig) -> int:
    store = ChunkStore.from_config(cfg.storage, cfg.uploads)
    metadata = ChunkMetadata(
        original_name=args.original_name, size=args.size, mime=args.mime, extension=args.extension
    )
    result = store.append_chunk(
        args.upload_id, args.chunk_index, args.total_chunks, args.chunk_file.read_bytes(), metadata
    )
    _print_json({"completed": result.completed, "file": result.file.to_dict() if result.file else None})
    return EXIT_SUCCESS


def _discard_upload(args: argparse.Namespace, cfg: IngestConfig) -> int:
    ChunkStore.from_config(cfg.storage, cfg.uploads).discard_upload(args.upload_id)
    return EXIT_SUCCESS


def _sweep(args: argparse.Namespace, cfg: IngestConfig) -> int:
    ttl = cfg.uploads.ttl_minutes if args.ttl is None else args.ttl
    removed = purge_expired(cfg.storage.root, ttl)
    log_summary(f"sweep ttl_minutes={ttl} removed={len(removed)}")
    return EXIT_SUCCESS


def _validate(args: argparse.Namespace, cfg: IngestConfig) -> int:
    stored = cfg.storage.root / args.path
    raw: dict[str, Any] = {
        "path": args.path,
        "original_name": args.original_name or Path(args.path).name,
        "size": args.size if args.size is not None else (stored.stat().st_size if stored.is_file() else 1),
        "mime": args.mime,
        "extension": args.extension or Path(args.path).suffix.lstrip(".") or None,
    }
    metadata = UploadedFileMetadata.from_dict(raw)
    validator = UploadValidator(cfg.storage.root, cfg.uploads.max_file_size)
    path = validator.validate(metadata, args.require_extension)
    log_summary(f"validate path={args.path} status=ok file={path}")
    return EXIT_SUCCESS


def _convert(args: argparse.Namespace, cfg: IngestConfig) -> int:
    converter = build_sheet_converter(cfg.converter)
    delimiter = cfg.imports.delimiter
    if args.replace:
        result = convert_and_replace(converter, args.workbook, args.sheet, delimiter)
        log_summary(f"convert sheets=1 rows={result.rows} output={result.csv_path}")
        return EXIT_SUCCESS
    output = args.output or args.workbook.with_name(f"{args.workbook.stem}_csv")
    results = converter.convert_all_sheets(args.workbook, output, delimiter, args.sheet)
    for name, r in results.items():
        logger.info(f"sheet={name} rows={r.rows} size_kb={r.size_kb} file={r.csv_path}")
    log_summary(
        f"convert sheets={len(results)} rows={sum(r.rows for r in results.values())} output={output}"
    )
    return EXIT_SUCCESS


def _sanitize(args: argparse.Namespace, cfg: IngestConfig) -> int:
    result = RowSanitizer(cfg.imports.delimiter).sanitize(args.csv, args.run_id, args.source, args.sheet)
    log_summary(
        f"sanitize rows={result.rows} backslash_rows={result.backslash_rows} output={result.path}"
    )
    return EXIT_SUCCESS


def _import(args: argparse.Namespace, cfg: IngestConfig) -> int:
    code = DataSourceCode.parse(args.source)
    strategy = args.strategy or cfg.imports.strategy
    columns = RowSanitizer.column_map(code)
    fallback = ErrorLogBuffer()
    try:
        with db_connection(cfg.database) as conn:
            cur = conn.cursor()
            try:
                if strategy == "copy":
                    result = copy_import.import_from_file(
                        cur, code.table_name, args.csv, columns, cfg.imports.delimiter
                    )
                    errors = 0
                else:
                    importer = ResilientImporter(
                        cur,
                        DatabaseErrorLog(cur, fallback),
                        batch_size=cfg.imports.batch_size,
                        progress_every=cfg.imports.progress_every,
                    )
                    result = importer.import_from_file(
                        code.table_name, args.csv, columns, args.run_id, code.value,
                        cfg.imports.delimiter,
                    )
                    errors = result.error_rows
            finally:
                cur.close()
    finally:
        _flush_fallback(fallback)
    log_summary(render_import_summary(code.table_name, result)[len("SUMMARY "):])
    return EXIT_ROW_ERRORS if errors else EXIT_SUCCESS


def _run(args: argparse.Namespace, cfg: IngestConfig) -> int:
    manifest = load_manifest(args.manifest, cfg.storage.root)
    strategy = args.strategy or manifest.strategy or cfg.imports.strategy
    run = CollectionRun(
        run_id=manifest.run_id,
        notice_type=manifest.notice_type,
        files={code: DataSourceFile(code, meta) for code, meta in manifest.files.items()},
        period=manifest.period,
    )
    fallback = ErrorLogBuffer()
    try:
        with db_connection(cfg.database) as conn:
            cur = conn.cursor()
            try:
                services = IngestServices.build(cfg, cur, fallback_log=fallback)
                result = run_pipeline(run, build_pipeline(run.notice_type, strategy), services)
            finally:
                cur.close()
    finally:
        _flush_fallback(fallback)
    log_summary(render_run_summary(result)[len("SUMMARY "):])
    if result.status is not RunStatus.COMPLETED:
        return EXIT_FATAL
    return EXIT_ROW_ERRORS if result.error_rows else EXIT_SUCCESS


def _init_db(args: argparse.Namespace, cfg: IngestConfig) -> int:
    with db_connection(cfg.database) as conn:
        cur = conn.cursor()
        try:
            executed = ensure_schema(cur)
        finally:
            cur.close()
    log_summary(f"init-db statements={executed}")
    return EXIT_SUCCESS


def _converter_info(args: argparse.Namespace, cfg: IngestConfig) -> int:
    native = NativeSheetConverter(cfg.converter.binary_path, cfg.converter.timeout_seconds)
    _print_json({**native.describe(), "selected": build_sheet_converter(cfg.converter).name})
    return EXIT_SUCCESS


def _flush_fallback(buffer: ErrorLogBuffer) -> None:
    path = buffer.flush()
    if path is not None:
        logger.warning(f"error records that could not be stored were written to {path}")


COMMANDS = {
    "append-chunk": _append_chunk,
    "discard-upload": _discard_upload,
    "sweep": _sweep,
    "validate": _validate,
    "convert": _convert,
    "sanitize": _sanitize,
    "import": _import,
    "run": _run,
    "init-db": _init_db,
    "converter-info": _converter_info,
}


def main(argv: list[str] | None = None) -> int:
    setup_logging()

    # None only: an explicit [] must not fall back to sys.argv (pytest args)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)
    if args.debug:
        enable_debug()

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        return COMMANDS[args.command](args, cfg)
    except (UploadError, UnknownDataSourceError, ConversionError, SanitizerError, CsvImportError) as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    except OSError as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
