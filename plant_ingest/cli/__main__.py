from __future__ import annotations

import argparse
import json
import os
import sys
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from ..config.loader import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    DatabaseConfig,
    IngestConfig,
    load_config,
    rules_for,
)
from ..db.batch_insert import BatchWriteError
from ..db.readings import ReadingConflictError, ReadingNotFoundError, ensure_schema, transaction
from ..excel.reader import SheetParseError
from ..logging.error_log import ErrorLogBuffer, records_from_result
from ..logging.init import log_summary, setup_logging
from ..models.error_record import ErrorRecord
from ..models.readings import InvalidReadingError
from ..models.upload_result import UploadResult, normalize_upload_result
from ..services.pipeline import RequestShapeError, run_upload, validate_rows
from ..services.progress import ProgressTracker
from ..services.records import (
    create_reading,
    delete_reading,
    delete_readings,
    get_reading,
    list_readings,
    list_readings_by_date,
    update_reading,
)
from ..services.submitter import submit_rows
from ..services.summary import render_submit_summary, render_upload_summary
from ..services.template import build_template
from ..validation.rules import DOMAINS, DomainRules

"""CLI entrypoint: ``python -m plant_ingest.cli <command> <domain> ...``

Commands:
- upload FILE [--submit] [--json]: parse + validate a spreadsheet
- validate ROWS_JSON: re-validate a ``{"rows": [...]}`` document
- submit ROWS_JSON: write approved rows to storage
- template OUT_XLSX: write the domain template
- records {list,get,create,update,delete}: single-record access to stored readings

validate / submit also accept an earlier upload/validate result document
(either error shape); its rows are re-used as-is.

Exit codes: 0 success / all rows valid, 2 some rows invalid, 1 fatal.
"""

EXIT_SUCCESS = 0
EXIT_INVALID_ROWS = 2
EXIT_FATAL = 1


@contextmanager
def _db_connection(db_cfg: DatabaseConfig) -> Iterator[Any]:
    """Provide a psycopg2 cursor on an autocommit connection.

    Transactions are explicit (BEGIN / COMMIT issued by the storage layer).

    接続情報の解決優先順位:
        1. `.env` (main() 冒頭で上書きロード済み) / プロセス環境変数
           - DATABASE_URL / PGDSN があれば DSN 全体をそのまま使用
           - 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        2. 設定ファイルの database セクション (不足分のフォールバック)
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if not dsn:
        host = os.getenv("PGHOST", db_cfg.host or "localhost")
        port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
        user = os.getenv("PGUSER", db_cfg.user or "postgres")
        password = os.getenv("PGPASSWORD", db_cfg.password or "")
        database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
        dsn = f"host={host} port={port} user={user} dbname={database}"
        if password:
            dsn += f" password={password}"

    conn = psycopg2.connect(dsn)
    try:
        conn.autocommit = True
        with conn.cursor() as cur:
            yield cur
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; override=True so .env wins over the environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="python -m plant_ingest.cli",
        description="Solar plant meter / weather spreadsheet ingestion",
    )
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--config", type=Path, default=None, help=f"Config file (default: {DEFAULT_CONFIG_PATH})")
    sub = p.add_subparsers(dest="command", required=True)

    domains = sorted(DOMAINS)
    up = sub.add_parser("upload", help="Parse and validate a spreadsheet")
    up.add_argument("domain", choices=domains)
    up.add_argument("file", type=Path)
    up.add_argument("--submit", action="store_true", help="Write rows to storage when all rows are valid")
    up.add_argument("--json", action="store_true", help="Print the result document as JSON")
    up.add_argument("--legacy", action="store_true", help="Use the rowIndex/messages error shape")

    va = sub.add_parser("validate", help="Re-validate a rows JSON document")
    va.add_argument("domain", choices=domains)
    va.add_argument("file", type=Path)
    va.add_argument("--json", action="store_true")
    va.add_argument("--legacy", action="store_true")

    su = sub.add_parser("submit", help="Submit a rows JSON document")
    su.add_argument("domain", choices=domains)
    su.add_argument("file", type=Path)
    su.add_argument("--json", action="store_true")

    te = sub.add_parser("template", help="Write the spreadsheet template")
    te.add_argument("domain", choices=domains)
    te.add_argument("out", type=Path)

    rec = sub.add_parser("records", help="Access stored readings one record at a time")
    rec.add_argument("domain", choices=domains)
    actions = rec.add_subparsers(dest="action", required=True)
    ls = actions.add_parser("list", help="List readings (paged, with total count)")
    ls.add_argument("--date", default=None, help="Only this date, sorted by time")
    ls.add_argument("--start-date", default=None)
    ls.add_argument("--end-date", default=None)
    ls.add_argument("--limit", type=int, default=100)
    ls.add_argument("--skip", type=int, default=0)
    ge = actions.add_parser("get", help="Show one reading")
    ge.add_argument("id", type=int)
    cr = actions.add_parser("create", help="Create one reading from a JSON object")
    cr.add_argument("file", type=Path)
    upd = actions.add_parser("update", help="Update fields of one reading from a JSON object")
    upd.add_argument("id", type=int)
    upd.add_argument("file", type=Path)
    de = actions.add_parser("delete", help="Delete one or more readings")
    de.add_argument("ids", type=int, nargs="+")
    return p.parse_args(argv)


def _resolve_config(path: Path | None) -> IngestConfig:
    if path is not None:
        return load_config(path)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return IngestConfig.default()


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, default=str))


def _read_json_document(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise RequestShapeError(f"invalid JSON in {path}: {e}") from e


def _document_rows(payload: Mapping[str, Any]) -> Any:
    # upload/validate --json の出力 (rowIndex/messages の旧形式を含む) もそのまま再入力できる
    rows = payload.get("rows", payload.get("data"))
    if isinstance(rows, list) and ("errors" in payload or "isValid" in payload):
        return normalize_upload_result(payload).rows
    return payload.get("rows")


def _report_rows(
    args: argparse.Namespace,
    cfg: IngestConfig,
    rules: DomainRules,
    result: UploadResult,
    elapsed: float,
) -> int:
    logger = setup_logging()
    if args.json:
        _print_json(result.to_dict(legacy=args.legacy))
    buffer = ErrorLogBuffer(cfg.error_log_dir)
    buffer.extend(records_from_result(args.file.name, rules.name, result))
    path = buffer.flush()
    if path is not None:
        logger.warning(f"{result.invalid_rows} row(s) invalid; details in {path}")
    log_summary(render_upload_summary(rules.name, result, elapsed)[len("SUMMARY "):])
    return EXIT_SUCCESS if result.is_valid else EXIT_INVALID_ROWS


def _submit(args: argparse.Namespace, cfg: IngestConfig, rules: DomainRules, rows: Any) -> int:
    logger = setup_logging()
    started = time.perf_counter()
    total = len(rows) if isinstance(rows, list) else 0
    try:
        with _db_connection(cfg.database) as cur:
            with transaction(cur):
                ensure_schema(cur, {rules.table: rules.reading_type})
            with ProgressTracker(total) as tracker:
                result = submit_rows(cur, rows, rules, progress=tracker.advance)
    except RequestShapeError as e:
        logger.error(f"request: {e}")
        return EXIT_FATAL
    except BatchWriteError as e:
        logger.error(f"storage: {e}")
        return EXIT_FATAL
    except psycopg2.Error as e:
        logger.error(f"database: {str(e).strip()}")
        return EXIT_FATAL

    if args.json:
        _print_json(result.to_dict())
    log_summary(render_submit_summary(rules.name, total, result, time.perf_counter() - started)[len("SUMMARY "):])
    return EXIT_SUCCESS


def _cmd_upload(args: argparse.Namespace, cfg: IngestConfig, rules: DomainRules) -> int:
    logger = setup_logging()
    started = time.perf_counter()
    try:
        buffer = args.file.read_bytes()
    except OSError as e:
        logger.error(f"file: {e}")
        return EXIT_FATAL
    try:
        result = run_upload(buffer, rules)
    except SheetParseError as e:
        logger.error(f"parse: {e}")
        errors = ErrorLogBuffer(cfg.error_log_dir)
        errors.append(ErrorRecord.create(args.file.name, rules.name, -1, "PARSE_ERROR", str(e)))
        errors.flush()
        return EXIT_FATAL

    code = _report_rows(args, cfg, rules, result, time.perf_counter() - started)
    if code != EXIT_SUCCESS or not args.submit:
        if args.submit:
            logger.warning("submit skipped: fix the invalid rows first")
        return code
    return _submit(args, cfg, rules, result.rows)


def _cmd_validate(args: argparse.Namespace, cfg: IngestConfig, rules: DomainRules) -> int:
    logger = setup_logging()
    started = time.perf_counter()
    try:
        payload = _read_json_document(args.file)
        rows = _document_rows(payload) if isinstance(payload, Mapping) else None
        result = validate_rows(rows, rules)
    except OSError as e:
        logger.error(f"file: {e}")
        return EXIT_FATAL
    except RequestShapeError as e:
        logger.error(f"request: {e}")
        return EXIT_FATAL
    return _report_rows(args, cfg, rules, result, time.perf_counter() - started)


def _cmd_submit(args: argparse.Namespace, cfg: IngestConfig, rules: DomainRules) -> int:
    logger = setup_logging()
    try:
        payload = _read_json_document(args.file)
    except OSError as e:
        logger.error(f"file: {e}")
        return EXIT_FATAL
    except RequestShapeError as e:
        logger.error(f"request: {e}")
        return EXIT_FATAL
    rows = _document_rows(payload) if isinstance(payload, Mapping) else payload
    return _submit(args, cfg, rules, rows)


def _cmd_template(args: argparse.Namespace, cfg: IngestConfig, rules: DomainRules) -> int:
    logger = setup_logging()
    try:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        args.out.write_bytes(build_template(rules))
    except OSError as e:
        logger.error(f"file: {e}")
        return EXIT_FATAL
    logger.info(f"template written: {args.out}")
    return EXIT_SUCCESS


def _read_record_payload(path: Path) -> Mapping[str, Any]:
    payload = _read_json_document(path)
    if not isinstance(payload, Mapping):
        raise RequestShapeError(f"{path} must contain a JSON object")
    return payload


def _records_list(cur: Any, rules: DomainRules, args: argparse.Namespace) -> Any:
    if args.date:
        return {"data": list_readings_by_date(cur, rules, args.date)}
    docs, total = list_readings(cur, rules, args.start_date, args.end_date, args.limit, args.skip)
    return {"data": docs, "total": total}


def _records_get(cur: Any, rules: DomainRules, args: argparse.Namespace) -> Any:
    return get_reading(cur, rules, args.id)


def _records_create(cur: Any, rules: DomainRules, args: argparse.Namespace) -> Any:
    return create_reading(cur, rules, _read_record_payload(args.file))


def _records_update(cur: Any, rules: DomainRules, args: argparse.Namespace) -> Any:
    return update_reading(cur, rules, args.id, _read_record_payload(args.file))


def _records_delete(cur: Any, rules: DomainRules, args: argparse.Namespace) -> Any:
    if len(args.ids) == 1:
        return delete_reading(cur, rules, args.ids[0])
    return {"deleted": delete_readings(cur, rules, args.ids)}


RECORD_ACTIONS = {
    "list": _records_list,
    "get": _records_get,
    "create": _records_create,
    "update": _records_update,
    "delete": _records_delete,
}


def _cmd_records(args: argparse.Namespace, cfg: IngestConfig, rules: DomainRules) -> int:
    logger = setup_logging()
    try:
        with _db_connection(cfg.database) as cur:
            with transaction(cur):
                ensure_schema(cur, {rules.table: rules.reading_type})
            result = RECORD_ACTIONS[args.action](cur, rules, args)
    except OSError as e:
        logger.error(f"file: {e}")
        return EXIT_FATAL
    except (RequestShapeError, ValueError) as e:
        logger.error(f"request: {e}")
        return EXIT_FATAL
    except ReadingNotFoundError as e:
        logger.error(f"not found: {e}")
        return EXIT_FATAL
    except ReadingConflictError as e:
        logger.error(f"conflict: {e}")
        return EXIT_FATAL
    except InvalidReadingError as e:
        logger.error(f"invalid: {e}")
        return EXIT_FATAL
    except BatchWriteError as e:
        logger.error(f"storage: {e}")
        return EXIT_FATAL
    except psycopg2.Error as e:
        logger.error(f"database: {str(e).strip()}")
        return EXIT_FATAL
    _print_json(result)
    return EXIT_SUCCESS


COMMANDS = {
    "upload": _cmd_upload,
    "validate": _cmd_validate,
    "submit": _cmd_submit,
    "template": _cmd_template,
    "records": _cmd_records,
}


def main(argv: list[str] | None = None) -> int:
    # None のときのみシステム引数を読む (テストで [] を渡すケースに対応)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    # .env を最優先で読み込む (DB 接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)
    try:
        cfg = _resolve_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    rules = rules_for(cfg, args.domain)
    return COMMANDS[args.command](args, cfg, rules)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
