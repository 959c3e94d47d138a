# Shared pytest fixtures
from __future__ import annotations

import re
import tempfile
from collections import defaultdict
from pathlib import Path
from typing import Any

import psycopg2
import pytest

from cobranza_ingest.logging.init import reset_logging

_INSERT_TABLE = re.compile(r'^INSERT INTO "([A-Za-z0-9_]+)"')
_DELETE_TABLE = re.compile(r'^DELETE FROM "([A-Za-z0-9_]+)"')


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "storage").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def storage_root(temp_workdir: Path) -> Path:
    return temp_workdir / "storage"


@pytest.fixture()
def sample_config_yaml(temp_workdir: Path) -> str:
    return f"""storage:
  root: ./storage
uploads:
  chunk_size: 64
  max_file_size: 1048576
  ttl_minutes: 30
converter:
  binary_path: {temp_workdir / "bin" / "excel_streaming"}
  prefer_native: false
import:
  batch_size: 2
  delimiter: ";"
  strategy: resilient
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: cobranza
required_columns:
  BASCAR: [NUM_TOMADOR, FECHA_INICIO_VIG, VALOR_TOTAL_FACT]
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "ingest.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def store_upload(root: Path, upload_id: str, name: str, content: bytes | str) -> str:
    """Place a file where an assembled upload would be; returns its storage-relative path."""
    target = root / "completed" / upload_id / name
    target.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        target.write_text(content, encoding="utf-8")
    else:
        target.write_bytes(content)
    return f"completed/{upload_id}/{name}"


class FakeCursor:
    """In-memory stand-in for a psycopg2 cursor on an autocommit connection.

    Honors BEGIN / COMMIT / ROLLBACK so rolled back batches leave no rows.
    Any staging row value containing ``poison`` raises ``psycopg2.DataError``;
    ``fail_connection_on`` makes the n-th INSERT raise ``OperationalError``.
    """

    def __init__(self, poison: str = "BAD", fail_connection_on: int | None = None) -> None:
        self.poison = poison
        self.fail_connection_on = fail_connection_on
        self.statements: list[str] = []
        self.tables: dict[str, list[tuple[Any, ...]]] = defaultdict(list)
        self.copies: list[tuple[str, str]] = []
        self.copy_error: str | None = None
        self.rowcount = -1
        self.inserts = 0
        self.closed = False
        self._tx: list[tuple[str, tuple[Any, ...]]] | None = None

    # statements ---------------------------------------------------------
    def execute(self, sql: str, params: Any = None) -> None:
        self.statements.append(sql)
        if sql == "BEGIN":
            self._tx = []
            return
        if sql == "COMMIT":
            for table, row in self._tx or []:
                self.tables[table].append(row)
            self._tx = None
            return
        if sql == "ROLLBACK":
            self._tx = None
            return
        m = _INSERT_TABLE.match(sql)
        if m:
            self.insert(m.group(1), tuple(params or ()))
            return
        m = _DELETE_TABLE.match(sql)
        if m:
            table = m.group(1)
            kept = [r for r in self.tables[table] if r[0] != params[0]]
            self.rowcount = len(self.tables[table]) - len(kept)
            self.tables[table] = kept

    def insert(self, table: str, row: tuple[Any, ...]) -> None:
        self.inserts += 1
        if self.fail_connection_on is not None and self.inserts >= self.fail_connection_on:
            raise psycopg2.OperationalError("server closed the connection unexpectedly")
        if table != "csv_import_error_logs" and any(
            isinstance(v, str) and self.poison in v for v in row
        ):
            raise psycopg2.DataError(f"invalid input syntax: {row!r}")
        if self._tx is not None:
            self._tx.append((table, row))
        else:
            self.tables[table].append(row)

    def copy_expert(self, sql: str, fh: Any, size: int = 8192) -> None:
        data = fh.read()
        if self.copy_error:
            raise psycopg2.DataError(self.copy_error)
        self.copies.append((sql, data))

    def close(self) -> None:
        self.closed = True

    def rows(self, table: str) -> list[tuple[Any, ...]]:
        return self.tables[table]


@pytest.fixture()
def fake_cursor() -> FakeCursor:
    return FakeCursor()


@pytest.fixture()
def make_cursor():
    return FakeCursor


@pytest.fixture()
def store_file(storage_root: Path):
    def _store(upload_id: str, name: str, content: bytes | str) -> str:
        return store_upload(storage_root, upload_id, name, content)
    return _store


@pytest.fixture()
def fake_execute_values(monkeypatch):
    """Route execute_values through FakeCursor.insert row by row."""
    import cobranza_ingest.db.batch_insert as bi

    def _fake(cursor, sql, rows, page_size=1000, template=None):
        table = _INSERT_TABLE.match(sql).group(1)
        for row in rows:
            cursor.insert(table, tuple(row))

    monkeypatch.setattr(bi, "execute_values", _fake)
    return _fake


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor
        self.autocommit = True
        self.closed = False

    def cursor(self) -> FakeCursor:
        return self._cursor

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def patch_db_connection(monkeypatch, fake_cursor: FakeCursor):
    """Make the CLI open FakeConnection(fake_cursor) instead of a real server."""
    from contextlib import contextmanager

    import cobranza_ingest.cli.__main__ as cli_main

    @contextmanager
    def _fake_db_connection(db_cfg):
        conn = FakeConnection(fake_cursor)
        try:
            yield conn
        finally:
            conn.close()

    monkeypatch.setattr(cli_main, "db_connection", _fake_db_connection)
    return fake_cursor
