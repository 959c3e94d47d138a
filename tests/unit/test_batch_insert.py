from __future__ import annotations

import psycopg2
import pytest

from cobranza_ingest.db.batch_insert import (
    BatchInsertError,
    InsertResult,
    batch_insert,
    insert_sql,
    quote_identifier,
)


class DummyCursor:
    def __init__(self) -> None:
        self.queries: list[str] = []
        self.rows: list = []


# execute_values is patched inside the module so no server is needed

@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    import cobranza_ingest.db.batch_insert as bi

    def fake_execute_values(cursor, sql, rows, page_size=1000, template=None):
        cursor.queries.append(sql)
        cursor.rows.extend(rows)
        cursor.page_size = page_size
    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return fake_execute_values


def test_batch_insert_basic():
    cur = DummyCursor()
    res = batch_insert(
        cur, table="data_source_pagapl", columns=["run_id", "data"], rows=[[1, "{}"], [1, "[]"]],
        page_size=50,
    )
    assert isinstance(res, InsertResult)
    assert res.inserted_rows == 2
    assert cur.queries == ['INSERT INTO "data_source_pagapl" ("run_id","data") VALUES %s']
    assert cur.page_size == 50


def test_batch_insert_empty_rows():
    cur = DummyCursor()
    res = batch_insert(cur, table="t", columns=["id"], rows=[])
    assert res.inserted_rows == 0
    assert cur.queries == []


def test_batch_insert_with_metrics_callback():
    captured = []
    batch_insert(DummyCursor(), "t", ["id"], ([i] for i in range(3)), metrics_callback=captured.append)
    assert len(captured) == 1
    m = captured[0]
    assert m.batch_size == 3
    assert m.elapsed_seconds >= 0
    assert m.end_time >= m.start_time


def test_data_errors_are_wrapped(monkeypatch):
    import cobranza_ingest.db.batch_insert as bi

    def failing(cursor, sql, rows, page_size=1000, template=None):
        raise psycopg2.DataError("invalid input syntax for type json\n")
    monkeypatch.setattr(bi, "execute_values", failing)
    captured = []
    with pytest.raises(BatchInsertError, match="invalid input syntax for type json$"):
        batch_insert(DummyCursor(), "t", ["c"], [[1]], metrics_callback=captured.append)
    # metrics are reported even for a failed batch
    assert len(captured) == 1


@pytest.mark.parametrize("error", [psycopg2.OperationalError, psycopg2.InterfaceError])
def test_connection_errors_propagate(monkeypatch, error):
    import cobranza_ingest.db.batch_insert as bi

    def failing(cursor, sql, rows, page_size=1000, template=None):
        raise error("connection lost")
    monkeypatch.setattr(bi, "execute_values", failing)
    with pytest.raises(error):
        batch_insert(DummyCursor(), "t", ["c"], [[1]])


@pytest.mark.parametrize("name", ["bad name", 'x"; DROP TABLE y; --', "1abc", ""])
def test_quote_identifier_rejects(name):
    with pytest.raises(ValueError):
        quote_identifier(name)


def test_insert_sql_with_placeholders():
    assert insert_sql("t", ["a", "b"], "(%s,%s)") == 'INSERT INTO "t" ("a","b") VALUES (%s,%s)'
