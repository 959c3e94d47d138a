from __future__ import annotations

from pathlib import Path

import psycopg2
import pytest

from cobranza_ingest.db.errors import CsvNotFoundError
from cobranza_ingest.db.resilient_import import ResilientImporter
from cobranza_ingest.db.schema import GENERIC_COLUMNS
from cobranza_ingest.logging.error_log import ERROR_LOG_TABLE, DatabaseErrorLog, ErrorLogBuffer

TABLE = "data_source_pagapl"


def _sanitized(path: Path, payloads: list[str], encoding: str = "utf-8") -> Path:
    lines = ["run_id;data;sheet_name"] + [f'1;"{p}";Hoja1' for p in payloads]
    path.write_bytes(("\n".join(lines) + "\n").encode(encoding))
    return path


def _importer(cursor, batch_size: int = 2, logs_dir: Path | None = None) -> ResilientImporter:
    return ResilientImporter(
        cursor, DatabaseErrorLog(cursor, ErrorLogBuffer(logs_dir)), batch_size=batch_size
    )


def _error_rows(cursor) -> list[dict]:
    cols = (
        "run_id", "data_source_code", "table_name", "line_number",
        "line_content", "error_type", "error_message", "created_at",
    )
    return [dict(zip(cols, r)) for r in cursor.rows(ERROR_LOG_TABLE)]


def test_clean_file_inserts_every_row(fake_cursor, fake_execute_values, tmp_path: Path):
    path = _sanitized(tmp_path / "p.csv", ["a", "b", "c", "d", "e"])
    result = _importer(fake_cursor).import_from_file(TABLE, path, GENERIC_COLUMNS, 9, "PAGAPL")

    assert (result.total_rows, result.success_rows, result.error_rows) == (5, 5, 0)
    assert not result.has_errors
    rows = fake_cursor.rows(TABLE)
    assert len(rows) == 5
    # run_id forced, created_at stamped, empty fields become NULL
    assert rows[0][0] == 9
    assert rows[0][1] == "a"
    assert rows[0][2] == "Hoja1"
    assert rows[0][3] is not None
    # three batches of at most two rows
    assert fake_cursor.statements.count("BEGIN") == 3


def test_failed_batch_falls_back_to_row_by_row(fake_cursor, fake_execute_values, tmp_path: Path):
    path = _sanitized(tmp_path / "p.csv", ["ok1", "BAD-1", "ok2", "ok3", "BAD-2"])
    result = _importer(fake_cursor).import_from_file(TABLE, path, GENERIC_COLUMNS, 9, "PAGAPL")

    assert result.total_rows == 5
    assert result.success_rows == 3
    assert result.error_rows == 2
    assert result.errors_logged == 2
    assert [r[1] for r in fake_cursor.rows(TABLE)] == ["ok1", "ok2", "ok3"]
    assert "ROLLBACK" in fake_cursor.statements

    errors = _error_rows(fake_cursor)
    assert [e["line_number"] for e in errors] == [3, 6]
    assert errors[0]["error_type"] == "insert_error"
    assert errors[0]["line_content"] == '1;"BAD-1";Hoja1'
    assert errors[0]["data_source_code"] == "PAGAPL"
    assert errors[0]["table_name"] == TABLE
    assert "invalid input syntax" in errors[0]["error_message"]


def test_column_mismatch_is_logged_not_inserted(fake_cursor, fake_execute_values, tmp_path: Path):
    path = tmp_path / "p.csv"
    path.write_text('run_id;data;sheet_name\n1;"x";H\n1;"y"\n1;"z";H;extra\n', encoding="utf-8")
    result = _importer(fake_cursor, batch_size=10).import_from_file(
        TABLE, path, GENERIC_COLUMNS, 9, "PAGAPL"
    )

    assert (result.total_rows, result.success_rows, result.error_rows) == (3, 1, 2)
    errors = _error_rows(fake_cursor)
    assert [e["error_type"] for e in errors] == ["column_mismatch", "column_mismatch"]
    assert errors[0]["error_message"] == "expected 3 columns, found 2"
    assert errors[1]["line_number"] == 4


def test_unbalanced_quote_rejects_only_its_line(fake_cursor, fake_execute_values, tmp_path: Path):
    path = tmp_path / "p.csv"
    good = "".join(f'1;"row-{i}";H1\n' for i in range(50))
    path.write_text('run_id;data;sheet_name\n1;"broken;H1\n' + good, encoding="utf-8")
    result = _importer(fake_cursor, batch_size=10).import_from_file(
        TABLE, path, GENERIC_COLUMNS, 9, "PAGAPL"
    )

    assert (result.total_rows, result.success_rows, result.error_rows) == (51, 50, 1)
    errors = _error_rows(fake_cursor)
    assert len(errors) == 1
    assert errors[0]["line_number"] == 2
    assert errors[0]["error_type"] == "column_mismatch"
    assert errors[0]["line_content"] == '1;"broken;H1'
    assert [r[1] for r in fake_cursor.rows(TABLE)][:2] == ["row-0", "row-1"]


def test_latin1_file_is_transcoded_and_temp_removed(fake_cursor, fake_execute_values, tmp_path: Path):
    path = _sanitized(tmp_path / "p.csv", ["Muñoz", "Ibáñez"], encoding="latin-1")
    result = _importer(fake_cursor).import_from_file(TABLE, path, GENERIC_COLUMNS, 1, "PAGAPL")

    assert result.success_rows == 2
    assert [r[1] for r in fake_cursor.rows(TABLE)] == ["Muñoz", "Ibáñez"]
    assert not (tmp_path / "p.csv.utf8.csv").exists()
    assert path.exists()


def test_connection_error_propagates(make_cursor, fake_execute_values, tmp_path: Path):
    cursor = make_cursor(fail_connection_on=3)
    path = _sanitized(tmp_path / "p.csv", ["a", "b", "c", "d"])
    with pytest.raises(psycopg2.OperationalError):
        _importer(cursor).import_from_file(TABLE, path, GENERIC_COLUMNS, 1, "PAGAPL")
    # first batch committed, second rolled back, nothing turned into a row error
    assert len(cursor.rows(TABLE)) == 2
    assert cursor.rows(ERROR_LOG_TABLE) == []


def test_connection_error_during_row_fallback(make_cursor, fake_execute_values, tmp_path: Path):
    # the batch and the retry of BAD fail on data; the connection drops from the third insert on
    cursor = make_cursor(fail_connection_on=3)
    path = _sanitized(tmp_path / "p.csv", ["BAD", "ok"])
    with pytest.raises(psycopg2.OperationalError):
        _importer(cursor).import_from_file(TABLE, path, GENERIC_COLUMNS, 1, "PAGAPL")


def test_error_log_failure_goes_to_fallback_file(fake_cursor, fake_execute_values, tmp_path: Path, monkeypatch):
    original = fake_cursor.insert

    def insert(table, row):
        if table == ERROR_LOG_TABLE:
            raise psycopg2.ProgrammingError('relation "csv_import_error_logs" does not exist')
        original(table, row)
    monkeypatch.setattr(fake_cursor, "insert", insert)

    buffer = ErrorLogBuffer(tmp_path / "logs")
    importer = ResilientImporter(fake_cursor, DatabaseErrorLog(fake_cursor, buffer), batch_size=5)
    path = _sanitized(tmp_path / "p.csv", ["ok", "BAD"])
    result = importer.import_from_file(TABLE, path, GENERIC_COLUMNS, 1, "PAGAPL")

    assert result.error_rows == 1
    assert len(buffer) == 1
    log_path = buffer.flush()
    assert log_path.parent == tmp_path / "logs"
    assert '"error_type": "insert_error"' in log_path.read_text(encoding="utf-8")


def test_header_only_file(fake_cursor, fake_execute_values, tmp_path: Path):
    path = _sanitized(tmp_path / "p.csv", [])
    result = _importer(fake_cursor).import_from_file(TABLE, path, GENERIC_COLUMNS, 1, "PAGAPL")
    assert result.total_rows == 0
    assert fake_cursor.statements == []


def test_missing_file_and_bad_batch_size(fake_cursor, tmp_path: Path):
    with pytest.raises(CsvNotFoundError):
        _importer(fake_cursor).import_from_file(TABLE, tmp_path / "x.csv", GENERIC_COLUMNS, 1, "PAGAPL")
    with pytest.raises(ValueError):
        _importer(fake_cursor, batch_size=0)


def test_insert_row_outcomes(fake_cursor):
    importer = _importer(fake_cursor)
    cols = ["run_id", "data"]
    assert importer.insert_row(TABLE, cols, (1, "fine")).ok
    failed = importer.insert_row(TABLE, cols, (1, "BAD"))
    assert not failed.ok
    assert "invalid input syntax" in failed.error


def test_large_file_with_two_malformed_lines(fake_cursor, fake_execute_values, tmp_path: Path):
    path = tmp_path / "big.csv"
    lines = ["run_id;data;sheet_name"]
    for line_number in range(2, 5002):
        if line_number in (10, 4321):
            lines.append(f'1;"row{line_number}"')
        else:
            lines.append(f'1;"row{line_number}";S')
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    result = _importer(fake_cursor, batch_size=1000).import_from_file(
        TABLE, path, GENERIC_COLUMNS, 1, "PAGAPL"
    )
    assert (result.total_rows, result.success_rows, result.error_rows) == (5000, 4998, 2)
    errors = _error_rows(fake_cursor)
    assert [(e["error_type"], e["line_number"]) for e in errors] == [
        ("column_mismatch", 10), ("column_mismatch", 4321)
    ]
