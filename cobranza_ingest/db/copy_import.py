from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import psycopg2

from ..models.import_result import CopyImportResult
from .batch_insert import quote_identifier
from .connection import transaction
from .errors import CopyImportError, CsvNotFoundError

"""Fast-path loader: one ``COPY ... FROM STDIN`` per CSV file.

All-or-nothing: the COPY runs inside a single transaction, any failure rolls
the whole file back and raises ``CopyImportError`` with the server message.
The reported row count is the number of physical lines minus the header.
"""

__all__ = [
    "copy_statement",
    "import_from_file",
    "import_multiple_sheets",
    "count_lines",
]

logger = logging.getLogger(__name__)

_READ_BUFFER = 1024 * 1024


def copy_statement(
    table: str, columns: Sequence[str], delimiter: str = ";", has_header: bool = True
) -> str:
    if len(delimiter) != 1 or delimiter in ("'", "\\"):
        raise ValueError(f"invalid delimiter: {delimiter!r}")
    cols_sql = ", ".join(quote_identifier(c) for c in columns)
    options = ["FORMAT csv", f"DELIMITER '{delimiter}'"]
    if has_header:
        options.append("HEADER")
    options.append("NULL ''")
    return f"COPY {quote_identifier(table)} ({cols_sql}) FROM STDIN WITH ({', '.join(options)})"


def count_lines(path: Path) -> int:
    lines = 0
    last = b""
    with path.open("rb") as f:
        while chunk := f.read(_READ_BUFFER):
            lines += chunk.count(b"\n")
            last = chunk
    # unterminated last line still counts
    if last and not last.endswith(b"\n"):
        lines += 1
    return lines


def import_from_file(
    cursor: Any,
    table: str,
    csv_path: Path,
    columns: Sequence[str],
    delimiter: str = ";",
    has_header: bool = True,
) -> CopyImportResult:
    """Load ``csv_path`` into ``table`` with COPY.

    Raises:
        CsvNotFoundError: the CSV does not exist
        CopyImportError: the server rejected the data (transaction rolled back)
    """
    start = time.perf_counter()
    csv_path = Path(csv_path)
    if not csv_path.is_file():
        raise CsvNotFoundError(f"CSV file not found: {csv_path}")

    size_mb = round(csv_path.stat().st_size / 1024 / 1024, 2)
    sql = copy_statement(table, columns, delimiter, has_header)
    logger.info(f"COPY start table={table} file={csv_path.name} size_mb={size_mb}")
    logger.debug(sql)

    try:
        with transaction(cursor), csv_path.open("r", encoding="utf-8", newline="") as fh:
            cursor.copy_expert(sql, fh, size=_READ_BUFFER)
    except psycopg2.Error as e:
        message = (getattr(e, "pgerror", None) or str(e)).strip()
        raise CopyImportError(f"COPY into {table} failed: {message}") from e

    line_count = count_lines(csv_path)
    rows = max(line_count - 1, 0) if has_header else line_count
    duration_ms = int((time.perf_counter() - start) * 1000)
    rps = round(rows / (duration_ms / 1000)) if duration_ms > 0 else 0
    logger.info(
        f"COPY done table={table} rows={rows} duration_ms={duration_ms} rows_per_sec={rps}"
    )
    return CopyImportResult(rows_imported=rows, duration_ms=duration_ms)


def import_multiple_sheets(
    cursor: Any,
    table: str,
    csv_paths: Mapping[str, Path],
    columns: Sequence[str],
    run_id: int,
    delimiter: str = ";",
) -> tuple[CopyImportResult, dict[str, CopyImportResult]]:
    """COPY each sheet CSV in turn; returns the aggregate and the per-sheet results."""
    start = time.perf_counter()
    logger.info(f"COPY multi-sheet table={table} sheets={len(csv_paths)} run_id={run_id}")
    sheets: dict[str, CopyImportResult] = {}
    total = 0
    for sheet_name, path in csv_paths.items():
        result = import_from_file(cursor, table, path, columns, delimiter, has_header=True)
        sheets[sheet_name] = result
        total += result.rows_imported
        logger.info(f"sheet imported sheet={sheet_name} rows={result.rows_imported}")
    duration_ms = int((time.perf_counter() - start) * 1000)
    return CopyImportResult(rows_imported=total, duration_ms=duration_ms), sheets
