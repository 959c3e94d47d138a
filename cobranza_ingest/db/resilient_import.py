from __future__ import annotations

import gc
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import psycopg2

from ..logging.error_log import DatabaseErrorLog
from ..models.config_models import DEFAULT_BATCH_SIZE, DEFAULT_PROGRESS_EVERY
from ..models.error_record import (
    COLUMN_MISMATCH,
    INSERT_ERROR,
    LINE_CONTENT_LIMIT,
    ImportErrorRecord,
)
from ..models.import_result import ResilientImportResult, RowInsertOutcome
from ..services.csv_records import read_csv_records
from ..services.encoding import ensure_utf8
from .batch_insert import CONNECTION_ERRORS, BatchInsertError, BatchMetrics, batch_insert, insert_sql
from .connection import transaction
from .errors import CsvNotFoundError

"""Resilient CSV loader.

Streams the CSV in batches. Each batch is inserted with ``execute_values``
inside its own transaction; when the database rejects the batch it is rolled
back and replayed row by row (autocommit, no per-row transaction) so only the
offending rows are lost. Every rejected row becomes an ``ImportErrorRecord``.

Connection-level errors are never converted into row errors: they propagate
and abort the import.
"""

__all__ = [
    "ResilientImporter",
]

logger = logging.getLogger(__name__)


@dataclass
class _PendingRow:
    line_number: int
    line_content: str
    values: tuple[Any, ...]


class ResilientImporter:
    """Batched loader with row-by-row fallback and per-row error capture."""

    def __init__(
        self,
        cursor: Any,
        error_log: DatabaseErrorLog,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_every: int = DEFAULT_PROGRESS_EVERY,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._cursor = cursor
        self._error_log = error_log
        self.batch_size = batch_size
        self.progress_every = max(progress_every, 1)

    def import_from_file(
        self,
        table: str,
        csv_path: Path,
        columns: Sequence[str],
        run_id: int,
        data_source_code: str,
        delimiter: str = ";",
        has_header: bool = True,
    ) -> ResilientImportResult:
        """Load ``csv_path`` into ``table``.

        ``columns`` is the CSV column order. ``run_id`` is forced to the given
        run and ``created_at`` is stamped here; empty fields become NULL.
        """
        start = time.perf_counter()
        csv_path = Path(csv_path)
        if not csv_path.is_file():
            raise CsvNotFoundError(f"CSV file not found: {csv_path}")

        size_mb = round(csv_path.stat().st_size / 1024 / 1024, 2)
        logger.info(
            f"resilient import start table={table} source={data_source_code} run_id={run_id} "
            f"file={csv_path.name} size_mb={size_mb} batch_size={self.batch_size}"
        )

        insert_columns = list(columns)
        if "run_id" not in insert_columns:
            insert_columns.append("run_id")
        if "created_at" not in insert_columns:
            insert_columns.append("created_at")
        run_id_pos = insert_columns.index("run_id")
        created_pos = insert_columns.index("created_at")
        expected = len(columns)

        total = success = errors = logged = 0
        batches = 0
        batch: list[_PendingRow] = []
        source_path, is_temp = ensure_utf8(csv_path, data_source_code)
        try:
            with source_path.open("r", encoding="utf-8-sig", newline="") as fh:
                records = read_csv_records(fh, delimiter)
                if has_header:
                    next(records, None)
                for record in records:
                    total += 1
                    if len(record.fields) != expected:
                        self._log_error(
                            run_id, data_source_code, table, record.line_number, record.raw,
                            COLUMN_MISMATCH,
                            f"expected {expected} columns, found {len(record.fields)}",
                        )
                        errors += 1
                        logged += 1
                        continue

                    values: list[Any] = [v if v != "" else None for v in record.fields]
                    values.extend([None] * (len(insert_columns) - expected))
                    values[run_id_pos] = run_id
                    values[created_pos] = datetime.now(UTC).replace(tzinfo=None)
                    batch.append(
                        _PendingRow(
                            line_number=record.line_number,
                            line_content=record.raw[:LINE_CONTENT_LIMIT],
                            values=tuple(values),
                        )
                    )

                    if len(batch) >= self.batch_size:
                        batches += 1
                        ok, bad, n_logged = self._process_batch(
                            table, insert_columns, batch, run_id, data_source_code
                        )
                        success += ok
                        errors += bad
                        logged += n_logged
                        batch = []
                        gc.collect()
                        if batches % self.progress_every == 0:
                            logger.info(
                                f"progress table={table} batches={batches} "
                                f"ok={success:,} errors={errors:,}"
                            )

                if batch:
                    batches += 1
                    ok, bad, n_logged = self._process_batch(
                        table, insert_columns, batch, run_id, data_source_code
                    )
                    success += ok
                    errors += bad
                    logged += n_logged
                    batch = []
                    gc.collect()
        finally:
            if is_temp and source_path.exists():
                source_path.unlink()
                logger.info(f"temporary UTF-8 copy removed path={source_path.name}")

        duration_ms = int((time.perf_counter() - start) * 1000)
        rate = round(success / total * 100, 2) if total else 0
        logger.info(
            f"resilient import done table={table} run_id={run_id} batches={batches} "
            f"total={total} ok={success} errors={errors} logged={logged} "
            f"duration_ms={duration_ms} success_rate={rate}"
        )
        return ResilientImportResult(
            total_rows=total,
            success_rows=success,
            error_rows=errors,
            errors_logged=logged,
            duration_ms=duration_ms,
        )

    def insert_row(
        self, table: str, columns: Sequence[str], values: Sequence[Any]
    ) -> RowInsertOutcome:
        """Insert one row outside any explicit transaction.

        Data errors come back as a failed outcome; connection errors raise.
        """
        placeholders = "(" + ",".join(["%s"] * len(columns)) + ")"
        try:
            self._cursor.execute(insert_sql(table, columns, placeholders), tuple(values))
        except CONNECTION_ERRORS:
            raise
        except psycopg2.Error as e:
            return RowInsertOutcome.failure(str(e).strip())
        return RowInsertOutcome.success()

    def _process_batch(
        self,
        table: str,
        columns: Sequence[str],
        batch: list[_PendingRow],
        run_id: int,
        data_source_code: str,
    ) -> tuple[int, int, int]:
        """Returns (inserted, failed, errors logged)."""
        try:
            with transaction(self._cursor):
                batch_insert(
                    self._cursor,
                    table,
                    columns,
                    (row.values for row in batch),
                    page_size=self.batch_size,
                    metrics_callback=_log_batch_metrics,
                )
            return len(batch), 0, 0
        except BatchInsertError as e:
            logger.warning(
                f"batch insert failed, retrying row by row table={table} "
                f"rows={len(batch)} error={str(e)[:200]}"
            )

        inserted = failed = n_logged = 0
        for row in batch:
            outcome = self.insert_row(table, columns, row.values)
            if outcome.ok:
                inserted += 1
                continue
            failed += 1
            self._log_error(
                run_id, data_source_code, table, row.line_number, row.line_content,
                INSERT_ERROR, outcome.error or "insert failed",
            )
            n_logged += 1
        return inserted, failed, n_logged

    def _log_error(
        self,
        run_id: int,
        data_source_code: str,
        table: str,
        line_number: int,
        line_content: str,
        error_type: str,
        message: str,
    ) -> None:
        self._error_log.record(
            ImportErrorRecord.create(
                run_id=run_id,
                data_source_code=data_source_code,
                table_name=table,
                line_number=line_number,
                line_content=line_content,
                error_type=error_type,
                error_message=message,
            )
        )


def _log_batch_metrics(metrics: BatchMetrics) -> None:
    logger.debug(f"batch rows={metrics.batch_size} elapsed_sec={metrics.elapsed_seconds:.3f}")
