from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..db.connection import transaction
from ..models.error_record import ImportErrorRecord

"""Row-level error logging.

- ``ErrorLogBuffer``: in-memory buffer flushed as JSON Lines to
  ``logs/import-errors-YYYYMMDD-HHMMSS.log`` (UTC), file path fixed on first use.
- ``DatabaseErrorLog``: persists each record in ``csv_import_error_logs`` in
  its own transaction so a rolled back data batch never takes its error
  records with it. When that insert fails the record goes to the buffer and
  to the application log at ERROR level.
"""

__all__ = [
    "ImportErrorRecord",
    "ErrorLogBuffer",
    "DatabaseErrorLog",
    "ERROR_LOG_TABLE",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"
ERROR_LOG_TABLE = "csv_import_error_logs"
ERROR_LOG_COLUMNS = (
    "run_id",
    "data_source_code",
    "table_name",
    "line_number",
    "line_content",
    "error_type",
    "error_message",
    "created_at",
)

logger = logging.getLogger(__name__)


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    Serial use only; no locking.
    """
    def __init__(self, logs_dir: Path | None = None) -> None:
        self._records: list[ImportErrorRecord] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir or LOGS_DIR

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"import-errors-{stamp}.log"
        return self._file_path

    def append(self, record: ImportErrorRecord) -> None:
        self._records.append(record)

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file; None when nothing was buffered."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp


class DatabaseErrorLog:
    """Write error records to ``csv_import_error_logs``.

    ``record()`` returns True when the row reached the table. Connection-level
    failures are not special-cased here: the record is kept in the fallback
    buffer and the next data statement surfaces the broken connection.
    """

    def __init__(self, cursor: Any, fallback: ErrorLogBuffer | None = None) -> None:
        self._cursor = cursor
        self.fallback = fallback if fallback is not None else ErrorLogBuffer()
        self.logged = 0

    def record(self, record: ImportErrorRecord) -> bool:
        cols_sql = ",".join(f'"{c}"' for c in ERROR_LOG_COLUMNS)
        placeholders = ",".join(["%s"] * len(ERROR_LOG_COLUMNS))
        sql = f'INSERT INTO "{ERROR_LOG_TABLE}" ({cols_sql}) VALUES ({placeholders})'
        values = tuple(getattr(record, c) for c in ERROR_LOG_COLUMNS)
        try:
            with transaction(self._cursor):
                self._cursor.execute(sql, values)
        except Exception as e:
            logger.error(
                f"error log insert failed table={record.table_name} "
                f"line={record.line_number} type={record.error_type}: {e}"
            )
            self.fallback.append(record)
            return False
        self.logged += 1
        return True
