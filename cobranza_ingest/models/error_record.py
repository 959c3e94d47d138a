from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

"""Row-level import error record.

One record per rejected CSV line. The same shape is written to the
``csv_import_error_logs`` table and, as fallback, to a JSON Lines file
(fixed key set, no extra keys).
"""

__all__ = [
    "ImportErrorRecord",
    "COLUMN_MISMATCH",
    "INSERT_ERROR",
    "ERROR_TYPES",
    "LINE_CONTENT_LIMIT",
    "ERROR_MESSAGE_LIMIT",
]

COLUMN_MISMATCH = "column_mismatch"
INSERT_ERROR = "insert_error"
ERROR_TYPES = (COLUMN_MISMATCH, INSERT_ERROR)

LINE_CONTENT_LIMIT = 500
ERROR_MESSAGE_LIMIT = 1000


@dataclass(frozen=True)
class ImportErrorRecord:
    """Structured error record.

    Attributes:
        run_id: run the rejected row belonged to
        data_source_code: e.g. ``BASCAR``
        table_name: staging table the row was meant for
        line_number: physical line of the CSV file (1-based, header is line 1)
        line_content: raw line, truncated to 500 characters
        error_type: ``column_mismatch`` or ``insert_error``
        error_message: database or validation message, truncated to 1000 characters
        created_at: ISO8601 UTC timestamp with 'Z' suffix
    """
    run_id: int
    data_source_code: str
    table_name: str
    line_number: int
    line_content: str
    error_type: str
    error_message: str
    created_at: str

    @staticmethod
    def create(
        run_id: int,
        data_source_code: str,
        table_name: str,
        line_number: int,
        line_content: str,
        error_type: str,
        error_message: str,
    ) -> ImportErrorRecord:
        if error_type not in ERROR_TYPES:
            raise ValueError(f"unknown error_type: {error_type}")
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ImportErrorRecord(
            run_id=run_id,
            data_source_code=data_source_code,
            table_name=table_name,
            line_number=line_number,
            line_content=line_content[:LINE_CONTENT_LIMIT],
            error_type=error_type,
            error_message=error_message[:ERROR_MESSAGE_LIMIT],
            created_at=ts,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
