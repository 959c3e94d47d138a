from __future__ import annotations

import csv
import logging
from collections.abc import Sequence
from pathlib import Path

from .encoding import detect_text_encoding

"""Header structure check for data source CSVs.

Only the header line is read. Pipeline validation passes the configured
import delimiter so it splits the header exactly as the sanitizer will; without
one, the delimiter is detected from the line (``;``, ``,``, tab or ``|``,
whichever occurs most).
"""

__all__ = [
    "StructureError",
    "detect_delimiter",
    "read_header",
    "check_header",
]

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = (";", ",", "\t", "|")


class StructureError(Exception):
    pass


def detect_delimiter(line: str) -> str:
    best, best_count = ",", 0
    for delimiter in CANDIDATE_DELIMITERS:
        count = line.count(delimiter)
        if count > best_count:
            best, best_count = delimiter, count
    return best


def read_header(csv_path: Path, delimiter: str | None = None) -> list[str]:
    csv_path = Path(csv_path)
    with csv_path.open("r", encoding=detect_text_encoding(csv_path), newline="") as fh:
        first = fh.readline()
    if not first.strip():
        raise StructureError(f'file "{csv_path.name}" is empty or has no header')
    delim = delimiter or detect_delimiter(first)
    fields = next(csv.reader([first], delimiter=delim))
    return [f.strip() for f in fields]


def check_header(
    csv_path: Path,
    expected_columns: Sequence[str],
    label: str,
    delimiter: str | None = None,
) -> list[str]:
    """Ensure every expected column is present (case-insensitive); returns the header."""
    header = read_header(csv_path, delimiter)
    present = {h.upper() for h in header}
    missing = [c for c in expected_columns if c.strip().upper() not in present]
    if missing:
        raise StructureError(
            f"{label}: {len(missing)} missing column(s): {', '.join(missing)}"
        )
    logger.debug(f"header ok {label} columns={len(header)}")
    return header
