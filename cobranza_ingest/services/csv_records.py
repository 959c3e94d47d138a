from __future__ import annotations

import csv
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TextIO

"""CSV record reader, one record per physical line.

Each line is parsed on its own, so an unbalanced quote only damages the row
it sits on; it never pulls the following lines into one field. Quoted fields
spanning several lines are therefore not supported (the sanitized files never
contain them: the JSON blob escapes newlines).
"""

__all__ = [
    "CsvRecord",
    "read_csv_records",
]


@dataclass(frozen=True)
class CsvRecord:
    line_number: int  # physical line, header is line 1
    raw: str
    fields: list[str]

    def is_blank(self) -> bool:
        return all(not f.strip() for f in self.fields)


def read_csv_records(fh: TextIO, delimiter: str = ";") -> Iterator[CsvRecord]:
    """Yield parsed records with their line number and raw text.

    Empty lines are skipped but still counted. ``fh`` must be opened with
    ``newline=""``.
    """
    for line_number, line in enumerate(fh, start=1):
        raw = line.rstrip("\r\n")
        if not raw:
            continue
        fields = next(csv.reader([raw], delimiter=delimiter))
        yield CsvRecord(line_number=line_number, raw=raw, fields=fields)
