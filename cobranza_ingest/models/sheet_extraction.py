from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

"""Per-sheet CSV artifacts produced by the converter and the sanitizer."""

__all__ = [
    "SheetExtractionResult",
    "SanitizedCsvResult",
]


@dataclass(frozen=True)
class SheetExtractionResult:
    sheet_name: str
    csv_path: Path
    rows: int  # data lines written (header row included when the sheet has one)
    size_bytes: int
    duration_ms: int

    @property
    def size_kb(self) -> float:
        return round(self.size_bytes / 1024, 2)


@dataclass(frozen=True)
class SanitizedCsvResult:
    path: Path
    columns: tuple[str, ...]  # staging column order written in the header
    rows: int
    backslash_rows: int = 0
    backslash_samples: tuple[int, ...] = ()  # first affected line numbers
    duration_ms: int = 0
