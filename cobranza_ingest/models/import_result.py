from __future__ import annotations

from dataclasses import dataclass

"""Result models for the two bulk loading strategies."""

__all__ = [
    "CopyImportResult",
    "ResilientImportResult",
    "RowInsertOutcome",
]


@dataclass(frozen=True)
class CopyImportResult:
    rows_imported: int
    duration_ms: int


@dataclass(frozen=True)
class ResilientImportResult:
    """Counters of one resilient import.

    ``success_rows + error_rows == total_rows`` always holds; construction
    fails otherwise so a miscount surfaces immediately.
    """
    total_rows: int
    success_rows: int
    error_rows: int
    errors_logged: int
    duration_ms: int

    def __post_init__(self) -> None:
        if self.success_rows + self.error_rows != self.total_rows:
            raise ValueError(
                f"inconsistent counters: success={self.success_rows} "
                f"error={self.error_rows} total={self.total_rows}"
            )

    @property
    def has_errors(self) -> bool:
        return self.error_rows > 0


@dataclass(frozen=True)
class RowInsertOutcome:
    """Outcome of inserting a single row: ok, or the database message."""
    ok: bool
    error: str | None = None

    @staticmethod
    def success() -> RowInsertOutcome:
        return RowInsertOutcome(ok=True)

    @staticmethod
    def failure(message: str) -> RowInsertOutcome:
        return RowInsertOutcome(ok=False, error=message)
