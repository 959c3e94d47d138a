from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from .data_source import DataSourceCode
from .upload import UploadedFileMetadata

"""Run domain models.

A run is one execution of a notice type over a set of uploaded files, one
per required data source. Pipeline steps mutate the run they are handed:
status, the CSV artifacts produced per data source and per-source load
outcomes. Nothing else writes to it.
"""

__all__ = [
    "RunStatus",
    "NoticeType",
    "DataSourceFile",
    "SourceCsv",
    "DataSourceLoad",
    "CollectionRun",
    "RunResult",
]


class RunStatus(str, Enum):
    PENDING = "pending"
    VALIDATING = "validating"
    VALIDATION_FAILED = "validation_failed"
    VALIDATED = "validated"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            RunStatus.VALIDATION_FAILED,
            RunStatus.COMPLETED,
            RunStatus.FAILED,
            RunStatus.CANCELLED,
        )


class NoticeType(str, Enum):
    CONSTITUCION_MORA_APORTANTES = "constitucion_mora_aportantes"
    CONSTITUCION_MORA_INDEPENDIENTES = "constitucion_mora_independientes"
    AVISO_INCUMPLIMIENTO_APORTANTES = "aviso_incumplimiento_aportantes"
    AVISO_INCUMPLIMIENTO_ESTADOS_CUENTA = "aviso_incumplimiento_estados_cuenta"


@dataclass(frozen=True)
class DataSourceFile:
    code: DataSourceCode
    metadata: UploadedFileMetadata


@dataclass(frozen=True)
class SourceCsv:
    """A CSV ready for the next stage; ``sheet_name`` is empty for plain CSV uploads."""
    path: Path
    sheet_name: str = ""


@dataclass(frozen=True)
class DataSourceLoad:
    code: DataSourceCode
    table_name: str
    strategy: str
    total_rows: int
    success_rows: int
    error_rows: int
    duration_ms: int


@dataclass
class CollectionRun:
    run_id: int
    notice_type: NoticeType
    files: dict[DataSourceCode, DataSourceFile]
    period: str | None = None
    status: RunStatus = RunStatus.PENDING
    error: str | None = None
    status_history: list[RunStatus] = field(default_factory=list)
    # filled in by the pipeline steps
    csv_files: dict[DataSourceCode, list[SourceCsv]] = field(default_factory=dict)
    sanitized_files: dict[DataSourceCode, list[SourceCsv]] = field(default_factory=dict)
    loads: list[DataSourceLoad] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def transition(self, status: RunStatus) -> None:
        self.status = status
        self.status_history.append(status)

    def fail(self, status: RunStatus, message: str) -> None:
        self.error = message
        self.transition(status)


@dataclass(frozen=True)
class RunResult:
    run_id: int
    status: RunStatus
    loads: tuple[DataSourceLoad, ...]
    elapsed_seconds: float
    error: str | None = None

    @property
    def total_rows(self) -> int:
        return sum(load.total_rows for load in self.loads)

    @property
    def error_rows(self) -> int:
        return sum(load.error_rows for load in self.loads)

    @staticmethod
    def from_run(run: CollectionRun) -> RunResult:
        finished = run.finished_at or datetime.now(UTC)
        started = run.started_at or finished
        return RunResult(
            run_id=run.run_id,
            status=run.status,
            loads=tuple(run.loads),
            elapsed_seconds=(finished - started).total_seconds(),
            error=run.error,
        )
