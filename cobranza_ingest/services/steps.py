from __future__ import annotations

import shutil
import time
from pathlib import Path

from ..db import copy_import
from ..db.errors import CsvImportError
from ..db.resilient_import import ResilientImporter
from ..db.schema import clear_run_rows
from ..excel.converter import ConversionError
from ..models.data_source import DataSourceCode
from ..models.run import CollectionRun, DataSourceLoad, RunStatus, SourceCsv
from ..uploads.errors import UploadValidationError
from .context import IngestServices
from .orchestrator import StepError
from .progress import LoadProgress
from .sanitizer import SanitizerError
from .structure import StructureError, check_header

"""Pipeline steps.

Each step reads what earlier steps left on the run and writes its own
artifacts back:

    ValidateFilesStep   run.files                -> (status only)
    ConvertWorkbooksStep run.files               -> run.csv_files
    SanitizeStep        run.csv_files            -> run.sanitized_files
    LoadStep            run.sanitized_files      -> run.loads
    CleanupStep         intermediate files       -> removed
"""

__all__ = [
    "ValidateFilesStep",
    "ConvertWorkbooksStep",
    "SanitizeStep",
    "LoadStep",
    "CleanupStep",
]


class ValidateFilesStep:
    """Check every uploaded file; all failures are collected before the run is failed."""

    name = "validate_files"
    running_status = RunStatus.VALIDATING
    completed_status: RunStatus | None = RunStatus.VALIDATED
    failure_status = RunStatus.VALIDATION_FAILED

    def __init__(self, expected_sources: tuple[DataSourceCode, ...]) -> None:
        self.expected_sources = expected_sources

    def should_execute(self, run: CollectionRun, services: IngestServices) -> bool:
        return True

    def execute(self, run: CollectionRun, services: IngestServices) -> None:
        problems: list[str] = []
        for code in self.expected_sources:
            if code not in run.files:
                problems.append(f"{code.value}: file not provided")

        for code, source in run.files.items():
            if code not in self.expected_sources:
                expected = ", ".join(c.value for c in self.expected_sources)
                problems.append(
                    f"{code.value}: data source not valid for {run.notice_type.value} "
                    f"(expected {expected})"
                )
                continue
            try:
                path = services.validator.validate(source.metadata)
                required = services.config.required_columns.get(code.value)
                if required and source.metadata.is_csv_or_text():
                    check_header(
                        path, required, code.value, services.config.imports.delimiter
                    )
            except (UploadValidationError, StructureError) as e:
                services.logger.warning(
                    f"file failed validation source={code.value} "
                    f"file={source.metadata.original_name}: {e}"
                )
                problems.append(f"{code.value}: {e}")

        if problems:
            raise StepError(
                "one or more files failed validation; " + "; ".join(problems)
            )
        services.logger.info(f"files validated run_id={run.run_id} files={len(run.files)}")


class ConvertWorkbooksStep:
    """Turn every workbook into one CSV per sheet; CSV uploads pass through unchanged."""

    name = "convert_workbooks"
    running_status = RunStatus.PROCESSING
    completed_status: RunStatus | None = None
    failure_status = RunStatus.FAILED

    def should_execute(self, run: CollectionRun, services: IngestServices) -> bool:
        return bool(run.files)

    def execute(self, run: CollectionRun, services: IngestServices) -> None:
        delimiter = services.config.imports.delimiter
        for code, source in run.files.items():
            path = services.validator.resolve(source.metadata)
            if not source.metadata.is_excel():
                run.csv_files[code] = [SourceCsv(path)]
                continue
            out_dir = services.run_work_dir(run.run_id) / code.value.lower()
            try:
                sheets = services.converter.convert_all_sheets(path, out_dir, delimiter)
            except ConversionError as e:
                raise StepError(f"{code.value}: {e}") from e
            if not sheets:
                raise StepError(f"{code.value}: workbook has no sheets")
            run.csv_files[code] = [SourceCsv(r.csv_path, name) for name, r in sheets.items()]
            services.logger.info(
                f"workbook converted source={code.value} sheets={len(sheets)} "
                f"rows={sum(r.rows for r in sheets.values())}"
            )


class SanitizeStep:
    name = "sanitize"
    running_status = RunStatus.PROCESSING
    completed_status: RunStatus | None = None
    failure_status = RunStatus.FAILED

    def should_execute(self, run: CollectionRun, services: IngestServices) -> bool:
        return bool(run.csv_files)

    def execute(self, run: CollectionRun, services: IngestServices) -> None:
        for code, csvs in run.csv_files.items():
            sanitized: list[SourceCsv] = []
            for csv in csvs:
                try:
                    result = services.sanitizer.sanitize(csv.path, run.run_id, code, csv.sheet_name)
                except (SanitizerError, OSError) as e:
                    raise StepError(f"{code.value}: {e}") from e
                sanitized.append(SourceCsv(result.path, csv.sheet_name))
            run.sanitized_files[code] = sanitized


class LoadStep:
    """Load every sanitized CSV into its staging table with the configured strategy.

    Rows a previous attempt of the same run left behind are deleted first.
    """

    name = "load"
    running_status = RunStatus.PROCESSING
    completed_status: RunStatus | None = None
    failure_status = RunStatus.FAILED

    def __init__(self, strategy: str = "resilient") -> None:
        if strategy not in ("resilient", "copy"):
            raise ValueError(f"unknown load strategy: {strategy}")
        self.strategy = strategy

    def should_execute(self, run: CollectionRun, services: IngestServices) -> bool:
        return bool(run.sanitized_files)

    def execute(self, run: CollectionRun, services: IngestServices) -> None:
        if services.cursor is None:
            raise StepError("no database connection available")
        with LoadProgress(len(run.sanitized_files)) as progress:
            for code, csvs in run.sanitized_files.items():
                progress.begin_source(code.value)
                load = self._load_source(run, services, code, csvs, progress)
                run.loads.append(load)
                progress.end_source(load.total_rows, load.error_rows)

    def _load_source(
        self,
        run: CollectionRun,
        services: IngestServices,
        code: DataSourceCode,
        csvs: list[SourceCsv],
        progress: LoadProgress,
    ) -> DataSourceLoad:
        start = time.perf_counter()
        table = code.table_name
        columns = services.sanitizer.column_map(code)
        delimiter = services.config.imports.delimiter
        clear_run_rows(services.cursor, code, run.run_id)

        importer = None
        if self.strategy == "resilient":
            importer = ResilientImporter(
                services.cursor,
                services.error_log,
                batch_size=services.config.imports.batch_size,
                progress_every=services.config.imports.progress_every,
            )

        total = success = errors = 0
        per_sheet = len(csvs) > 1
        for csv in csvs:
            try:
                if importer is None:
                    copied = copy_import.import_from_file(
                        services.cursor, table, csv.path, columns, delimiter
                    )
                    sheet_rows = copied.rows_imported
                    success += copied.rows_imported
                else:
                    result = importer.import_from_file(
                        table, csv.path, columns, run.run_id, code.value, delimiter
                    )
                    sheet_rows = result.total_rows
                    success += result.success_rows
                    errors += result.error_rows
                total += sheet_rows
            except CsvImportError as e:
                if per_sheet:
                    progress.sheet_done(code.value, csv.sheet_name, None)
                raise StepError(f"{code.value}: {e}") from e
            if per_sheet:
                progress.sheet_done(code.value, csv.sheet_name, sheet_rows)

        return DataSourceLoad(
            code=code,
            table_name=table,
            strategy=self.strategy,
            total_rows=total,
            success_rows=success,
            error_rows=errors,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )


class CleanupStep:
    """Remove sanitized CSVs and the run's conversion work directory."""

    name = "cleanup"
    running_status = RunStatus.PROCESSING
    completed_status: RunStatus | None = None
    failure_status = RunStatus.FAILED

    def should_execute(self, run: CollectionRun, services: IngestServices) -> bool:
        return bool(run.sanitized_files) or services.run_work_dir(run.run_id).exists()

    def execute(self, run: CollectionRun, services: IngestServices) -> None:
        removed = 0
        for csvs in run.sanitized_files.values():
            for csv in csvs:
                path = Path(csv.path)
                if path.exists():
                    path.unlink()
                    removed += 1
        shutil.rmtree(services.run_work_dir(run.run_id), ignore_errors=True)
        services.logger.debug(f"intermediate files removed run_id={run.run_id} files={removed}")
