from __future__ import annotations

import csv
import json
import logging
import os
import re
import shutil
import subprocess
import time
import zipfile
from datetime import date, datetime, time as dt_time
from pathlib import Path
from typing import Any, Protocol

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from ..models.config_models import ConverterConfig, DEFAULT_CONVERTER_BINARY, DEFAULT_CONVERTER_TIMEOUT
from ..models.sheet_extraction import SheetExtractionResult

"""Workbook -> CSV conversion, one CSV per sheet.

Two interchangeable converters:

- ``NativeSheetConverter`` runs the external streaming binary
  (``--input --output --delimiter``) and parses the JSON report it prints.
- ``StreamingSheetConverter`` reads the workbook in openpyxl read-only mode,
  row by row, so memory stays flat regardless of sheet size. It handles
  ``.xlsx`` only.

``build_sheet_converter`` prefers the native binary when it is installed.
"""

__all__ = [
    "ConversionError",
    "WorkbookNotFoundError",
    "SheetNotFoundError",
    "ConversionFailedError",
    "SheetConverter",
    "NativeSheetConverter",
    "StreamingSheetConverter",
    "build_sheet_converter",
    "convert_and_replace",
    "format_cell",
]

logger = logging.getLogger(__name__)

PROGRESS_EVERY_ROWS = 10_000


class ConversionError(Exception):
    """Base class for conversion failures."""


class WorkbookNotFoundError(ConversionError):
    pass


class SheetNotFoundError(ConversionError):
    pass


class ConversionFailedError(ConversionError):
    pass


class SheetConverter(Protocol):
    name: str

    def convert_all_sheets(
        self,
        workbook_path: Path,
        output_dir: Path,
        delimiter: str = ";",
        sheet_name: str | None = None,
    ) -> dict[str, SheetExtractionResult]: ...


def format_cell(value: Any) -> str:
    """Render one cell value as CSV text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, datetime):
        if value.time() == dt_time(0, 0):
            return value.strftime("%Y-%m-%d")
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, dt_time):
        return value.strftime("%H:%M:%S")
    return str(value)


def _safe_sheet_file_name(sheet_name: str, used: set[str]) -> str:
    base = re.sub(r"[^\w.-]+", "_", sheet_name).strip("._") or "sheet"
    candidate = base
    n = 2
    while candidate.lower() in used:
        candidate = f"{base}_{n}"
        n += 1
    used.add(candidate.lower())
    return f"{candidate}.csv"


class StreamingSheetConverter:
    name = "streaming"

    def convert_all_sheets(
        self,
        workbook_path: Path,
        output_dir: Path,
        delimiter: str = ";",
        sheet_name: str | None = None,
    ) -> dict[str, SheetExtractionResult]:
        workbook_path = Path(workbook_path)
        if not workbook_path.is_file():
            raise WorkbookNotFoundError(f"workbook not found: {workbook_path}")
        if workbook_path.suffix.lower() == ".xls":
            raise ConversionFailedError(
                f"legacy .xls workbooks require the native converter: {workbook_path.name}"
            )
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        try:
            wb = openpyxl.load_workbook(workbook_path, read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
            raise ConversionFailedError(f"cannot open workbook {workbook_path.name}: {e}") from e

        results: dict[str, SheetExtractionResult] = {}
        try:
            names = list(wb.sheetnames)
            if sheet_name is not None:
                if sheet_name not in names:
                    raise SheetNotFoundError(
                        f"sheet '{sheet_name}' not found in {workbook_path.name}"
                    )
                names = [sheet_name]
            used: set[str] = set()
            for name in names:
                target = output_dir / _safe_sheet_file_name(name, used)
                results[name] = self._write_sheet(wb[name], name, target, delimiter)
        finally:
            wb.close()
        total = sum(r.rows for r in results.values())
        logger.info(
            f"workbook converted file={workbook_path.name} sheets={len(results)} rows={total}"
        )
        return results

    @staticmethod
    def _write_sheet(ws: Any, name: str, target: Path, delimiter: str) -> SheetExtractionResult:
        start = time.perf_counter()
        rows = 0
        with target.open("w", encoding="utf-8", newline="") as fh:
            writer = csv.writer(
                fh, delimiter=delimiter, quoting=csv.QUOTE_MINIMAL, lineterminator="\n"
            )
            for values in ws.iter_rows(values_only=True):
                writer.writerow([format_cell(v) for v in values])
                rows += 1
                if rows % PROGRESS_EVERY_ROWS == 0:
                    logger.info(f"sheet progress sheet={name} rows={rows:,}")
        duration_ms = int((time.perf_counter() - start) * 1000)
        return SheetExtractionResult(
            sheet_name=name,
            csv_path=target,
            rows=rows,
            size_bytes=target.stat().st_size,
            duration_ms=duration_ms,
        )


class NativeSheetConverter:
    name = "native"

    def __init__(
        self,
        binary_path: str = DEFAULT_CONVERTER_BINARY,
        timeout_seconds: int = DEFAULT_CONVERTER_TIMEOUT,
    ) -> None:
        self.binary_path = binary_path
        self.timeout_seconds = timeout_seconds

    def is_available(self) -> bool:
        return os.path.isfile(self.binary_path) and os.access(self.binary_path, os.X_OK)

    def describe(self) -> dict[str, Any]:
        executable = self.is_available()
        return {"available": executable, "path": self.binary_path, "executable": executable}

    def convert_all_sheets(
        self,
        workbook_path: Path,
        output_dir: Path,
        delimiter: str = ";",
        sheet_name: str | None = None,
    ) -> dict[str, SheetExtractionResult]:
        workbook_path = Path(workbook_path)
        if not workbook_path.is_file():
            raise WorkbookNotFoundError(f"workbook not found: {workbook_path}")
        if not os.path.isfile(self.binary_path):
            raise ConversionFailedError(f"converter binary not found: {self.binary_path}")
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        size_mb = round(workbook_path.stat().st_size / 1024 / 1024, 2)
        logger.info(f"native conversion start file={workbook_path.name} size_mb={size_mb}")
        cmd = [
            self.binary_path,
            "--input", str(workbook_path.resolve()),
            "--output", str(output_dir.resolve()),
            "--delimiter", delimiter,
        ]
        try:
            proc = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout_seconds, check=False
            )
        except subprocess.TimeoutExpired as e:
            raise ConversionFailedError(
                f"native converter timed out after {self.timeout_seconds}s"
            ) from e
        except OSError as e:
            raise ConversionFailedError(f"cannot run native converter: {e}") from e

        if proc.returncode != 0:
            logger.error(
                f"native converter exit={proc.returncode} stderr={proc.stderr.strip()[:500]}"
            )
            raise ConversionFailedError(
                f"native converter failed (exit {proc.returncode}): {proc.stderr.strip()}"
            )
        report = self._parse_report(proc.stdout)
        try:
            results = self._sheet_results(report.get("sheets") or [])
            total_ms = int(report.get("total_time_ms") or 0)
            total_rows = int(report.get("total_rows") or 0)
        except (KeyError, TypeError, ValueError) as e:
            raise ConversionFailedError(
                f"malformed native converter report: {proc.stdout.strip()[:500]}"
            ) from e
        rps = round(total_rows / (total_ms / 1000)) if total_ms > 0 else 0
        logger.info(
            f"native conversion done sheets={len(results)} rows={total_rows} "
            f"time_ms={total_ms} rows_per_sec={rps}"
        )
        if sheet_name is not None:
            if sheet_name not in results:
                raise SheetNotFoundError(f"sheet '{sheet_name}' not found in {workbook_path.name}")
            return {sheet_name: results[sheet_name]}
        return results

    @staticmethod
    def _sheet_results(sheets: Any) -> dict[str, SheetExtractionResult]:
        if not isinstance(sheets, list):
            raise TypeError(f"sheets must be a list, got {type(sheets).__name__}")
        results: dict[str, SheetExtractionResult] = {}
        for sheet in sheets:
            path = Path(sheet["path"])
            size = path.stat().st_size if path.exists() else int(float(sheet.get("size_kb", 0)) * 1024)
            results[sheet["name"]] = SheetExtractionResult(
                sheet_name=sheet["name"],
                csv_path=path,
                rows=int(sheet.get("rows", 0)),
                size_bytes=size,
                duration_ms=int(sheet.get("duration_ms", 0)),
            )
        return results

    @staticmethod
    def _parse_report(stdout: str) -> dict[str, Any]:
        try:
            report = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ConversionFailedError(f"invalid native converter output: {stdout[:500]}") from e
        if not isinstance(report, dict) or "success" not in report:
            raise ConversionFailedError(f"invalid native converter output: {stdout[:500]}")
        if not report["success"]:
            raise ConversionFailedError(
                f"native converter failed: {report.get('error') or 'unknown error'}"
            )
        return report


def build_sheet_converter(config: ConverterConfig) -> SheetConverter:
    """Native converter when configured and installed, otherwise the streaming reader."""
    native = NativeSheetConverter(config.binary_path, config.timeout_seconds)
    if config.prefer_native and native.is_available():
        logger.debug(f"using native converter {config.binary_path}")
        return native
    logger.debug("native converter unavailable, using streaming reader")
    return StreamingSheetConverter()


def convert_and_replace(
    converter: SheetConverter,
    workbook_path: Path,
    sheet_name: str | None = None,
    delimiter: str = ";",
) -> SheetExtractionResult:
    """Convert one sheet (named, else the first) to ``<workbook>.csv`` and delete the workbook."""
    workbook_path = Path(workbook_path)
    scratch = workbook_path.with_name(f".{workbook_path.stem}_sheets")
    try:
        results = converter.convert_all_sheets(workbook_path, scratch, delimiter, sheet_name)
        if not results:
            raise ConversionFailedError(f"workbook has no sheets: {workbook_path.name}")
        chosen = results[sheet_name] if sheet_name is not None else next(iter(results.values()))
        target = workbook_path.with_suffix(".csv")
        shutil.move(str(chosen.csv_path), target)
    finally:
        shutil.rmtree(scratch, ignore_errors=True)
    workbook_path.unlink()
    logger.info(f"workbook replaced by CSV file={target.name} rows={chosen.rows}")
    return SheetExtractionResult(
        sheet_name=chosen.sheet_name,
        csv_path=target,
        rows=chosen.rows,
        size_bytes=target.stat().st_size,
        duration_ms=chosen.duration_ms,
    )
