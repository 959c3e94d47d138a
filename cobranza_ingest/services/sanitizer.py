from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from ..db.schema import STAGING_COLUMNS
from ..models.data_source import DataSourceCode, UnknownDataSourceError
from ..models.sheet_extraction import SanitizedCsvResult
from .csv_records import read_csv_records
from .encoding import detect_text_encoding

"""Row sanitizer: raw data source CSV -> staging table CSV.

BASCAR rows keep three business columns next to the JSON blob; every other
source is stored as ``run_id;data;sheet_name``. Backslashes are replaced by a
space everywhere (they break COPY's CSV escaping downstream) and the affected
lines are reported, never rejected. Blank rows are dropped.

The output file sits next to the input as ``<name>.transformed.csv`` and its
header is the staging column list, so either loader can consume it as is.
"""

__all__ = [
    "RowSanitizer",
    "SanitizerError",
    "MissingRequiredColumnError",
    "UnsupportedDataSourceError",
    "BASCAR_REQUIRED_COLUMNS",
    "normalize_amount",
    "encode_row_json",
]

logger = logging.getLogger(__name__)

BASCAR_REQUIRED_COLUMNS = ("NUM_TOMADOR", "FECHA_INICIO_VIG", "VALOR_TOTAL_FACT")
TRANSFORMED_SUFFIX = ".transformed.csv"
WARNING_SAMPLE_LIMIT = 10


class SanitizerError(Exception):
    pass


class MissingRequiredColumnError(SanitizerError):
    pass


class UnsupportedDataSourceError(SanitizerError):
    pass


def normalize_amount(value: str | None) -> str | None:
    """Locale amount to a plain decimal: ``1.234.567,89`` -> ``1234567.89``; blank -> None."""
    if value is None:
        return None
    cleaned = value.strip().replace(".", "").replace(",", ".")
    return cleaned or None


def encode_row_json(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def _strip_backslashes(value: str) -> tuple[str, bool]:
    if "\\" not in value:
        return value, False
    return value.replace("\\", " "), True


class RowSanitizer:
    def __init__(self, delimiter: str = ";") -> None:
        self.delimiter = delimiter

    @staticmethod
    def supports(code: str | DataSourceCode) -> bool:
        try:
            DataSourceCode.parse(code)
        except UnknownDataSourceError:
            return False
        return True

    @staticmethod
    def column_map(code: str | DataSourceCode) -> tuple[str, ...]:
        try:
            return STAGING_COLUMNS[DataSourceCode.parse(code)]
        except UnknownDataSourceError as e:
            raise UnsupportedDataSourceError(f"data source not supported: {code}") from e

    def sanitize(
        self,
        csv_path: Path,
        run_id: int,
        data_source: str | DataSourceCode,
        sheet_name: str = "",
    ) -> SanitizedCsvResult:
        """Write the staging-shaped CSV for ``csv_path``.

        Raises:
            UnsupportedDataSourceError: unknown data source code
            SanitizerError: the input has no header line
            MissingRequiredColumnError: BASCAR input lacks a required column
        """
        start = time.perf_counter()
        columns = self.column_map(data_source)
        code = DataSourceCode.parse(data_source)
        dedicated = code is DataSourceCode.BASCAR
        csv_path = Path(csv_path)
        output_path = csv_path.with_name(csv_path.name + TRANSFORMED_SUFFIX)
        encoding = detect_text_encoding(csv_path)
        if encoding != "utf-8-sig":
            logger.warning(f"non UTF-8 input read as {encoding} file={csv_path.name}")

        rows = 0
        warning_lines: list[int] = []
        warning_count = 0
        with csv_path.open("r", encoding=encoding, newline="") as src:
            records = read_csv_records(src, self.delimiter)
            header_record = next(records, None)
            if header_record is None:
                raise SanitizerError(f"CSV without header: {csv_path}")
            headers = [h.strip() for h in header_record.fields]
            index = {name.upper(): i for i, name in enumerate(headers)}
            if dedicated:
                for column in BASCAR_REQUIRED_COLUMNS:
                    if column not in index:
                        raise MissingRequiredColumnError(
                            f'BASCAR CSV without required column "{column}" in file {csv_path}'
                        )

            with output_path.open("w", encoding="utf-8", newline="") as out:
                out.write(self.delimiter.join(columns) + "\n")
                for record in records:
                    if record.is_blank():
                        continue
                    data, had_backslash = self._row_json(headers, record.fields)
                    if dedicated:
                        output_row = self._bascar_row(record.fields, index, run_id, data, sheet_name)
                        json_index = columns.index("data")
                    else:
                        output_row = [run_id, data, sheet_name]
                        json_index = 1
                    if had_backslash:
                        warning_count += 1
                        if len(warning_lines) < WARNING_SAMPLE_LIMIT:
                            warning_lines.append(record.line_number)
                    out.write(self._csv_line(output_row, json_index) + "\n")
                    rows += 1

        duration_ms = int((time.perf_counter() - start) * 1000)
        summary = (
            f"source={code.value} original={csv_path.name} "
            f"transformed={output_path.name} rows_processed={rows}"
        )
        if warning_count:
            logger.warning(
                f"CSV sanitized with warnings {summary} rows_with_backslash_warnings={warning_count} "
                f"sample_warning_lines={warning_lines}"
            )
        else:
            logger.info(f"CSV sanitized {summary}")
        return SanitizedCsvResult(
            path=output_path,
            columns=columns,
            rows=rows,
            backslash_rows=warning_count,
            backslash_samples=tuple(warning_lines),
            duration_ms=duration_ms,
        )

    @staticmethod
    def _row_json(headers: list[str], fields: list[str]) -> tuple[str, bool]:
        data: dict[str, Any] = {}
        had_backslash = False
        for i, header in enumerate(headers):
            if i < len(fields):
                value, changed = _strip_backslashes(fields[i])
                had_backslash = had_backslash or changed
                data[header] = value
            else:
                data[header] = None
        return encode_row_json(data), had_backslash

    @staticmethod
    def _bascar_row(
        fields: list[str], index: dict[str, int], run_id: int, data: str, sheet_name: str
    ) -> list[Any]:
        def cell(name: str) -> str | None:
            i = index[name]
            return fields[i] if i < len(fields) else None

        num_tomador = _strip_backslashes(cell("NUM_TOMADOR") or "")[0]
        fecha = _strip_backslashes(cell("FECHA_INICIO_VIG") or "")[0]
        return [
            run_id,
            num_tomador,
            fecha,
            normalize_amount(cell("VALOR_TOTAL_FACT")),
            None,  # periodo
            None,  # composite_key
            data,
            None,  # cantidad_trabajadores
            None,  # observacion_trabajadores
            sheet_name,
        ]

    def _csv_line(self, row: list[Any], json_index: int) -> str:
        segments: list[str] = []
        for i, value in enumerate(row):
            if value is None or value == "":
                segments.append("")
                continue
            text = str(value)
            if i == json_index or any(ch in text for ch in (self.delimiter, '"', "\n", "\r")):
                segments.append('"' + text.replace('"', '""') + '"')
            else:
                segments.append(text)
        return self.delimiter.join(segments)
