from __future__ import annotations

from ..models.import_result import CopyImportResult, ResilientImportResult
from ..models.run import RunResult

"""SUMMARY line rendering.

Formats (one line, space separated key=value pairs):

    SUMMARY table=<t> strategy=resilient rows=<n> success=<n> errors=<n> logged=<n> elapsed_sec=<s>
    SUMMARY table=<t> strategy=copy rows=<n> success=<n> errors=0 logged=0 elapsed_sec=<s>
    SUMMARY run_id=<id> status=<status> sources=<n> rows=<n> errors=<n> elapsed_sec=<s>

A failed run appends ``error="<message>"``.
"""

__all__ = [
    "format_seconds",
    "render_import_summary",
    "render_run_summary",
]


def format_seconds(seconds: float) -> str:
    """Integral values without decimals, tiny values without scientific notation."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return str(round(seconds, 3))


def render_import_summary(table: str, result: CopyImportResult | ResilientImportResult) -> str:
    if isinstance(result, ResilientImportResult):
        strategy = "resilient"
        rows, success = result.total_rows, result.success_rows
        errors, logged = result.error_rows, result.errors_logged
    else:
        strategy = "copy"
        rows = success = result.rows_imported
        errors = logged = 0
    return (
        f"SUMMARY table={table} strategy={strategy} rows={rows} success={success} "
        f"errors={errors} logged={logged} elapsed_sec={format_seconds(result.duration_ms / 1000)}"
    )


def render_run_summary(result: RunResult) -> str:
    line = (
        f"SUMMARY run_id={result.run_id} status={result.status.value} "
        f"sources={len(result.loads)} rows={result.total_rows} errors={result.error_rows} "
        f"elapsed_sec={format_seconds(result.elapsed_seconds)}"
    )
    if result.error:
        line += f' error="{result.error}"'
    return line
