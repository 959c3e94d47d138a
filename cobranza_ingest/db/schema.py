from __future__ import annotations

import logging
from typing import Any

from ..models.data_source import STAGING_TABLES, DataSourceCode
from .batch_insert import quote_identifier
from .connection import transaction

"""Staging table contract and DDL.

``STAGING_COLUMNS`` is the column list (and order) of the sanitized CSV for
each data source; both loaders insert exactly these columns. BASCAR has a
dedicated layout, every other source stores the whole row as JSON in
``data``.
"""

__all__ = [
    "BASCAR_COLUMNS",
    "GENERIC_COLUMNS",
    "STAGING_COLUMNS",
    "staging_columns",
    "ensure_schema",
    "clear_run_rows",
    "schema_statements",
]

logger = logging.getLogger(__name__)

BASCAR_COLUMNS: tuple[str, ...] = (
    "run_id",
    "num_tomador",
    "fecha_inicio_vig",
    "valor_total_fact",
    "periodo",
    "composite_key",
    "data",
    "cantidad_trabajadores",
    "observacion_trabajadores",
    "sheet_name",
)
GENERIC_COLUMNS: tuple[str, ...] = ("run_id", "data", "sheet_name")

STAGING_COLUMNS: dict[DataSourceCode, tuple[str, ...]] = {
    code: (BASCAR_COLUMNS if code is DataSourceCode.BASCAR else GENERIC_COLUMNS)
    for code in DataSourceCode
}

_BASCAR_DDL = """
CREATE TABLE IF NOT EXISTS "data_source_bascar" (
    id bigserial PRIMARY KEY,
    run_id integer NOT NULL,
    num_tomador varchar(50),
    fecha_inicio_vig varchar(20),
    valor_total_fact numeric(15, 2),
    periodo varchar(6),
    composite_key varchar(100),
    data jsonb,
    cantidad_trabajadores integer,
    observacion_trabajadores text,
    sheet_name text,
    created_at timestamp NOT NULL DEFAULT now()
)
"""

_GENERIC_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    id bigserial PRIMARY KEY,
    run_id integer NOT NULL,
    data jsonb,
    sheet_name text,
    created_at timestamp NOT NULL DEFAULT now()
)
"""

_ERROR_LOG_DDL = """
CREATE TABLE IF NOT EXISTS "csv_import_error_logs" (
    id bigserial PRIMARY KEY,
    run_id integer NOT NULL,
    data_source_code varchar(50) NOT NULL,
    table_name varchar(100) NOT NULL,
    line_number bigint NOT NULL,
    line_content text,
    error_type varchar(100),
    error_message text NOT NULL,
    created_at timestamp NOT NULL DEFAULT now()
)
"""


def staging_columns(code: DataSourceCode) -> tuple[str, ...]:
    return STAGING_COLUMNS[code]


def schema_statements() -> list[str]:
    """DDL for every staging table plus the error log table."""
    statements: list[str] = []
    for code, table in STAGING_TABLES.items():
        quoted = quote_identifier(table)
        if code is DataSourceCode.BASCAR:
            statements.append(_BASCAR_DDL.strip())
        else:
            statements.append(_GENERIC_DDL.format(table=quoted).strip())
        statements.append(
            f'CREATE INDEX IF NOT EXISTS "{table}_run_id_idx" ON {quoted} (run_id)'
        )
    statements.append(_ERROR_LOG_DDL.strip())
    statements.append(
        'CREATE INDEX IF NOT EXISTS "csv_import_error_logs_run_source_idx" '
        'ON "csv_import_error_logs" (run_id, data_source_code)'
    )
    return statements


def ensure_schema(cursor: Any) -> int:
    """Create missing tables and indexes in one transaction; returns statements executed."""
    statements = schema_statements()
    with transaction(cursor):
        for stmt in statements:
            cursor.execute(stmt)
    logger.info(f"schema ensured: {len(STAGING_TABLES)} staging tables + error log")
    return len(statements)


def clear_run_rows(cursor: Any, code: DataSourceCode, run_id: int) -> int:
    """Delete rows a previous attempt of this run left in the staging table."""
    table = quote_identifier(code.table_name)
    with transaction(cursor):
        cursor.execute(f"DELETE FROM {table} WHERE run_id = %s", (run_id,))
        deleted = cursor.rowcount if cursor.rowcount and cursor.rowcount > 0 else 0
    if deleted:
        logger.info(f"cleared {deleted} previous rows run_id={run_id} table={code.table_name}")
    return deleted
