from __future__ import annotations

import re
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import psycopg2
from psycopg2.extras import execute_values

"""Batched INSERT through psycopg2.extras.execute_values.

Row-level database errors (bad data, constraint violations) are wrapped in
``BatchInsertError`` so callers can fall back to row-by-row insertion.
Connection-level errors (``OperationalError`` / ``InterfaceError``) are not
wrapped and propagate unchanged.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
    "insert_sql",
    "quote_identifier",
    "CONNECTION_ERRORS",
]

CONNECTION_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing data for a single batch insert."""
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on execute_values call
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int


def quote_identifier(name: str) -> str:
    """Double-quote a table or column name after checking it is a plain identifier."""
    if not _IDENTIFIER.match(name):
        raise ValueError(f"invalid SQL identifier: {name!r}")
    return f'"{name}"'


def insert_sql(table: str, columns: Sequence[str], values: str = "%s") -> str:
    cols_sql = ",".join(quote_identifier(c) for c in columns)
    return f"INSERT INTO {quote_identifier(table)} ({cols_sql}) VALUES {values}"


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Perform batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: target table (plain identifier)
    columns: insert columns, same order as each row
    rows: row sequences
    page_size: execute_values page size
    metrics_callback: receives BatchMetrics after the statement ran.
        Not invoked when ``rows`` is empty (nothing is executed).
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0)

    sql = insert_sql(table, columns)

    start_time = time.time()
    try:
        execute_values(cursor, sql, rows_list, page_size=page_size)
    except CONNECTION_ERRORS:
        raise
    except psycopg2.Error as e:
        raise BatchInsertError(str(e).strip()) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows_list))
