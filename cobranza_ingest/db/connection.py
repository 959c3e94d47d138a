from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg2

from ..models.config_models import DatabaseConfig

"""psycopg2 connection helpers.

Connections run in autocommit mode; every transaction boundary is explicit
(``BEGIN`` / ``COMMIT`` / ``ROLLBACK`` through ``transaction``). This lets the
resilient importer fall back to row-by-row inserts where each row commits on
its own, while batches and error-log writes still get their own transactions.
"""

__all__ = [
    "resolve_dsn",
    "db_connection",
    "transaction",
]

logger = logging.getLogger(__name__)


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Resolve the connection string.

    Precedence:
        1. DATABASE_URL / PGDSN environment variables (whole DSN)
        2. individual PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. the ``database`` section of the config file
    """
    dsn_env = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn_env:
        return dsn_env
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def db_connection(db_cfg: DatabaseConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Yield an autocommit psycopg2 connection, closed on exit."""
    conn = psycopg2.connect(resolve_dsn(db_cfg))
    conn.autocommit = True
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(cursor: Any) -> Iterator[Any]:
    """Run the block inside ``BEGIN`` ... ``COMMIT``; ``ROLLBACK`` and re-raise on error."""
    cursor.execute("BEGIN")
    try:
        yield cursor
    except BaseException:
        try:
            cursor.execute("ROLLBACK")
        except psycopg2.Error as rb_e:
            logger.warning(f"rollback failed: {rb_e}")
        raise
    cursor.execute("COMMIT")
