"""Schema management for the document table."""
from __future__ import annotations

import sqlite3

from docstore.db.migrations.migration_202401150001_add_documents_created_at import (
    ensure_created_at_column,
)
from docstore.db.migrations.migration_202401150002_import_legacy_stores import (
    migrate_legacy_stores,
)
from docstore.utils.logging import get_logger
from docstore.utils.pool import ConnectionPool

logger = get_logger("db")

INIT_SQL = """
CREATE TABLE IF NOT EXISTS documents (
  internal_id INTEGER PRIMARY KEY AUTOINCREMENT,
  payload     TEXT NOT NULL,
  external_id TEXT NOT NULL UNIQUE,
  created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

INDEX_SQL = (
    ("documents", "CREATE UNIQUE INDEX IF NOT EXISTS idx_documents_external_id ON documents(external_id)"),
)


def _table_exists(con: sqlite3.Connection, table: str) -> bool:
    cur = con.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (table,)
    )
    return cur.fetchone() is not None


def table_columns(con: sqlite3.Connection, table: str) -> set[str]:
    if not _table_exists(con, table):
        return set()
    cur = con.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cur.fetchall()}


def _apply_indexes(con: sqlite3.Connection) -> None:
    for table, statement in INDEX_SQL:
        if not _table_exists(con, table):
            logger.debug("Skipping index for missing table", extra={"table": table})
            continue
        con.execute(statement)


def apply_migrations(con: sqlite3.Connection) -> None:
    """Bring an existing database up to the current layout."""

    if ensure_created_at_column(con):
        logger.warning("Rebuilt documents table with a defaulted created_at column")

    imported = migrate_legacy_stores(con)
    if imported.generated_ids:
        logger.warning(
            "Assigned external ids to legacy rows that had none",
            extra={"rows": imported.generated_ids},
        )
    if imported.copied or imported.skipped:
        logger.warning(
            "Imported rows from legacy stores table",
            extra={"rows": imported.copied, "skipped_duplicates": imported.skipped},
        )


def init_db(pool: ConnectionPool) -> None:
    """Create the document table if needed and apply pending migrations."""

    logger.info("Ensuring SQLite schema exists", extra={"target": pool.target})
    with pool.acquire() as con:
        con.executescript(INIT_SQL)
        try:
            apply_migrations(con)
            _apply_indexes(con)
            con.commit()
        except sqlite3.Error:
            logger.exception("Failed to apply database migrations", extra={"target": pool.target})
            raise
    logger.info("Database initialisation complete", extra={"target": pool.target})


__all__ = ["INIT_SQL", "init_db", "apply_migrations", "table_columns"]
