"""Give the ``documents`` table a database-assigned ``created_at`` column."""
from __future__ import annotations

import sqlite3

__all__ = ["ensure_created_at_column"]

_REBUILD_SQL = """
CREATE TABLE documents_rebuild (
  internal_id INTEGER PRIMARY KEY AUTOINCREMENT,
  payload     TEXT NOT NULL,
  external_id TEXT NOT NULL UNIQUE,
  created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
)
"""


def ensure_created_at_column(con: sqlite3.Connection) -> bool:
    """Rebuild ``documents`` with a defaulted ``created_at`` column if it lacks one.

    SQLite cannot add a column with a non-constant default, so the table is
    recreated, existing rows are copied with their ids and stamped with the
    migration time, and the new table takes the old name. Returns ``True``
    when the table was rebuilt.
    """

    cur = con.execute("PRAGMA table_info(documents)")
    columns = {row[1] for row in cur.fetchall()}
    if not columns or "created_at" in columns:
        return False

    con.execute("DROP TABLE IF EXISTS documents_rebuild")
    con.execute(_REBUILD_SQL)
    con.execute(
        """
        INSERT INTO documents_rebuild (internal_id, payload, external_id, created_at)
        SELECT internal_id, payload, external_id, strftime('%Y-%m-%dT%H:%M:%SZ', 'now')
        FROM documents
        ORDER BY internal_id
        """
    )
    con.execute("DROP TABLE documents")
    con.execute("ALTER TABLE documents_rebuild RENAME TO documents")
    return True
