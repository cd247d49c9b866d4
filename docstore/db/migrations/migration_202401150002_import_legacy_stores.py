"""Move rows from the legacy ``stores`` table into ``documents``."""
from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass

__all__ = ["LegacyImport", "migrate_legacy_stores"]


@dataclass(frozen=True)
class LegacyImport:
    copied: int = 0
    skipped: int = 0
    generated_ids: int = 0


def migrate_legacy_stores(con: sqlite3.Connection) -> LegacyImport:
    """Copy ``stores(id, data, api_id)`` rows into ``documents`` and drop the old table.

    ``id`` becomes ``internal_id``. Rows without an ``api_id`` are given a
    fresh UUID4 first so none of them is lost. Rows whose ``api_id`` is
    already present in ``documents`` are counted as skipped.
    """

    cur = con.execute("PRAGMA table_info(stores)")
    columns = {row[1] for row in cur.fetchall()}
    if not {"id", "data", "api_id"}.issubset(columns):
        return LegacyImport()

    missing = [
        row[0]
        for row in con.execute(
            "SELECT id FROM stores WHERE api_id IS NULL OR api_id = ''"
        ).fetchall()
    ]
    for legacy_id in missing:
        con.execute(
            "UPDATE stores SET api_id=? WHERE id=?", (str(uuid.uuid4()), legacy_id)
        )

    total = con.execute("SELECT COUNT(*) FROM stores").fetchone()[0]
    cur = con.execute(
        """
        INSERT INTO documents (internal_id, payload, external_id, created_at)
        SELECT id, data, api_id, strftime('%Y-%m-%dT%H:%M:%SZ', 'now')
        FROM stores
        WHERE api_id NOT IN (SELECT external_id FROM documents)
        ORDER BY id
        """
    )
    copied = cur.rowcount
    con.execute("DROP TABLE stores")
    return LegacyImport(copied=copied, skipped=total - copied, generated_ids=len(missing))
