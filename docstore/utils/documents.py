"""Insert-then-read-back persistence of opaque JSON documents."""
from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Callable

from docstore.utils.errors import (
    IdentifierCollisionError,
    InvalidPayloadError,
    ReadBackError,
    WriteError,
)
from docstore.utils.logging import get_logger
from docstore.utils.pool import ConnectionPool

logger = get_logger("documents")

IdFactory = Callable[[], str]

_INSERT_SQL = "INSERT INTO documents (external_id, payload) VALUES (?, ?)"
_SELECT_SQL = (
    "SELECT internal_id, external_id, payload, created_at FROM documents WHERE external_id=?"
)


def new_external_id() -> str:
    """Return a random 128-bit identifier (UUID4, drawn from ``os.urandom``)."""

    return str(uuid.uuid4())


def serialise_payload(payload: Any) -> str:
    """Encode a JSON value as compact text.

    Raises :class:`InvalidPayloadError` for values JSON cannot represent, including
    ``NaN`` and infinities.
    """

    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise InvalidPayloadError(f"payload is not serialisable as JSON: {exc}") from exc


@dataclass(frozen=True)
class Document:
    """A stored payload together with the identifiers the store assigned to it."""

    internal_id: int
    external_id: str
    payload: str
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Document":
        return cls(
            internal_id=int(row["internal_id"]),
            external_id=str(row["external_id"]),
            payload=str(row["payload"]),
            created_at=str(row["created_at"]),
        )

    def data(self) -> Any:
        """Decode the stored payload text."""

        return json.loads(self.payload)

    def to_json(self) -> dict[str, Any]:
        """Return the canonical JSON form used in HTTP responses."""

        return {
            "id": self.internal_id,
            "external_id": self.external_id,
            "payload": self.data(),
            "created_at": self.created_at,
        }


class DocumentStore:
    """Writes documents through a shared :class:`ConnectionPool`."""

    def __init__(self, pool: ConnectionPool, *, id_factory: IdFactory | None = None) -> None:
        self.pool = pool
        self._id_factory = id_factory or new_external_id

    def get_connection(self, timeout: float | None = None) -> AbstractContextManager[sqlite3.Connection]:
        """Lease a connection from the pool; use it as a context manager."""

        return self.pool.acquire(timeout)

    def insert(self, payload: Any, connection: sqlite3.Connection) -> Document:
        """Write ``payload`` as a new document and return the row as stored.

        A fresh row is always created. The row is then read back by its
        external identifier so fields assigned by the database are included.
        """

        payload_text = serialise_payload(payload)
        external_id = self._id_factory()

        try:
            connection.execute(_INSERT_SQL, (external_id, payload_text))
            connection.commit()
        except sqlite3.IntegrityError as exc:
            self._rollback(connection)
            if "external_id" in str(exc):
                logger.error(
                    "Generated external id already exists",
                    extra={"external_id": external_id},
                )
                raise IdentifierCollisionError(
                    f"external id {external_id} is already in use"
                ) from exc
            raise WriteError(f"insert rejected by the database: {exc}") from exc
        except sqlite3.Error as exc:
            self._rollback(connection)
            logger.error(
                "Document insert failed",
                extra={"external_id": external_id, "error": str(exc)},
            )
            raise WriteError(f"insert did not commit: {exc}") from exc

        document = self.reload(external_id, connection)
        logger.info(
            "Stored document",
            extra={"external_id": document.external_id, "internal_id": document.internal_id},
        )
        return document

    def reload(self, external_id: str, connection: sqlite3.Connection) -> Document:
        """Read a committed document back by its external identifier."""

        try:
            row = connection.execute(_SELECT_SQL, (external_id,)).fetchone()
        except sqlite3.Error as exc:
            logger.error(
                "Read-back query failed after insert",
                extra={"external_id": external_id, "error": str(exc)},
            )
            raise ReadBackError(f"could not read back document {external_id}: {exc}") from exc

        if row is None:
            logger.error(
                "Committed document is missing on read-back",
                extra={"external_id": external_id},
            )
            raise ReadBackError(f"document {external_id} not found after insert")

        return Document.from_row(row)

    def create(self, payload: Any) -> Document:
        """Lease a connection, insert ``payload`` and release the connection."""

        with self.get_connection() as connection:
            return self.insert(payload, connection)

    @staticmethod
    def _rollback(connection: sqlite3.Connection) -> None:
        # A failed rollback leaves the lease to discard the connection.
        try:
            connection.rollback()
        except sqlite3.Error:
            logger.warning("Rollback after failed insert did not succeed", exc_info=True)


__all__ = ["Document", "DocumentStore", "new_external_id", "serialise_payload"]
