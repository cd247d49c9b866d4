"""Exceptions raised by the persistence core."""
from __future__ import annotations


class StoreError(Exception):
    """Base class for every failure reported by the pool or the document store."""

    kind = "store_error"


class ConfigurationError(StoreError):
    """The connection pool could not be constructed from its configuration."""

    kind = "configuration_error"


class ConnectionFailed(StoreError):
    """A new connection could not be opened while serving a request."""

    kind = "connection_failed"


class PoolExhausted(StoreError):
    """No connection became free within the wait bound."""

    kind = "pool_exhausted"


class PoolClosed(StoreError):
    """The pool was torn down before a connection could be leased."""

    kind = "pool_closed"


class InvalidPayloadError(StoreError):
    """The payload cannot be represented as JSON text (NaN, infinities, non-JSON objects)."""

    kind = "invalid_payload"


class WriteError(StoreError):
    """The insert did not commit; no row was written."""

    kind = "write_failed"


class IdentifierCollisionError(WriteError):
    """A freshly generated external identifier already exists in the store."""

    kind = "identifier_collision"


class ReadBackError(StoreError):
    """The insert committed but the row could not be read back."""

    kind = "read_back_failed"


__all__ = [
    "StoreError",
    "ConfigurationError",
    "ConnectionFailed",
    "PoolExhausted",
    "PoolClosed",
    "InvalidPayloadError",
    "WriteError",
    "IdentifierCollisionError",
    "ReadBackError",
]
